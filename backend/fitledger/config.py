# backend/fitledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fitledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fitledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared secret for gateway callbacks. Unset means signatures are NOT verified.
    PAYMENT_WEBHOOK_SECRET = (
        os.environ.get("PAYMENT_WEBHOOK_SECRET")
        or os.environ.get("STRIPE_WEBHOOK_SECRET")
    )
    # Max age of a signed webhook timestamp; 0 disables the check
    PAYMENT_WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("PAYMENT_WEBHOOK_TOLERANCE_SECONDS", "300"))

    # Percent applied to invoice items that don't carry their own rate
    DEFAULT_TAX_RATE = os.environ.get("DEFAULT_TAX_RATE", "18")
