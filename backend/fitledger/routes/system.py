# backend/fitledger/routes/system.py
"""
System health endpoint.

Checks the database and reports the webhook backlog so operators can spot
gateway callbacks that need a manual replay.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Tenant, WebhookEvent
from fitledger.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        tenant_count = db.session.query(Tenant).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"tenants": tenant_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_webhook_backlog() -> dict:
    """Unprocessed webhook events degrade health; they never make it unhealthy."""
    start_time = time.time()
    try:
        pending = db.session.query(WebhookEvent).filter(
            WebhookEvent.is_processed.is_(False)
        ).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if pending else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"unprocessed_events": pending},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Webhook backlog check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Webhook log error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    webhook_health = check_webhook_backlog()

    all_checks = [database_health, webhook_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "webhooks": webhook_health,
        }
    }

    return response, http_status
