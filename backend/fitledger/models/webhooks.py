from __future__ import annotations

from ..extensions import db
from fitledger.time_utils import to_utc_z


class WebhookEvent(db.Model):
    """
    Audit and idempotency log for payment-gateway notifications.

    WHY: Persisted before dispatch so rejected or failed deliveries stay
    inspectable. (gateway, event_id) is unique so a redelivered event is
    recognized instead of being applied twice. Rows with event_id NULL
    (unparseable or unsigned bodies) never collide.
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        db.UniqueConstraint("gateway", "event_id", name="uq_webhook_events_gateway_event"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)  # known once dispatched

    gateway = db.Column(db.String(32), nullable=False)
    event_type = db.Column(db.String(128), nullable=False, index=True)
    event_id = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=False)
    signature = db.Column(db.String(512), nullable=True)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_processed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    attempt_count = db.Column(db.Integer, nullable=False, default=1)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self, include_payload: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "gateway": self.gateway,
            "event_type": self.event_type,
            "event_id": self.event_id,
            "is_verified": self.is_verified,
            "is_processed": self.is_processed,
            "processed_at": to_utc_z(self.processed_at),
            "error_message": self.error_message,
            "attempt_count": self.attempt_count,
            "received_at": to_utc_z(self.received_at),
        }
        if include_payload:
            data["payload"] = self.payload
        return data
