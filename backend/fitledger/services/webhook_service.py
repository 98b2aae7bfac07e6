# Overview: Service-layer operations for payment-gateway callbacks; verifies, logs, dedupes and dispatches.

"""
Webhook Ingestion Processor

WHY: Gateway callbacks are unauthenticated HTTP requests that move money.
They must be verified, recorded before anything else happens, applied at
most once, and leave an inspectable trail when they fail.

PIPELINE:
1. Verify signature (mandatory when PAYMENT_WEBHOOK_SECRET is set)
2. Persist WebhookEvent (audit-first, before dispatch)
3. Deduplicate on (gateway, event_id); an event still being dispatched is a duplicate
4. Dispatch by event type as the SYSTEM principal of the invoice's tenant
5. Mark processed / record error

Business errors (unknown invoice, refund over the paid amount, ...) are
returned in-band and stored on the event. Unexpected exceptions leave the
event unprocessed and propagate. Nothing is retried automatically; use
replay_webhook_event.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AlreadyRecorded, InvalidState, NotFound, ServiceError, SignatureError, ValidationError
from ..models import Invoice, InvoicePayment, WebhookEvent
from ..money import from_minor_units
from fitledger.time_utils import utcnow
from .auth_context import SYSTEM_ACTOR_ID, system_context
from .permission_service import log_security_event
from .reconciliation_service import (
    ENTRY_COMPLETED,
    METHOD_ONLINE,
    record_failed_payment,
    record_payment,
    record_refund,
)


GATEWAY_STRIPE = "STRIPE"

EVENT_PAYMENT_SUCCEEDED = ("payment_intent.succeeded", "charge.succeeded")
EVENT_PAYMENT_FAILED = ("payment_intent.payment_failed", "charge.failed")
EVENT_REFUND_CREATED = ("refund.created",)

UNVERIFIED_EVENT_TYPE = "payment.webhook"
GATEWAY_REFUND_REASON = "Gateway refund"


@dataclass
class WebhookResult:
    success: bool
    message: str | None = None
    error: str | None = None
    duplicate: bool = False
    event_id: int | None = None
    tenant_id: int | None = None

    def to_dict(self) -> dict:
        data = {"success": self.success}
        if self.message is not None:
            data["message"] = self.message
        if self.error is not None:
            data["error"] = self.error
        if self.duplicate:
            data["duplicate"] = True
        return data


# =============================================================================
# SIGNATURE VERIFICATION
# =============================================================================

def parse_signature_header(header: str) -> tuple[str | None, list[str]]:
    """
    Split "t=<unix_ts>,v1=<hex>[,v1=<hex>...]" into (timestamp, [signatures]).

    Unknown schemes (v0=...) are ignored.
    """
    timestamp = None
    signatures = []
    for part in (header or "").split(","):
        key, sep, value = part.strip().partition("=")
        if not sep or not value:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def compute_signature(body: str, timestamp: str, secret: str) -> str:
    signed_payload = f"{timestamp}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    body: str,
    header: str | None,
    secret: str,
    *,
    tolerance_seconds: int = 0,
    now: float | None = None,
) -> None:
    """
    Raise SignatureError unless header carries a valid HMAC-SHA256 of "{t}.{body}".

    tolerance_seconds > 0 also rejects timestamps further than that from now.
    """
    if not header:
        raise SignatureError("Missing signature header")

    timestamp, signatures = parse_signature_header(header)
    if not timestamp or not signatures:
        raise SignatureError("Malformed signature header")
    if not timestamp.isdigit():
        raise SignatureError("Malformed signature timestamp")

    expected = compute_signature(body, timestamp, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise SignatureError("Invalid signature")

    if tolerance_seconds and tolerance_seconds > 0:
        current = time.time() if now is None else now
        if abs(current - int(timestamp)) > tolerance_seconds:
            raise SignatureError("Signature timestamp outside tolerance")


# =============================================================================
# INGESTION
# =============================================================================

def _record_rejected_delivery(gateway: str, body: str, signature: str | None, reason: str) -> WebhookEvent:
    event = WebhookEvent(
        gateway=gateway,
        event_type=UNVERIFIED_EVENT_TYPE,
        event_id=None,
        payload=body,
        signature=signature,
        is_verified=False,
        is_processed=False,
        error_message=reason,
    )
    db.session.add(event)
    db.session.commit()
    return event


def process_webhook(raw_body, signature_header: str | None, *, gateway: str = GATEWAY_STRIPE) -> WebhookResult:
    """
    Verify, persist, deduplicate and dispatch one gateway notification.

    Raises:
        SignatureError: secret configured and signature missing/invalid
        ValidationError: body is not a JSON object
    """
    body = raw_body.decode("utf-8") if isinstance(raw_body, (bytes, bytearray)) else (raw_body or "")
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    verified = False

    if secret:
        try:
            verify_signature(
                body,
                signature_header,
                secret,
                tolerance_seconds=current_app.config.get("PAYMENT_WEBHOOK_TOLERANCE_SECONDS", 0),
            )
        except SignatureError as exc:
            rejected = _record_rejected_delivery(gateway, body, signature_header, exc.message)
            current_app.logger.warning(
                "Rejected %s webhook (event row %s): %s", gateway, rejected.id, exc.message
            )
            log_security_event(
                actor_id=None,
                event_type="WEBHOOK_SIGNATURE_REJECTED",
                success=False,
                action=f"webhooks.{gateway.lower()}",
                reason=exc.message,
            )
            raise
        verified = True
    else:
        current_app.logger.warning("PAYMENT_WEBHOOK_SECRET not configured; webhook signature not verified")

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        _record_rejected_delivery(gateway, body, signature_header, "Malformed JSON payload")
        raise ValidationError("Malformed JSON payload")

    event_type = str(payload.get("type") or payload.get("event") or "unknown")
    event_id = payload.get("id")
    event_id = str(event_id) if event_id not in (None, "") else None

    existing = None
    if event_id is not None:
        existing = db.session.query(WebhookEvent).filter_by(gateway=gateway, event_id=event_id).first()

    if existing is not None:
        existing_pk = existing.id
        if not existing.error_message:
            # Applied already, or another delivery is applying it right now
            in_progress = not existing.is_processed
            current_app.logger.info(
                "Duplicate %s webhook %s ignored%s", gateway, event_id, " (in progress)" if in_progress else ""
            )
            return WebhookResult(
                success=True,
                message="Event is being processed" if in_progress else "Event already processed",
                duplicate=True,
                event_id=existing_pk,
                tenant_id=existing.tenant_id,
            )
        if not _claim_failed_event(existing_pk, payload=body, signature=signature_header, is_verified=verified):
            current_app.logger.info("Concurrent redelivery of %s webhook %s ignored", gateway, event_id)
            return WebhookResult(
                success=True, message="Event is being processed", duplicate=True, event_id=existing_pk
            )
        event = db.session.get(WebhookEvent, existing_pk)
        current_app.logger.info(
            "Replaying %s webhook %s (attempt %s)", gateway, event_id, event.attempt_count
        )
        return _dispatch_and_record(event, payload)

    event = WebhookEvent(
        gateway=gateway,
        event_type=event_type,
        event_id=event_id,
        payload=body,
        signature=signature_header,
        is_verified=verified,
        is_processed=False,
        attempt_count=1,
    )
    db.session.add(event)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent delivery of the same event won the insert
        db.session.rollback()
        current_app.logger.info("Concurrent %s webhook %s ignored", gateway, event_id)
        return WebhookResult(success=True, message="Event already received", duplicate=True)

    return _dispatch_and_record(event, payload)


def _claim_failed_event(event_pk: int, *, stuck: bool = False, **values) -> bool:
    """
    Take a stored event for another dispatch attempt.

    The conditional UPDATE matches only while the event carries an error
    (or, with stuck=True, has never completed), so concurrent attempts
    cannot both claim it. Clears the error and bumps attempt_count.
    """
    retryable = WebhookEvent.error_message.isnot(None)
    if stuck:
        retryable = retryable | WebhookEvent.is_processed.is_(False)
    result = db.session.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == event_pk, retryable)
        .values(
            is_processed=False,
            processed_at=None,
            error_message=None,
            attempt_count=WebhookEvent.attempt_count + 1,
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    claimed = result.rowcount == 1
    db.session.commit()
    return claimed


def _dispatch_and_record(event: WebhookEvent, payload: dict) -> WebhookResult:
    event_pk = event.id
    try:
        result = dispatch_event(payload)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Webhook event %s processing failed", event_pk)
        failed = db.session.get(WebhookEvent, event_pk)
        failed.is_processed = False
        failed.processed_at = None
        failed.error_message = str(exc) or exc.__class__.__name__
        db.session.commit()
        raise

    event = db.session.get(WebhookEvent, event_pk)
    if result.tenant_id is not None:
        event.tenant_id = result.tenant_id
    event.is_processed = True
    event.processed_at = utcnow()
    event.error_message = result.error
    db.session.commit()

    result.event_id = event_pk
    if result.error:
        current_app.logger.warning("Webhook event %s not applied: %s", event_pk, result.error)
    return result


# =============================================================================
# DISPATCH
# =============================================================================

def dispatch_event(payload: dict) -> WebhookResult:
    event_type = payload.get("type") or payload.get("event")
    obj = (payload.get("data") or {}).get("object") or {}
    if not isinstance(obj, dict):
        return WebhookResult(success=False, error="Malformed event object")

    if event_type in EVENT_PAYMENT_SUCCEEDED:
        return handle_payment_success(obj)
    if event_type in EVENT_PAYMENT_FAILED:
        return handle_payment_failed(obj)
    if event_type in EVENT_REFUND_CREATED:
        return handle_refund_created(obj)

    current_app.logger.info("Unhandled webhook event: %s", event_type)
    return WebhookResult(success=True, message="Event type not handled")


def _metadata(obj: dict) -> dict:
    metadata = obj.get("metadata") or {}
    return metadata if isinstance(metadata, dict) else {}


def _load_invoice(raw_invoice_id) -> Invoice:
    """Unscoped lookup; the invoice decides which tenant the SYSTEM principal acts for."""
    text = str(raw_invoice_id).strip()
    if not text.isdigit():
        raise NotFound("Invoice not found")
    invoice = db.session.get(Invoice, int(text))
    if invoice is None:
        raise NotFound("Invoice not found")
    return invoice


def handle_payment_success(obj: dict) -> WebhookResult:
    metadata = _metadata(obj)
    invoice_id = metadata.get("invoiceId")
    gateway_payment_id = obj.get("id")

    if not invoice_id:
        if metadata.get("orderId"):
            return WebhookResult(success=False, error="Order payments are not handled")
        return WebhookResult(success=False, error="No invoice or order ID in metadata")

    tenant_id = None
    try:
        invoice = _load_invoice(invoice_id)
        tenant_id = invoice.tenant_id

        raw_amount = obj.get("amount_received")
        if raw_amount is None:
            raw_amount = obj.get("amount")
        amount = from_minor_units(raw_amount)

        record_payment(
            system_context(invoice.tenant_id),
            invoice.id,
            amount,
            METHOD_ONLINE,
            gateway_order_id=metadata.get("gatewayOrderId"),
            gateway_payment_id=str(gateway_payment_id) if gateway_payment_id else None,
            notes="Recorded from payment gateway",
        )
    except AlreadyRecorded as exc:
        return WebhookResult(success=True, message=exc.message, tenant_id=tenant_id)
    except ServiceError as exc:
        return WebhookResult(success=False, error=exc.message, tenant_id=tenant_id)

    return WebhookResult(success=True, message="Invoice payment processed", tenant_id=tenant_id)


def handle_payment_failed(obj: dict) -> WebhookResult:
    metadata = _metadata(obj)
    invoice_id = metadata.get("invoiceId")

    if not invoice_id:
        if metadata.get("orderId"):
            return WebhookResult(success=False, error="Order payments are not handled")
        return WebhookResult(success=False, error="No invoice or order ID in metadata")

    error_message = (obj.get("last_payment_error") or {}).get("message")
    tenant_id = None
    try:
        invoice = _load_invoice(invoice_id)
        tenant_id = invoice.tenant_id
        record_failed_payment(
            system_context(invoice.tenant_id),
            invoice.id,
            METHOD_ONLINE,
            error_message,
            gateway_payment_id=str(obj["id"]) if obj.get("id") else None,
        )
    except ServiceError as exc:
        return WebhookResult(success=False, error=exc.message, tenant_id=tenant_id)

    return WebhookResult(success=True, message="Payment failure logged", tenant_id=tenant_id)


def handle_refund_created(obj: dict) -> WebhookResult:
    charge_id = obj.get("charge")
    refund_id = obj.get("id")

    payment = None
    if charge_id:
        payment = db.session.query(InvoicePayment).filter_by(
            gateway_payment_id=str(charge_id), status=ENTRY_COMPLETED
        ).order_by(InvoicePayment.id).first()
    if payment is None:
        return WebhookResult(success=False, error="No matching payment found for refund")

    invoice = db.session.get(Invoice, payment.invoice_id)
    tenant_id = invoice.tenant_id

    try:
        record_refund(
            system_context(invoice.tenant_id),
            invoice.id,
            from_minor_units(obj.get("amount")),
            METHOD_ONLINE,
            GATEWAY_REFUND_REASON,
            gateway_refund_id=str(refund_id) if refund_id else None,
        )
    except AlreadyRecorded as exc:
        return WebhookResult(success=True, message=exc.message, tenant_id=tenant_id)
    except ServiceError as exc:
        return WebhookResult(success=False, error=exc.message, tenant_id=tenant_id)

    return WebhookResult(success=True, message="Refund processed", tenant_id=tenant_id)


# =============================================================================
# OPERATIONS (CLI)
# =============================================================================

def list_failed_events(limit: int = 50) -> list[WebhookEvent]:
    """Events that never completed, or completed with a business error."""
    return (
        db.session.query(WebhookEvent)
        .filter((WebhookEvent.is_processed.is_(False)) | (WebhookEvent.error_message.isnot(None)))
        .order_by(WebhookEvent.id.desc())
        .limit(limit)
        .all()
    )


def replay_webhook_event(event_pk: int) -> WebhookResult:
    """
    Re-dispatch a stored event that failed or never completed.

    Unverified deliveries are never replayed while a secret is configured.
    Gateway ids are deduplicated under the invoice lock, so replaying an
    event whose money movement did land is a no-op.
    """
    event = db.session.get(WebhookEvent, event_pk)
    if event is None:
        raise NotFound("Webhook event not found")
    if event.is_processed and not event.error_message:
        raise InvalidState("Webhook event already processed")
    if current_app.config.get("PAYMENT_WEBHOOK_SECRET") and not event.is_verified:
        raise InvalidState("Cannot replay an unverified webhook event")

    try:
        payload = json.loads(event.payload)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise ValidationError("Stored payload is not a JSON object")

    if not _claim_failed_event(event_pk, stuck=True):
        raise InvalidState("Webhook event is being processed")
    event = db.session.get(WebhookEvent, event_pk)
    current_app.logger.info("Manual replay of webhook event %s by %s", event_pk, SYSTEM_ACTOR_ID)
    return _dispatch_and_record(event, payload)
