# Overview: Pytest coverage for payment-gateway webhook ingestion.

"""
Webhook Ingestion Tests

Verifies:
- Signature verification (valid, tampered, missing, stale)
- Every delivery is persisted before dispatch, rejected ones included
- Duplicate deliveries are no-ops, including while the first is still dispatching
- Failed deliveries are replayed; a gateway id lands at most once
- Out-of-order refund converges once the payment is known
- Gateway events reconcile invoices as the SYSTEM principal
"""

import json
import time
from decimal import Decimal

import pytest

from fitledger.errors import InvalidState, NotFound, SignatureError, ValidationError
from fitledger.models import Invoice, InvoicePayment, InvoiceRefund, SecurityEvent, WebhookEvent
from fitledger.services import webhook_service
from fitledger.services.webhook_service import (
    compute_signature,
    list_failed_events,
    parse_signature_header,
    process_webhook,
    replay_webhook_event,
    verify_signature,
)


SECRET = "whsec_test_secret"


def payment_event(event_id, invoice_id, cents, charge_id="ch_1", event_type="payment_intent.succeeded"):
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": {
            "id": charge_id,
            "amount_received": cents,
            "metadata": {"invoiceId": str(invoice_id)},
        }},
    })


def refund_event(event_id, charge_id, cents, refund_id="re_1"):
    return json.dumps({
        "id": event_id,
        "type": "refund.created",
        "data": {"object": {"id": refund_id, "charge": charge_id, "amount": cents}},
    })


def sign(body, secret=SECRET, timestamp=None):
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return f"t={ts},v1={compute_signature(body, ts, secret)}"


@pytest.fixture
def webhook_secret(app, monkeypatch):
    monkeypatch.setitem(app.config, "PAYMENT_WEBHOOK_SECRET", SECRET)
    return SECRET


class TestSignature:

    def test_parse_header(self):
        ts, sigs = parse_signature_header("t=1700000000,v1=abc,v0=legacy,v1=def")
        assert ts == "1700000000"
        assert sigs == ["abc", "def"]

    def test_valid_signature_passes(self):
        body = '{"id": "evt_1"}'
        verify_signature(body, sign(body, timestamp=1700000000), SECRET)

    def test_tampered_body_rejected(self):
        header = sign('{"amount": 100}', timestamp=1700000000)
        with pytest.raises(SignatureError):
            verify_signature('{"amount": 999}', header, SECRET)

    def test_wrong_secret_rejected(self):
        body = "{}"
        with pytest.raises(SignatureError):
            verify_signature(body, sign(body, secret="other"), SECRET)

    @pytest.mark.parametrize("header", [None, "", "garbage", "t=123", "v1=abc", "t=abc,v1=def"])
    def test_malformed_header_rejected(self, header):
        with pytest.raises(SignatureError):
            verify_signature("{}", header, SECRET)

    def test_stale_timestamp_rejected(self):
        body = "{}"
        header = sign(body, timestamp=1000)
        with pytest.raises(SignatureError, match="tolerance"):
            verify_signature(body, header, SECRET, tolerance_seconds=300, now=2000)

    def test_timestamp_within_tolerance(self):
        body = "{}"
        header = sign(body, timestamp=1000)
        verify_signature(body, header, SECRET, tolerance_seconds=300, now=1200)


class TestIngestion:

    def test_invalid_signature_persisted_and_rejected(self, db_session, webhook_secret, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a)
        body = payment_event("evt_bad", invoice.id, 50000)

        with pytest.raises(SignatureError):
            process_webhook(body, "t=1,v1=deadbeef")

        rows = db_session.query(WebhookEvent).all()
        assert len(rows) == 1
        assert rows[0].event_type == "payment.webhook"
        assert rows[0].event_id is None
        assert rows[0].is_verified is False
        assert rows[0].is_processed is False

        assert db_session.query(InvoicePayment).count() == 0
        assert db_session.query(SecurityEvent).filter_by(event_type="WEBHOOK_SIGNATURE_REJECTED").count() == 1

    def test_missing_signature_rejected_when_secret_set(self, db_session, webhook_secret):
        with pytest.raises(SignatureError, match="Missing"):
            process_webhook('{"id": "evt_1", "type": "ping"}', None)

    def test_signed_payment_reconciles_invoice(self, db_session, webhook_secret, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a, total="1000.00")
        body = payment_event("evt_1", invoice.id, 40000)

        result = process_webhook(body, sign(body))
        assert result.success is True
        assert result.message == "Invoice payment processed"

        inv = db_session.get(Invoice, invoice.id)
        assert inv.paid_amount == Decimal("400.00")
        assert inv.status == "PARTIALLY_PAID"

        payment = db_session.query(InvoicePayment).one()
        assert payment.method == "ONLINE"
        assert payment.processed_by == "SYSTEM"
        assert payment.gateway_payment_id == "ch_1"

        event = db_session.query(WebhookEvent).filter_by(event_id="evt_1").one()
        assert event.is_verified is True
        assert event.is_processed is True
        assert event.tenant_id == tenant_a.id
        assert event.error_message is None

    def test_unsigned_accepted_when_no_secret(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a)
        body = payment_event("evt_2", invoice.id, 10000)

        result = process_webhook(body, None)
        assert result.success is True
        assert db_session.query(WebhookEvent).filter_by(event_id="evt_2").one().is_verified is False

    def test_malformed_json_persisted(self, db_session):
        with pytest.raises(ValidationError):
            process_webhook("not json", None)
        assert db_session.query(WebhookEvent).count() == 1

    def test_unhandled_type_is_success(self, db_session):
        result = process_webhook('{"id": "evt_x", "type": "customer.created"}', None)
        assert result.success is True
        assert result.message == "Event type not handled"

    def test_missing_metadata_reported_in_band(self, db_session):
        body = json.dumps({"id": "evt_m", "type": "charge.succeeded", "data": {"object": {"id": "ch_9"}}})
        result = process_webhook(body, None)
        assert result.success is False
        assert "No invoice or order ID" in result.error

        event = db_session.query(WebhookEvent).filter_by(event_id="evt_m").one()
        assert event.is_processed is True
        assert event.error_message == result.error

    def test_order_payments_reported_as_failed(self, db_session):
        body = json.dumps({
            "id": "evt_o", "type": "charge.succeeded",
            "data": {"object": {"id": "ch_o", "amount": 100, "metadata": {"orderId": "ord_1"}}},
        })
        result = process_webhook(body, None)
        assert result.success is False
        assert result.error == "Order payments are not handled"
        assert db_session.query(InvoicePayment).count() == 0
        assert [e.event_id for e in list_failed_events()] == ["evt_o"]

    def test_order_payment_failures_reported_as_failed(self, db_session):
        body = json.dumps({
            "id": "evt_of", "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_o", "metadata": {"orderId": "ord_2"}}},
        })
        result = process_webhook(body, None)
        assert result.error == "Order payments are not handled"
        assert [e.event_id for e in list_failed_events()] == ["evt_of"]

    def test_unknown_invoice_reported_in_band(self, db_session):
        result = process_webhook(payment_event("evt_u", 424242, 100), None)
        assert result.success is False
        assert result.error == "Invoice not found"

    def test_payment_failed_appends_stub(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a)
        body = json.dumps({
            "id": "evt_f", "type": "payment_intent.payment_failed",
            "data": {"object": {
                "id": "pi_f",
                "metadata": {"invoiceId": str(invoice.id)},
                "last_payment_error": {"message": "Card declined"},
            }},
        })

        result = process_webhook(body, None)
        assert result.success is True

        stub = db_session.query(InvoicePayment).one()
        assert stub.status == "FAILED"
        assert stub.amount == Decimal("0.00")
        assert db_session.get(Invoice, invoice.id).status == "DRAFT"


class TestIdempotency:

    def test_duplicate_delivery_is_noop(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a, total="1000.00")
        body = payment_event("evt_dup", invoice.id, 100000)

        first = process_webhook(body, None)
        second = process_webhook(body, None)

        assert first.duplicate is False
        assert second.duplicate is True
        assert db_session.query(InvoicePayment).count() == 1
        assert db_session.get(Invoice, invoice.id).paid_amount == Decimal("1000.00")
        assert db_session.query(WebhookEvent).count() == 1

    def test_same_charge_under_new_event_id_not_applied_twice(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a, total="1000.00")
        process_webhook(payment_event("evt_a", invoice.id, 50000, charge_id="ch_same"), None)
        result = process_webhook(
            payment_event("evt_b", invoice.id, 50000, charge_id="ch_same", event_type="charge.succeeded"),
            None,
        )

        assert result.message == "Payment already recorded"
        assert db_session.get(Invoice, invoice.id).paid_amount == Decimal("500.00")

    def test_redelivery_while_dispatching_is_noop(self, db_session, tenant_a, invoice_factory, monkeypatch):
        invoice = invoice_factory(tenant_a, total="1000.00")
        body = payment_event("evt_busy", invoice.id, 100000)
        real_record_payment = webhook_service.record_payment
        redelivered = []

        def record_with_redelivery(*args, **kwargs):
            if not redelivered:
                redelivered.append(process_webhook(body, None))
            return real_record_payment(*args, **kwargs)

        monkeypatch.setattr(webhook_service, "record_payment", record_with_redelivery)
        result = process_webhook(body, None)

        assert result.message == "Invoice payment processed"
        assert redelivered[0].duplicate is True
        assert redelivered[0].message == "Event is being processed"
        assert db_session.query(InvoicePayment).count() == 1
        assert db_session.get(Invoice, invoice.id).paid_amount == Decimal("1000.00")

    def test_same_charge_landing_mid_dispatch_applied_once(self, db_session, tenant_a, invoice_factory, monkeypatch):
        invoice = invoice_factory(tenant_a, total="1000.00")
        real_record_payment = webhook_service.record_payment
        calls = []
        competing = []

        def record_after_competing_delivery(*args, **kwargs):
            calls.append(kwargs.get("gateway_payment_id"))
            if len(calls) == 1:
                competing.append(process_webhook(
                    payment_event("evt_two", invoice.id, 100000, charge_id="ch_race", event_type="charge.succeeded"),
                    None,
                ))
            return real_record_payment(*args, **kwargs)

        monkeypatch.setattr(webhook_service, "record_payment", record_after_competing_delivery)
        result = process_webhook(payment_event("evt_one", invoice.id, 100000, charge_id="ch_race"), None)

        assert competing[0].message == "Invoice payment processed"
        assert result.success is True
        assert result.message == "Payment already recorded"
        assert calls == ["ch_race", "ch_race"]
        assert db_session.query(InvoicePayment).count() == 1
        assert db_session.get(Invoice, invoice.id).paid_amount == Decimal("1000.00")

        events = db_session.query(WebhookEvent).order_by(WebhookEvent.id).all()
        assert [(e.event_id, e.is_processed, e.error_message) for e in events] == [
            ("evt_one", True, None),
            ("evt_two", True, None),
        ]

    def test_errored_event_claimed_once(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a, total="1000.00")
        refund_body = refund_event("evt_rc", "ch_rc", 10000)
        process_webhook(refund_body, None)
        process_webhook(payment_event("evt_pc", invoice.id, 100000, charge_id="ch_rc"), None)

        event = db_session.query(WebhookEvent).filter_by(event_id="evt_rc").one()
        assert webhook_service._claim_failed_event(event.id) is True
        assert webhook_service._claim_failed_event(event.id) is False

        again = process_webhook(refund_body, None)
        assert again.duplicate is True
        assert again.message == "Event is being processed"
        assert db_session.query(InvoiceRefund).count() == 0

    def test_refund_before_payment_converges_on_redelivery(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a, total="1000.00")
        refund_body = refund_event("evt_r", "ch_late", 30000)

        early = process_webhook(refund_body, None)
        assert early.success is False
        assert "No matching payment" in early.error
        assert [e.event_id for e in list_failed_events()] == ["evt_r"]

        process_webhook(payment_event("evt_p", invoice.id, 100000, charge_id="ch_late"), None)

        again = process_webhook(refund_body, None)
        assert again.success is True
        assert again.message == "Refund processed"

        inv = db_session.get(Invoice, invoice.id)
        assert inv.paid_amount == Decimal("700.00")
        assert inv.status == "PARTIALLY_PAID"

        event = db_session.query(WebhookEvent).filter_by(event_id="evt_r").one()
        assert event.attempt_count == 2
        assert event.error_message is None
        assert list_failed_events() == []

    def test_refund_over_paid_reported_in_band(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a, total="1000.00")
        process_webhook(payment_event("evt_p", invoice.id, 10000, charge_id="ch_s"), None)

        result = process_webhook(refund_event("evt_r", "ch_s", 10001), None)
        assert result.success is False
        assert "exceeds" in result.error
        assert db_session.query(InvoiceRefund).count() == 0

    def test_duplicate_refund_id_not_applied_twice(self, db_session, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a, total="1000.00")
        process_webhook(payment_event("evt_p", invoice.id, 100000, charge_id="ch_r"), None)
        process_webhook(refund_event("evt_r1", "ch_r", 20000, refund_id="re_same"), None)
        result = process_webhook(refund_event("evt_r2", "ch_r", 20000, refund_id="re_same"), None)

        assert result.message == "Refund already recorded"
        assert db_session.get(Invoice, invoice.id).paid_amount == Decimal("800.00")


class TestReplay:

    def test_unexpected_failure_leaves_event_unprocessed(self, db_session, monkeypatch):
        def boom(payload):
            raise RuntimeError("database went away")

        monkeypatch.setattr(webhook_service, "dispatch_event", boom)
        with pytest.raises(RuntimeError):
            process_webhook('{"id": "evt_e", "type": "customer.created"}', None)

        event = db_session.query(WebhookEvent).filter_by(event_id="evt_e").one()
        assert event.is_processed is False
        assert event.error_message == "database went away"

        monkeypatch.undo()
        result = replay_webhook_event(event.id)
        assert result.success is True

        event = db_session.get(WebhookEvent, event.id)
        assert event.is_processed is True
        assert event.attempt_count == 2

    def test_replay_missing_event(self, db_session):
        with pytest.raises(NotFound):
            replay_webhook_event(99999)

    def test_replay_processed_event_rejected(self, db_session):
        result = process_webhook('{"id": "evt_ok", "type": "customer.created"}', None)
        with pytest.raises(InvalidState):
            replay_webhook_event(result.event_id)

    def test_replay_unverified_rejected_when_secret_set(self, db_session, app, monkeypatch):
        result = process_webhook(refund_event("evt_nv", "ch_none", 100), None)
        assert result.success is False

        monkeypatch.setitem(app.config, "PAYMENT_WEBHOOK_SECRET", SECRET)
        with pytest.raises(InvalidState):
            replay_webhook_event(result.event_id)


class TestWebhookRoute:

    def test_invalid_signature_returns_401(self, client, db_session, webhook_secret):
        response = client.post(
            "/api/webhooks/payment",
            data='{"id": "evt_1"}',
            headers={"stripe-signature": "t=1,v1=bad", "Content-Type": "application/json"},
        )
        assert response.status_code == 401
        assert response.get_json()["success"] is False

    def test_signed_delivery_returns_200(self, client, db_session, webhook_secret, tenant_a, invoice_factory):
        invoice = invoice_factory(tenant_a)
        body = payment_event("evt_http", invoice.id, 25000)

        response = client.post(
            "/api/webhooks/payment",
            data=body,
            headers={"x-webhook-signature": sign(body), "Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.get_json() == {"success": True, "message": "Invoice payment processed"}

    def test_malformed_body_returns_400(self, client, db_session):
        response = client.post("/api/webhooks/payment", data="{{{")
        assert response.status_code == 400
