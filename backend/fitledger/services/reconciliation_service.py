# Overview: Service-layer operations for invoice reconciliation; the only writer of invoice totals.

"""
Invoice Reconciliation Ledger

WHY: An invoice's paid_amount, balance_amount and status must always be
a deterministic function of its payment and refund history, even when
the same gateway notification is delivered twice, arrives out of order,
or races a cashier entering the same payment.

DESIGN PRINCIPLES:
- Append-only history: InvoicePayment / InvoiceRefund rows are inserted, never edited
- Recompute, don't increment: totals are re-derived from every COMPLETED row
  on each write, so retries and reordering converge on the same state
- One atomic unit: lock invoice -> insert history row -> recompute -> commit.
  Any failure rolls back the whole unit (run_with_retry)
- Refund bound: sum of refunds never exceeds sum of payments
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..errors import AlreadyRecorded, InvalidState, RefundExceedsPaid, ValidationError
from ..models import Invoice, InvoicePayment, InvoiceRefund
from ..money import ZERO, money_str, money_sum, to_positive_money
from .concurrency import lock_for_update, run_with_retry
from .permission_service import require_permission
from .tenant_service import get_scoped_or_404


# =============================================================================
# INVOICE STATUS (CONSTANTS)
# =============================================================================

INVOICE_STATUS_DRAFT = "DRAFT"
INVOICE_STATUS_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_REFUNDED = "REFUNDED"
INVOICE_STATUS_CANCELLED = "CANCELLED"

CLOSED_STATUSES = {INVOICE_STATUS_REFUNDED, INVOICE_STATUS_CANCELLED}


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_UPI = "UPI"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_CHEQUE = "CHEQUE"
METHOD_ONLINE = "ONLINE"  # settled through the payment gateway

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_UPI,
    METHOD_BANK_TRANSFER,
    METHOD_CHEQUE,
    METHOD_ONLINE,
]

ENTRY_COMPLETED = "COMPLETED"
ENTRY_FAILED = "FAILED"

MOVEMENT_PAYMENT = "PAYMENT"
MOVEMENT_REFUND = "REFUND"


def _validate_method(method: str) -> str:
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}")
    return method


# =============================================================================
# DERIVATION
# =============================================================================

def completed_totals(invoice_id: int) -> tuple[Decimal, Decimal]:
    """
    Sum the invoice's COMPLETED history.

    Returns:
        (gross_paid, total_refunded)
    """
    payments = db.session.query(InvoicePayment.amount).filter_by(
        invoice_id=invoice_id, status=ENTRY_COMPLETED
    ).all()
    refunds = db.session.query(InvoiceRefund.refund_amount).filter_by(
        invoice_id=invoice_id, status=ENTRY_COMPLETED
    ).all()
    return money_sum(p.amount for p in payments), money_sum(r.refund_amount for r in refunds)


def derive_status(
    current_status: str,
    balance: Decimal,
    gross_paid: Decimal,
    total_refunded: Decimal,
    *,
    after_refund: bool,
) -> str:
    """
    Status rules.

    After a payment:
    - PAID if balance <= 0
    - PARTIALLY_PAID if anything is net-paid
    - otherwise unchanged

    After a refund:
    - REFUNDED if everything paid has been refunded
    - PARTIALLY_PAID if anything is still net-paid
    - otherwise DRAFT
    """
    net_paid = gross_paid - total_refunded

    if after_refund:
        if total_refunded >= gross_paid:
            return INVOICE_STATUS_REFUNDED
        if net_paid > ZERO:
            return INVOICE_STATUS_PARTIALLY_PAID
        return INVOICE_STATUS_DRAFT

    if balance <= ZERO:
        return INVOICE_STATUS_PAID
    if net_paid > ZERO:
        return INVOICE_STATUS_PARTIALLY_PAID
    return current_status


def recompute_invoice(invoice: Invoice, *, after_refund: bool = False) -> Invoice:
    """
    Re-derive paid_amount, balance_amount and status from the full history.

    Caller must hold the invoice lock and commit. This is the single
    code path that writes the derived columns.
    """
    gross_paid, total_refunded = completed_totals(invoice.id)
    net_paid = gross_paid - total_refunded
    balance = Decimal(invoice.total_amount) - net_paid

    invoice.paid_amount = net_paid
    invoice.balance_amount = balance
    if invoice.status != INVOICE_STATUS_CANCELLED:
        invoice.status = derive_status(
            invoice.status, balance, gross_paid, total_refunded, after_refund=after_refund
        )
    return invoice


# =============================================================================
# PAYMENTS
# =============================================================================

def _gateway_payment_recorded(invoice_id: int, gateway_payment_id: str) -> bool:
    return db.session.query(InvoicePayment.id).filter_by(
        invoice_id=invoice_id,
        gateway_payment_id=gateway_payment_id,
        status=ENTRY_COMPLETED,
    ).first() is not None


def _gateway_refund_recorded(invoice_id: int, gateway_refund_id: str) -> bool:
    return db.session.query(InvoiceRefund.id).filter_by(
        invoice_id=invoice_id,
        gateway_refund_id=gateway_refund_id,
        status=ENTRY_COMPLETED,
    ).first() is not None


def record_payment(
    context,
    invoice_id: int,
    amount,
    method: str,
    *,
    gateway_order_id: str | None = None,
    gateway_payment_id: str | None = None,
    transaction_ref: str | None = None,
    notes: str | None = None,
) -> tuple[InvoicePayment, Invoice]:
    """
    Record a COMPLETED payment and reconcile the invoice.

    Raises:
        Forbidden: context lacks invoices.payment
        ValidationError: amount not positive, or unknown method
        NotFound: invoice missing or outside the caller's scope
        InvalidState: invoice is REFUNDED or CANCELLED
        AlreadyRecorded: gateway_payment_id already has a COMPLETED payment
    """
    require_permission(context, "invoices.payment")
    amount = to_positive_money(amount)
    _validate_method(method)

    def _op():
        invoice = get_scoped_or_404(Invoice, invoice_id, context, lock=True)

        if gateway_payment_id and _gateway_payment_recorded(invoice.id, gateway_payment_id):
            raise AlreadyRecorded("Payment already recorded")

        if invoice.status in CLOSED_STATUSES:
            raise InvalidState("Cannot record payment for refunded or cancelled invoice")

        payment = InvoicePayment(
            invoice_id=invoice.id,
            amount=amount,
            method=method,
            status=ENTRY_COMPLETED,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            transaction_ref=transaction_ref,
            notes=notes,
            processed_by=context.actor_id,
        )
        db.session.add(payment)
        db.session.flush()

        invoice.last_movement = MOVEMENT_PAYMENT
        recompute_invoice(invoice, after_refund=False)

        db.session.commit()
        return payment, invoice

    return run_with_retry(_op)


def record_failed_payment(
    context,
    invoice_id: int,
    method: str,
    error_message: str | None,
    *,
    gateway_order_id: str | None = None,
    gateway_payment_id: str | None = None,
) -> InvoicePayment:
    """
    Append a zero-amount FAILED stub for a declined gateway charge.

    FAILED rows never count toward totals, so the invoice is not touched.
    """
    require_permission(context, "invoices.payment")
    _validate_method(method)

    def _op():
        invoice = get_scoped_or_404(Invoice, invoice_id, context)
        payment = InvoicePayment(
            invoice_id=invoice.id,
            amount=ZERO,
            method=method,
            status=ENTRY_FAILED,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            notes=f"Payment failed: {error_message or 'Unknown error'}",
            processed_by=context.actor_id,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def _next_credit_note_number(invoice_id: int) -> str:
    """CN-{invoice:06d}-{n:03d}; n is the refund's ordinal on the invoice."""
    existing = db.session.query(InvoiceRefund).filter_by(invoice_id=invoice_id).count()
    return f"CN-{invoice_id:06d}-{existing + 1:03d}"


def record_refund(
    context,
    invoice_id: int,
    refund_amount,
    method: str,
    reason: str,
    *,
    gateway_refund_id: str | None = None,
    notes: str | None = None,
) -> tuple[InvoiceRefund, Invoice]:
    """
    Record a COMPLETED refund (with credit note) and reconcile the invoice.

    Raises:
        Forbidden: context lacks invoices.refund
        ValidationError: amount not positive, unknown method, or missing reason
        NotFound: invoice missing or outside the caller's scope
        RefundExceedsPaid: already refunded + refund_amount > gross paid
        AlreadyRecorded: gateway_refund_id already has a COMPLETED refund
    """
    require_permission(context, "invoices.refund")
    refund_amount = to_positive_money(refund_amount, field="refund_amount")
    _validate_method(method)
    if not reason or not str(reason).strip():
        raise ValidationError("Refund reason is required")

    def _op():
        invoice = get_scoped_or_404(Invoice, invoice_id, context, lock=True)

        if gateway_refund_id and _gateway_refund_recorded(invoice.id, gateway_refund_id):
            raise AlreadyRecorded("Refund already recorded")

        gross_paid, current_refunded = completed_totals(invoice.id)
        if current_refunded + refund_amount > gross_paid:
            raise RefundExceedsPaid(
                f"Refund amount exceeds total paid amount "
                f"(paid {money_str(gross_paid)}, already refunded {money_str(current_refunded)})"
            )

        refund = InvoiceRefund(
            invoice_id=invoice.id,
            refund_amount=refund_amount,
            method=method,
            reason=str(reason).strip(),
            credit_note_number=_next_credit_note_number(invoice.id),
            gateway_refund_id=gateway_refund_id,
            notes=notes,
            status=ENTRY_COMPLETED,
            processed_by=context.actor_id,
        )
        db.session.add(refund)
        db.session.flush()

        invoice.last_movement = MOVEMENT_REFUND
        recompute_invoice(invoice, after_refund=True)

        db.session.commit()
        return refund, invoice

    return run_with_retry(_op)


# =============================================================================
# AUDIT / REPORTING
# =============================================================================

def reconcile_invoice(invoice_id: int) -> tuple[Invoice, dict]:
    """
    Maintenance recompute of one invoice (no actor scope; CLI only).

    The status rule follows whichever kind of movement was recorded last
    (Invoice.last_movement), not row timestamps.
    Returns the invoice and a dict of the values before the recompute.
    """
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")

        before = {
            "paid_amount": money_str(invoice.paid_amount),
            "balance_amount": money_str(invoice.balance_amount),
            "status": invoice.status,
        }

        recompute_invoice(invoice, after_refund=invoice.last_movement == MOVEMENT_REFUND)
        db.session.commit()
        return invoice, before

    return run_with_retry(_op)


def get_invoice_summary(context, invoice_id: int) -> dict:
    """
    Ledger view of one invoice: totals plus full history.

    Totals are read from committed rows, never cached.
    """
    require_permission(context, "invoices.view")
    invoice = get_scoped_or_404(Invoice, invoice_id, context)

    gross_paid, total_refunded = completed_totals(invoice.id)
    payments = db.session.query(InvoicePayment).filter_by(invoice_id=invoice.id).order_by(InvoicePayment.id).all()
    refunds = db.session.query(InvoiceRefund).filter_by(invoice_id=invoice.id).order_by(InvoiceRefund.id).all()

    return {
        "invoice": invoice.to_dict(),
        "gross_paid": money_str(gross_paid),
        "total_refunded": money_str(total_refunded),
        "net_paid": money_str(gross_paid - total_refunded),
        "balance_amount": money_str(invoice.balance_amount),
        "status": invoice.status,
        "payments": [p.to_dict() for p in payments],
        "refunds": [r.to_dict() for r in refunds],
    }
