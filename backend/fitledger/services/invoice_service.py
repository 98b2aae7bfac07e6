# Overview: Service-layer operations for issuing, listing and cancelling invoices.

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InvalidState, ValidationError
from ..models import Invoice, InvoiceItem, InvoiceSequence
from ..money import CENT, ZERO, money_sum, to_money, to_positive_money
from fitledger.time_utils import utcnow
from .concurrency import run_with_retry
from .permission_service import require_permission
from .reconciliation_service import (
    CLOSED_STATUSES,
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_DRAFT,
)
from .tenant_service import get_scoped_or_404, resolve_target_branch, scoped_query


MAX_PER_PAGE = 200


def _default_tax_rate() -> Decimal:
    return to_money(current_app.config.get("DEFAULT_TAX_RATE", "18"), field="tax_rate")


def _build_item(raw: dict, default_rate: Decimal) -> InvoiceItem:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")

    description = (raw.get("description") or "").strip()
    if not description:
        raise ValidationError("Item description is required")

    quantity = raw.get("quantity", 1)
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Item quantity must be a positive integer")

    unit_price = to_positive_money(raw.get("unit_price"), field="unit_price")

    tax_rate = default_rate
    if raw.get("tax_rate") is not None:
        tax_rate = to_money(raw["tax_rate"], field="tax_rate")
    if tax_rate < ZERO or tax_rate > Decimal("100"):
        raise ValidationError("tax_rate must be between 0 and 100")

    line_subtotal = unit_price * quantity
    line_tax = (line_subtotal * tax_rate / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)

    return InvoiceItem(
        description=description,
        quantity=quantity,
        unit_price=unit_price,
        tax_rate=tax_rate,
        total_amount=line_subtotal + line_tax,
    )


def next_invoice_number(tenant_id: int) -> str:
    """
    Atomically allocate the tenant's next invoice number (INV-{tenant:04d}-{n:06d}).

    Must be the first write of the caller's transaction: losing the race to
    create the sequence row rolls the session back.
    """
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.tenant_id == tenant_id)
        .values(next_number=InvoiceSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        next_num = _current_sequence_value(tenant_id) - 1
    else:
        db.session.add(InvoiceSequence(tenant_id=tenant_id, next_number=2))
        try:
            db.session.flush()
            next_num = 1
        except IntegrityError:
            db.session.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_sequence_value(tenant_id) - 1

    return f"INV-{tenant_id:04d}-{next_num:06d}"


def _current_sequence_value(tenant_id: int) -> int:
    return (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(tenant_id=tenant_id)
        .scalar()
    )


def create_invoice(
    context,
    member_id: int | None,
    items: list[dict],
    *,
    branch_id: int | None = None,
    due_date: date | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Issue a DRAFT invoice from line items.

    Subtotal and tax are summed from the items; each item uses its own
    tax_rate or DEFAULT_TAX_RATE. Nothing is paid yet, so
    balance_amount == total_amount.
    """
    require_permission(context, "invoices.create")

    if not items:
        raise ValidationError("Invoice requires at least one item")

    target_branch_id = resolve_target_branch(branch_id, context)
    default_rate = _default_tax_rate()
    built = [_build_item(raw, default_rate) for raw in items]

    subtotal = money_sum(item.unit_price * item.quantity for item in built)
    total = money_sum(item.total_amount for item in built)

    def _op():
        invoice_number = next_invoice_number(context.tenant_id)
        invoice = Invoice(
            tenant_id=context.tenant_id,
            branch_id=target_branch_id,
            member_id=member_id,
            invoice_number=invoice_number,
            issue_date=utcnow().date(),
            due_date=due_date,
            subtotal=subtotal,
            tax_amount=total - subtotal,
            total_amount=total,
            paid_amount=ZERO,
            balance_amount=total,
            status=INVOICE_STATUS_DRAFT,
            notes=notes,
            created_by=context.actor_id,
        )
        db.session.add(invoice)
        db.session.flush()

        for item in built:
            item.invoice_id = invoice.id
            db.session.add(item)

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def list_invoices(
    context,
    *,
    status: str | None = None,
    member_id: int | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[Invoice], int]:
    """Scoped invoice listing, newest first. Returns (invoices, total_count)."""
    require_permission(context, "invoices.view")

    page = max(page, 1)
    per_page = min(max(per_page, 1), MAX_PER_PAGE)

    query = scoped_query(Invoice, context)
    if status:
        query = query.filter(Invoice.status == status)
    if member_id is not None:
        query = query.filter(Invoice.member_id == member_id)

    total = query.count()
    invoices = (
        query.order_by(Invoice.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return invoices, total


def cancel_invoice(context, invoice_id: int, reason: str) -> Invoice:
    """
    Void an invoice that has nothing net-paid.

    Invoices holding money must be refunded first; the refund path is the
    only way money leaves the ledger.
    """
    require_permission(context, "invoices.update")
    if not reason or not str(reason).strip():
        raise ValidationError("Cancellation reason is required")

    def _op():
        invoice = get_scoped_or_404(Invoice, invoice_id, context, lock=True)

        if invoice.status in CLOSED_STATUSES:
            raise InvalidState(f"Cannot cancel invoice in status {invoice.status}")
        if Decimal(invoice.paid_amount) > ZERO:
            raise InvalidState("Cannot cancel invoice with payments; refund first")

        invoice.status = INVOICE_STATUS_CANCELLED
        invoice.cancelled_at = utcnow()
        invoice.cancellation_reason = str(reason).strip()

        db.session.commit()
        return invoice

    return run_with_retry(_op)
