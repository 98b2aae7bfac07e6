from __future__ import annotations

from ..extensions import db
from fitledger.money import money_str
from fitledger.time_utils import to_utc_z, to_iso_date


class Invoice(db.Model):
    """
    Member invoice owned by a tenant/branch.

    DERIVED TOTALS: paid_amount, balance_amount and status are written only
    by reconciliation_service.recompute_invoice, always from the full
    payment/refund history. No code path increments them.

    STATUS:
    - DRAFT: issued, nothing net-paid
    - PARTIALLY_PAID: 0 < net paid < total
    - PAID: balance <= 0
    - REFUNDED: every completed payment has been refunded
    - CANCELLED: voided before any money was kept
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        db.Index("ix_invoices_tenant_branch", "tenant_id", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    member_id = db.Column(db.Integer, nullable=True, index=True)

    invoice_number = db.Column(db.String(32), nullable=False)
    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    balance_amount = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    notes = db.Column(db.Text, nullable=True)
    # PAYMENT or REFUND; selects the status rule when reconciling
    last_movement = db.Column(db.String(8), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "member_id": self.member_id,
            "invoice_number": self.invoice_number,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "total_amount": money_str(self.total_amount),
            "paid_amount": money_str(self.paid_amount),
            "balance_amount": money_str(self.balance_amount),
            "status": self.status,
            "notes": self.notes,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class InvoiceSequence(db.Model):
    """
    Per-tenant invoice number counter.

    next_number only moves through a single UPDATE ... SET next_number = next_number + 1,
    so concurrent issuers never read the same value.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_invoice_sequences_tenant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False)  # percent
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)  # incl. tax

    invoice = db.relationship("Invoice", backref=db.backref("items", lazy=True, order_by="InvoiceItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "tax_rate": money_str(self.tax_rate),
            "total_amount": money_str(self.total_amount),
        }


class InvoicePayment(db.Model):
    """
    Payment received against an invoice.

    APPEND-ONLY: COMPLETED rows are never updated or deleted. FAILED rows are
    zero-amount stubs recording a gateway decline; they never count toward totals.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.Index("ix_invoice_payments_invoice_status", "invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)  # COMPLETED, FAILED

    gateway_order_id = db.Column(db.String(128), nullable=True, index=True)
    gateway_payment_id = db.Column(db.String(128), nullable=True, index=True)
    transaction_ref = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    processed_by = db.Column(db.String(64), nullable=False)  # actor id or "SYSTEM"
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="InvoicePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": money_str(self.amount),
            "method": self.method,
            "status": self.status,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "transaction_ref": self.transaction_ref,
            "notes": self.notes,
            "processed_by": self.processed_by,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceRefund(db.Model):
    """
    Refund issued against an invoice, with its credit note number.

    APPEND-ONLY. Invariant (enforced under the invoice lock): the sum of
    COMPLETED refund_amount never exceeds the sum of COMPLETED payments.
    """
    __tablename__ = "invoice_refunds"
    __table_args__ = (
        db.Index("ix_invoice_refunds_invoice_status", "invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    refund_amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    credit_note_number = db.Column(db.String(32), nullable=False, unique=True)
    gateway_refund_id = db.Column(db.String(128), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)

    processed_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship("Invoice", backref=db.backref("refunds", lazy=True, order_by="InvoiceRefund.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "refund_amount": money_str(self.refund_amount),
            "method": self.method,
            "reason": self.reason,
            "credit_note_number": self.credit_note_number,
            "gateway_refund_id": self.gateway_refund_id,
            "notes": self.notes,
            "status": self.status,
            "processed_by": self.processed_by,
            "created_at": to_utc_z(self.created_at),
        }
