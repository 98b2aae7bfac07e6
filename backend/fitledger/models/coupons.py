from __future__ import annotations

import json

from ..extensions import db
from fitledger.money import money_str
from fitledger.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Discount coupon. Can be tenant-wide (branch_id=NULL) or branch-specific.

    DISCOUNT TYPES:
    - PERCENTAGE: discount_value is a percent (0-100)
    - FLAT_AMOUNT: discount_value is a currency amount
    - FREE_MONTHS / FREE_ADDON: non-monetary; discount_value is a count

    current_usage_count is only ever incremented by the conditional UPDATE in
    coupon_service._claim_usage_slot, in the same transaction as the
    CouponUsage insert.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_coupons_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    code = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)

    max_usage_count = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    current_usage_count = db.Column(db.Integer, nullable=False, default=0)
    min_purchase_amount = db.Column(db.Numeric(12, 2), nullable=True)
    applicable_plans = db.Column(db.Text, nullable=False, default="[]")  # JSON array of plan ids; [] = all plans

    is_referral_coupon = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, INACTIVE

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def applicable_plan_ids(self) -> list[int]:
        return [int(p) for p in json.loads(self.applicable_plans or "[]")]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": money_str(self.discount_value),
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "max_usage_count": self.max_usage_count,
            "current_usage_count": self.current_usage_count,
            "min_purchase_amount": money_str(self.min_purchase_amount),
            "applicable_plans": self.applicable_plan_ids,
            "is_referral_coupon": self.is_referral_coupon,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class CouponUsage(db.Model):
    """Immutable redemption record. One row per successful apply."""
    __tablename__ = "coupon_usages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    coupon_code = db.Column(db.String(20), nullable=False)
    member_id = db.Column(db.Integer, nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)
    original_amount = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False)
    final_amount = db.Column(db.Numeric(12, 2), nullable=False)

    applied_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    coupon = db.relationship("Coupon", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
            "member_id": self.member_id,
            "invoice_id": self.invoice_id,
            "discount_type": self.discount_type,
            "discount_value": money_str(self.discount_value),
            "original_amount": money_str(self.original_amount),
            "discount_amount": money_str(self.discount_amount),
            "final_amount": money_str(self.final_amount),
            "applied_by": self.applied_by,
            "created_at": to_utc_z(self.created_at),
        }
