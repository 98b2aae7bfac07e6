# Overview: Service-layer operations for coupons; validation chain and cap-safe redemption.

"""
Coupon Validator

Validation is a pure chain over a loaded coupon (check_coupon) so the HTTP
preview and the redemption path cannot disagree. Redemption claims a usage
slot with a single conditional UPDATE; two concurrent redemptions of the
last slot cannot both succeed.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import or_, update

from ..extensions import db
from ..errors import UsageLimitReached, ValidationError
from ..models import Coupon, CouponUsage, Invoice
from ..money import CENT, ZERO, money_str, to_money, to_positive_money
from fitledger.time_utils import parse_iso_datetime, utcnow
from .concurrency import run_with_retry
from .permission_service import require_permission
from .tenant_service import get_scoped_or_404, resolve_target_branch, scoped_query


COUPON_CODE_RE = re.compile(r"^[A-Z0-9]{4,20}$")

DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FLAT_AMOUNT = "FLAT_AMOUNT"
DISCOUNT_FREE_MONTHS = "FREE_MONTHS"
DISCOUNT_FREE_ADDON = "FREE_ADDON"
VALID_DISCOUNT_TYPES = {DISCOUNT_PERCENTAGE, DISCOUNT_FLAT_AMOUNT, DISCOUNT_FREE_MONTHS, DISCOUNT_FREE_ADDON}

COUPON_STATUS_ACTIVE = "ACTIVE"
COUPON_STATUS_INACTIVE = "INACTIVE"

# Reason codes, in chain order
REASON_INVALID_CODE = "INVALID_CODE"
REASON_NOT_IN_WINDOW = "NOT_IN_WINDOW"
REASON_USAGE_LIMIT = "USAGE_LIMIT_REACHED"
REASON_PLAN_NOT_APPLICABLE = "PLAN_NOT_APPLICABLE"
REASON_BELOW_MINIMUM = "BELOW_MINIMUM"

REASON_MESSAGES = {
    REASON_INVALID_CODE: "Invalid coupon code",
    REASON_NOT_IN_WINDOW: "Coupon expired or not yet valid",
    REASON_USAGE_LIMIT: "Coupon usage limit reached",
    REASON_PLAN_NOT_APPLICABLE: "Coupon not applicable to selected plan",
    REASON_BELOW_MINIMUM: "Minimum purchase amount not met",
}


@dataclass
class CouponValidation:
    valid: bool
    coupon: Coupon | None = None
    reason: str | None = None

    @property
    def error(self) -> str | None:
        if self.reason is None:
            return None
        if self.reason == REASON_BELOW_MINIMUM and self.coupon is not None:
            return f"Minimum purchase amount is {money_str(self.coupon.min_purchase_amount)}"
        return REASON_MESSAGES[self.reason]

    def to_dict(self) -> dict:
        data = {"valid": self.valid}
        if self.valid:
            data["coupon"] = self.coupon.to_dict()
        else:
            data["reason"] = self.reason
            data["error"] = self.error
        return data


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def check_coupon(
    coupon: Coupon | None,
    *,
    now: datetime,
    plan_id: int | None = None,
    amount: Decimal | None = None,
) -> str | None:
    """Return the first failing reason code, or None when the coupon is usable."""
    if coupon is None or coupon.status != COUPON_STATUS_ACTIVE:
        return REASON_INVALID_CODE

    if now < coupon.valid_from or now > coupon.valid_until:
        return REASON_NOT_IN_WINDOW

    if coupon.max_usage_count is not None and coupon.current_usage_count >= coupon.max_usage_count:
        return REASON_USAGE_LIMIT

    plan_ids = coupon.applicable_plan_ids
    if plan_id is not None and plan_ids and int(plan_id) not in plan_ids:
        return REASON_PLAN_NOT_APPLICABLE

    if (
        amount is not None
        and coupon.min_purchase_amount is not None
        and amount < Decimal(coupon.min_purchase_amount)
    ):
        return REASON_BELOW_MINIMUM

    return None


def compute_discount(coupon: Coupon, amount: Decimal) -> tuple[Decimal, Decimal]:
    """
    (discount_amount, final_amount) for a purchase of `amount`.

    FREE_MONTHS / FREE_ADDON grant something other than money and discount nothing here.
    """
    value = Decimal(coupon.discount_value)
    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = (amount * value / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    elif coupon.discount_type == DISCOUNT_FLAT_AMOUNT:
        discount = value.quantize(CENT)
    else:
        discount = ZERO
    discount = min(discount, amount)
    return discount, amount - discount


def _find_coupon(context, code: str) -> Coupon | None:
    return scoped_query(Coupon, context, include_tenant_wide=True).filter(
        Coupon.code == normalize_code(code)
    ).first()


def _evaluate(context, code, plan_id, amount) -> CouponValidation:
    coupon = _find_coupon(context, code)
    reason = check_coupon(coupon, now=utcnow(), plan_id=plan_id, amount=amount)
    if reason is not None:
        return CouponValidation(valid=False, coupon=coupon, reason=reason)
    return CouponValidation(valid=True, coupon=coupon)


def validate_coupon(context, code: str, plan_id: int | None = None, amount=None) -> CouponValidation:
    require_permission(context, "coupons.view")
    if amount is not None:
        amount = to_money(amount)
    return _evaluate(context, code, plan_id, amount)


def _claim_usage_slot(coupon_id: int) -> bool:
    """
    Atomically take one usage slot. False when the cap is already reached.

    The cap check and the increment are one statement, so the database
    serializes competing redemptions.
    """
    result = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.status == COUPON_STATUS_ACTIVE,
            or_(
                Coupon.max_usage_count.is_(None),
                Coupon.current_usage_count < Coupon.max_usage_count,
            ),
        )
        .values(current_usage_count=Coupon.current_usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def apply_coupon(
    context,
    code: str,
    member_id: int,
    amount,
    *,
    plan_id: int | None = None,
    invoice_id: int | None = None,
) -> CouponUsage:
    """
    Redeem a coupon: claim a usage slot and record the usage in one transaction.

    Raises:
        ValidationError: coupon fails the validation chain
        UsageLimitReached: cap reached, including losing a race for the last slot
    """
    require_permission(context, "coupons.apply")
    amount = to_positive_money(amount)
    if isinstance(member_id, bool) or not isinstance(member_id, int) or member_id <= 0:
        raise ValidationError("member_id must be a positive integer")

    validation = _evaluate(context, code, plan_id, amount)
    if not validation.valid:
        if validation.reason == REASON_USAGE_LIMIT:
            raise UsageLimitReached(validation.error)
        raise ValidationError(validation.error)

    coupon_id = validation.coupon.id

    def _op():
        if invoice_id is not None:
            get_scoped_or_404(Invoice, invoice_id, context)

        if not _claim_usage_slot(coupon_id):
            raise UsageLimitReached("Coupon usage limit reached")

        coupon = db.session.get(Coupon, coupon_id)
        discount, final = compute_discount(coupon, amount)

        usage = CouponUsage(
            tenant_id=context.tenant_id,
            branch_id=context.branch_id,
            coupon_id=coupon.id,
            coupon_code=coupon.code,
            member_id=member_id,
            invoice_id=invoice_id,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            original_amount=amount,
            discount_amount=discount,
            final_amount=final,
            applied_by=context.actor_id,
        )
        db.session.add(usage)
        db.session.commit()
        return usage

    return run_with_retry(_op)


def _parse_window_bound(value, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    return parsed


def create_coupon(context, data: dict) -> Coupon:
    require_permission(context, "coupons.create")

    code = normalize_code(data.get("code"))
    if not COUPON_CODE_RE.match(code):
        raise ValidationError("Invalid coupon code format")

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Coupon name is required")

    discount_type = data.get("discount_type")
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(f"Invalid discount type: {discount_type}")

    discount_value = to_money(data.get("discount_value"), field="discount_value")
    if discount_value < ZERO:
        raise ValidationError("discount_value cannot be negative")
    if discount_type == DISCOUNT_PERCENTAGE and discount_value > Decimal("100"):
        raise ValidationError("Discount percentage must be between 0 and 100")

    valid_from = _parse_window_bound(data.get("valid_from"), "valid_from")
    valid_until = _parse_window_bound(data.get("valid_until"), "valid_until")
    if valid_until <= valid_from:
        raise ValidationError("valid_until must be after valid_from")

    max_usage = data.get("max_usage_count")
    if max_usage is not None and (isinstance(max_usage, bool) or not isinstance(max_usage, int) or max_usage <= 0):
        raise ValidationError("max_usage_count must be a positive integer")

    min_purchase = data.get("min_purchase_amount")
    if min_purchase is not None:
        min_purchase = to_money(min_purchase, field="min_purchase_amount")

    plans = data.get("applicable_plans") or []
    if not isinstance(plans, list) or not all(isinstance(p, int) and not isinstance(p, bool) for p in plans):
        raise ValidationError("applicable_plans must be a list of plan ids")

    branch_id = resolve_target_branch(data.get("branch_id"), context)

    existing = db.session.query(Coupon).filter_by(tenant_id=context.tenant_id, code=code).first()
    if existing:
        raise ValidationError("Coupon code already exists")

    coupon = Coupon(
        tenant_id=context.tenant_id,
        branch_id=branch_id,
        code=code,
        name=name,
        description=data.get("description"),
        discount_type=discount_type,
        discount_value=discount_value,
        valid_from=valid_from,
        valid_until=valid_until,
        max_usage_count=max_usage,
        current_usage_count=0,
        min_purchase_amount=min_purchase,
        applicable_plans=json.dumps(plans),
        is_referral_coupon=bool(data.get("is_referral_coupon", False)),
        status=COUPON_STATUS_ACTIVE,
        created_by=context.actor_id,
    )
    db.session.add(coupon)
    db.session.commit()
    return coupon


def list_coupons(context, status: str | None = None, search: str | None = None) -> list[Coupon]:
    require_permission(context, "coupons.view")
    q = scoped_query(Coupon, context, include_tenant_wide=True)
    if status:
        q = q.filter(Coupon.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(Coupon.code.ilike(pattern), Coupon.name.ilike(pattern)))
    return q.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
