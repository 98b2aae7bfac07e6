# Overview: Service-layer operations for membership lifecycle; the only writer of membership status.

"""
Membership Lifecycle State Machine

================================================================================
PURPOSE: Freeze / resume / upgrade / cancel a member's entitlement with an
immutable event trail
================================================================================

STATE MACHINE:
    ACTIVE  -> FROZEN    (pause; end_date pushed out by the freeze length)
    FROZEN  -> ACTIVE    (resume; end_date unchanged)
    ACTIVE  -> INACTIVE  (cancel; terminal)
    FROZEN  -> INACTIVE  (cancel; terminal)
    ACTIVE | FROZEN: upgrade swaps plan_id without changing status

RULES:
1. Every transition appends exactly one MembershipLifecycleEvent
2. The event carries a typed snapshot of the row as it was BEFORE the transition
3. Row update and event insert commit together or not at all
4. Anything else raises InvalidState and changes nothing

Upgrade pricing is delegated to a ProrationPolicy. The ledger is never
touched from here; invoicing an upgrade is a separate operation.
================================================================================
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from decimal import Decimal

from ..extensions import db
from ..errors import InvalidState, NotFound, ValidationError
from ..models import MemberMembership, MembershipLifecycleEvent, MembershipPlan
from ..money import ZERO, to_money
from fitledger.time_utils import to_iso_date
from .concurrency import run_with_retry
from .permission_service import require_permission
from .tenant_service import get_scoped_or_404, resolve_target_branch


STATUS_ACTIVE = "ACTIVE"
STATUS_FROZEN = "FROZEN"
STATUS_INACTIVE = "INACTIVE"
VALID_STATUSES = {STATUS_ACTIVE, STATUS_FROZEN, STATUS_INACTIVE}

EVENT_PAUSED = "PAUSED"
EVENT_RESUMED = "RESUMED"
EVENT_UPGRADED = "UPGRADED"
EVENT_CANCELLED = "CANCELLED"

VALID_TRANSITIONS = {
    (STATUS_ACTIVE, STATUS_FROZEN),
    (STATUS_FROZEN, STATUS_ACTIVE),
    (STATUS_ACTIVE, STATUS_INACTIVE),
    (STATUS_FROZEN, STATUS_INACTIVE),
}

UPGRADABLE_STATUSES = {STATUS_ACTIVE, STATUS_FROZEN}

SNAPSHOT_VERSION = 1


def can_transition(from_status: str, to_status: str) -> bool:
    """INACTIVE is terminal; same-state moves are not transitions."""
    if from_status not in VALID_STATUSES or to_status not in VALID_STATUSES:
        raise ValidationError(f"Invalid membership status: {from_status} -> {to_status}")
    return (from_status, to_status) in VALID_TRANSITIONS


def _require_transition(membership: MemberMembership, to_status: str) -> None:
    if not can_transition(membership.status, to_status):
        raise InvalidState(f"Cannot move membership from {membership.status} to {to_status}")


def _require_date(value, field: str) -> date:
    if not isinstance(value, date):
        raise ValidationError(f"{field} must be a date")
    return value


# =============================================================================
# SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class MembershipSnapshot:
    """Pre-transition state stored on each lifecycle event."""
    id: int
    tenant_id: int
    branch_id: int | None
    member_id: int
    plan_id: int
    start_date: str
    end_date: str
    original_end_date: str | None
    status: str
    freeze_days: int
    version: int = SNAPSHOT_VERSION

    @classmethod
    def from_membership(cls, membership: MemberMembership) -> "MembershipSnapshot":
        return cls(
            id=membership.id,
            tenant_id=membership.tenant_id,
            branch_id=membership.branch_id,
            member_id=membership.member_id,
            plan_id=membership.plan_id,
            start_date=to_iso_date(membership.start_date),
            end_date=to_iso_date(membership.end_date),
            original_end_date=to_iso_date(membership.original_end_date),
            status=membership.status,
            freeze_days=membership.freeze_days or 0,
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "MembershipSnapshot":
        data = json.loads(raw)
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported membership snapshot version: {version}")
        return cls(**data)


# =============================================================================
# PRORATION
# =============================================================================

class ProrationPolicy:
    """Decides the credit recorded on an upgrade event. Returns None for no credit."""

    def credit_for(self, membership, old_plan, new_plan, effective_date) -> Decimal | None:
        raise NotImplementedError


class NoProration(ProrationPolicy):
    def credit_for(self, membership, old_plan, new_plan, effective_date):
        return None


class CallerSuppliedCredit(ProrationPolicy):
    """Records a credit amount decided by the caller (e.g. front desk)."""

    def __init__(self, amount):
        self.amount = to_money(amount, field="pro_rata_credit")
        if self.amount < ZERO:
            raise ValidationError("pro_rata_credit cannot be negative")

    def credit_for(self, membership, old_plan, new_plan, effective_date):
        return self.amount


# =============================================================================
# CREATION
# =============================================================================

def create_membership(
    context,
    member_id: int,
    plan_id: int,
    start_date: date,
    *,
    branch_id: int | None = None,
) -> MemberMembership:
    require_permission(context, "memberships.create")
    _require_date(start_date, "start_date")
    if isinstance(member_id, bool) or not isinstance(member_id, int) or member_id <= 0:
        raise ValidationError("member_id must be a positive integer")

    target_branch_id = resolve_target_branch(branch_id, context)

    def _op():
        plan = get_scoped_or_404(
            MembershipPlan, plan_id, context, include_tenant_wide=True, label="Plan"
        )
        if not plan.is_active:
            raise ValidationError("Plan is not active")

        membership = MemberMembership(
            tenant_id=context.tenant_id,
            branch_id=target_branch_id,
            member_id=member_id,
            plan_id=plan.id,
            start_date=start_date,
            end_date=start_date + timedelta(days=plan.duration_days),
            status=STATUS_ACTIVE,
            freeze_days=0,
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    return run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _transition(context, membership_id: int, event_type: str, effective_date: date, apply):
    """
    Lock the membership, snapshot it, let `apply` mutate it, append the event.

    `apply(membership)` validates and mutates the row and returns the extra
    event columns.
    """
    require_permission(context, "memberships.lifecycle")
    _require_date(effective_date, "effective_date")

    def _op():
        membership = get_scoped_or_404(
            MemberMembership, membership_id, context, lock=True, label="Membership"
        )
        snapshot = MembershipSnapshot.from_membership(membership)

        event_fields = apply(membership)

        event = MembershipLifecycleEvent(
            tenant_id=membership.tenant_id,
            branch_id=membership.branch_id,
            member_id=membership.member_id,
            membership_id=membership.id,
            event_type=event_type,
            effective_date=effective_date,
            snapshot_version=snapshot.version,
            previous_data=snapshot.to_json(),
            performed_by=context.actor_id,
            **event_fields,
        )
        db.session.add(event)
        db.session.commit()
        return event, membership

    return run_with_retry(_op)


def pause_membership(
    context,
    membership_id: int,
    effective_date: date,
    duration_days: int,
    reason: str,
    notes: str | None = None,
):
    """
    ACTIVE -> FROZEN. Pushes end_date out by duration_days.

    Returns (event, membership).
    """
    if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days <= 0:
        raise ValidationError("duration_days must be a positive integer")
    if not reason or not str(reason).strip():
        raise ValidationError("Pause reason is required")
    reason = str(reason).strip()

    def apply(membership):
        _require_transition(membership, STATUS_FROZEN)
        if membership.original_end_date is None:
            membership.original_end_date = membership.end_date
        membership.end_date = membership.end_date + timedelta(days=duration_days)
        membership.freeze_days = (membership.freeze_days or 0) + duration_days
        membership.status = STATUS_FROZEN
        return {"duration_days": duration_days, "reason": reason, "notes": notes}

    return _transition(context, membership_id, EVENT_PAUSED, effective_date, apply)


def resume_membership(context, membership_id: int, effective_date: date, notes: str | None = None):
    """FROZEN -> ACTIVE. The end date set at freeze time is kept."""
    def apply(membership):
        _require_transition(membership, STATUS_ACTIVE)
        membership.status = STATUS_ACTIVE
        return {"notes": notes}

    return _transition(context, membership_id, EVENT_RESUMED, effective_date, apply)


def upgrade_membership(
    context,
    membership_id: int,
    new_plan_id: int,
    effective_date: date,
    *,
    proration_policy: ProrationPolicy | None = None,
    notes: str | None = None,
):
    """
    Swap the membership's plan. Status and dates are unchanged.

    The new plan must be active, belong to the caller's tenant and be
    offered tenant-wide or at the membership's branch.
    """
    policy = proration_policy or NoProration()

    def apply(membership):
        if membership.status not in UPGRADABLE_STATUSES:
            raise InvalidState(f"Cannot upgrade membership in status {membership.status}")

        new_plan = db.session.query(MembershipPlan).filter(
            MembershipPlan.id == new_plan_id,
            MembershipPlan.tenant_id == membership.tenant_id,
        ).first()
        if new_plan is None or (
            new_plan.branch_id is not None and new_plan.branch_id != membership.branch_id
        ):
            raise NotFound("New plan not found")
        if not new_plan.is_active:
            raise ValidationError("New plan is not active")
        if new_plan.id == membership.plan_id:
            raise ValidationError("Membership is already on this plan")

        old_plan = membership.plan
        credit = policy.credit_for(membership, old_plan, new_plan, effective_date)

        old_plan_id = membership.plan_id
        membership.plan_id = new_plan.id
        return {
            "old_plan_id": old_plan_id,
            "new_plan_id": new_plan.id,
            "pro_rata_credit": credit,
            "notes": notes,
        }

    return _transition(context, membership_id, EVENT_UPGRADED, effective_date, apply)


def cancel_membership(
    context,
    membership_id: int,
    effective_date: date,
    reason: str,
    refund_amount=None,
    notes: str | None = None,
):
    """
    ACTIVE | FROZEN -> INACTIVE. end_date becomes effective_date.

    refund_amount is recorded on the event as a reference only; issuing the
    refund goes through the ledger.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("Cancellation reason is required")
    if refund_amount is not None:
        refund_amount = to_money(refund_amount, field="refund_amount")
        if refund_amount < ZERO:
            raise ValidationError("refund_amount cannot be negative")

    def apply(membership):
        _require_transition(membership, STATUS_INACTIVE)
        membership.status = STATUS_INACTIVE
        membership.end_date = effective_date
        return {"reason": str(reason).strip(), "refund_amount": refund_amount, "notes": notes}

    return _transition(context, membership_id, EVENT_CANCELLED, effective_date, apply)


# =============================================================================
# HISTORY
# =============================================================================

def get_lifecycle_history(context, membership_id: int) -> list[MembershipLifecycleEvent]:
    """Newest first."""
    require_permission(context, "memberships.view")
    membership = get_scoped_or_404(MemberMembership, membership_id, context, label="Membership")

    return (
        db.session.query(MembershipLifecycleEvent)
        .filter(
            MembershipLifecycleEvent.membership_id == membership.id,
            MembershipLifecycleEvent.tenant_id == context.tenant_id,
        )
        .order_by(MembershipLifecycleEvent.created_at.desc(), MembershipLifecycleEvent.id.desc())
        .all()
    )
