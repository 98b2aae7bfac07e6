from __future__ import annotations

from ..extensions import db
from fitledger.money import money_str
from fitledger.time_utils import to_utc_z, to_iso_date


class MembershipPlan(db.Model):
    """Sellable plan. branch_id NULL means the plan is offered tenant-wide."""
    __tablename__ = "membership_plans"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_membership_plans_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    name = db.Column(db.String(120), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "duration_days": self.duration_days,
            "price": money_str(self.price),
            "is_active": self.is_active,
        }


class MemberMembership(db.Model):
    """
    A member's entitlement to a plan.

    STATE MACHINE (membership_lifecycle_service is the only writer):
        ACTIVE <-> FROZEN
        ACTIVE | FROZEN -> INACTIVE   (terminal)

    end_date is extended at freeze time; original_end_date keeps the
    pre-freeze value from the first freeze.
    """
    __tablename__ = "member_memberships"
    __table_args__ = (
        db.Index("ix_member_memberships_tenant_branch", "tenant_id", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    member_id = db.Column(db.Integer, nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("membership_plans.id"), nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    original_end_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, FROZEN, INACTIVE
    freeze_days = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    plan = db.relationship("MembershipPlan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "member_id": self.member_id,
            "plan_id": self.plan_id,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "original_end_date": to_iso_date(self.original_end_date),
            "status": self.status,
            "freeze_days": self.freeze_days,
            "version_id": self.version_id,
        }


class MembershipLifecycleEvent(db.Model):
    """
    Immutable audit record of one membership transition.

    previous_data holds a MembershipSnapshot (JSON) of the row as it was
    before the transition; snapshot_version says how to read it.
    """
    __tablename__ = "membership_lifecycle_events"
    __table_args__ = (
        db.Index("ix_lifecycle_events_membership_created", "membership_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    member_id = db.Column(db.Integer, nullable=False, index=True)
    membership_id = db.Column(db.Integer, db.ForeignKey("member_memberships.id"), nullable=False, index=True)

    event_type = db.Column(db.String(16), nullable=False, index=True)  # PAUSED, RESUMED, UPGRADED, CANCELLED
    effective_date = db.Column(db.Date, nullable=False)
    duration_days = db.Column(db.Integer, nullable=True)
    old_plan_id = db.Column(db.Integer, nullable=True)
    new_plan_id = db.Column(db.Integer, nullable=True)
    pro_rata_credit = db.Column(db.Numeric(12, 2), nullable=True)
    refund_amount = db.Column(db.Numeric(12, 2), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    snapshot_version = db.Column(db.Integer, nullable=False)
    previous_data = db.Column(db.Text, nullable=False)

    performed_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "member_id": self.member_id,
            "membership_id": self.membership_id,
            "event_type": self.event_type,
            "effective_date": to_iso_date(self.effective_date),
            "duration_days": self.duration_days,
            "old_plan_id": self.old_plan_id,
            "new_plan_id": self.new_plan_id,
            "pro_rata_credit": money_str(self.pro_rata_credit),
            "refund_amount": money_str(self.refund_amount),
            "reason": self.reason,
            "notes": self.notes,
            "snapshot_version": self.snapshot_version,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }
