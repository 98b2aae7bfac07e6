# Overview: Pytest coverage for the membership lifecycle state machine.

"""
Membership Lifecycle Tests

Verifies:
- ACTIVE <-> FROZEN, ACTIVE | FROZEN -> INACTIVE, nothing else
- Each transition appends exactly one event with a pre-transition snapshot
- Illegal transitions change nothing
- Upgrade plan must be in the membership's tenant and branch reach
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from fitledger.errors import Forbidden, InvalidState, NotFound, ValidationError
from fitledger.models import MemberMembership, MembershipLifecycleEvent
from fitledger.services.membership_lifecycle_service import (
    CallerSuppliedCredit,
    MembershipSnapshot,
    NoProration,
    can_transition,
    cancel_membership,
    create_membership,
    get_lifecycle_history,
    pause_membership,
    resume_membership,
    upgrade_membership,
)


EFFECTIVE = date(2026, 2, 1)


class TestTransitions:

    @pytest.mark.parametrize("src,dst,allowed", [
        ("ACTIVE", "FROZEN", True),
        ("FROZEN", "ACTIVE", True),
        ("ACTIVE", "INACTIVE", True),
        ("FROZEN", "INACTIVE", True),
        ("INACTIVE", "ACTIVE", False),
        ("INACTIVE", "FROZEN", False),
        ("ACTIVE", "ACTIVE", False),
        ("FROZEN", "FROZEN", False),
    ])
    def test_transition_table(self, src, dst, allowed):
        assert can_transition(src, dst) is allowed

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            can_transition("ACTIVE", "EXPIRED")


class TestPauseResume:

    def test_pause_extends_end_date(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        original_end = membership.end_date

        event, updated = pause_membership(owner_a, membership.id, EFFECTIVE, 10, "Travel")

        assert updated.status == "FROZEN"
        assert updated.end_date == original_end + timedelta(days=10)
        assert updated.original_end_date == original_end
        assert updated.freeze_days == 10
        assert event.event_type == "PAUSED"
        assert event.duration_days == 10
        assert event.reason == "Travel"
        assert event.performed_by == "owner-a"

    def test_snapshot_holds_pre_transition_state(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        end_before = membership.end_date
        event, _ = pause_membership(owner_a, membership.id, EFFECTIVE, 7, "Injury")

        snapshot = MembershipSnapshot.from_json(event.previous_data)
        assert snapshot.status == "ACTIVE"
        assert snapshot.freeze_days == 0
        assert snapshot.end_date == end_before.isoformat()
        assert snapshot.original_end_date is None
        assert snapshot.version == event.snapshot_version == 1

    def test_pause_then_resume_keeps_extension(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        _, paused = pause_membership(owner_a, membership.id, EFFECTIVE, 5, "Travel")
        extended = paused.end_date

        event, resumed = resume_membership(owner_a, membership.id, EFFECTIVE + timedelta(days=3))
        assert resumed.status == "ACTIVE"
        assert resumed.end_date == extended
        assert event.event_type == "RESUMED"
        assert MembershipSnapshot.from_json(event.previous_data).status == "FROZEN"

    def test_second_freeze_keeps_first_original_end(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        first_end = membership.end_date
        pause_membership(owner_a, membership.id, EFFECTIVE, 5, "Travel")
        resume_membership(owner_a, membership.id, EFFECTIVE)
        _, again = pause_membership(owner_a, membership.id, EFFECTIVE, 5, "Travel")

        assert again.original_end_date == first_end
        assert again.freeze_days == 10
        assert again.end_date == first_end + timedelta(days=10)

    def test_pause_frozen_rejected_and_unchanged(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a), status="FROZEN")
        before_end = membership.end_date

        with pytest.raises(InvalidState):
            pause_membership(owner_a, membership.id, EFFECTIVE, 5, "Again")

        row = db_session.get(MemberMembership, membership.id)
        assert row.status == "FROZEN"
        assert row.end_date == before_end
        assert db_session.query(MembershipLifecycleEvent).count() == 0

    def test_resume_active_rejected(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        with pytest.raises(InvalidState):
            resume_membership(owner_a, membership.id, EFFECTIVE)

    @pytest.mark.parametrize("days", [0, -3, "5", True])
    def test_pause_requires_positive_days(self, db_session, tenant_a, owner_a, plan_factory, membership_factory, days):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        with pytest.raises(ValidationError):
            pause_membership(owner_a, membership.id, EFFECTIVE, days, "Bad")

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_pause_requires_reason(self, db_session, tenant_a, owner_a, plan_factory, membership_factory, reason):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        with pytest.raises(ValidationError):
            pause_membership(owner_a, membership.id, EFFECTIVE, 5, reason)
        assert db_session.get(MemberMembership, membership.id).status == "ACTIVE"

    def test_effective_date_must_be_date(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        with pytest.raises(ValidationError):
            pause_membership(owner_a, membership.id, "2026-02-01", 5, "Travel")


class TestUpgrade:

    def test_upgrade_swaps_plan_only(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        monthly = plan_factory(tenant_a)
        annual = plan_factory(tenant_a, name="Annual", duration_days=365, price="10000.00")
        membership = membership_factory(tenant_a, monthly)
        end_before = membership.end_date

        event, updated = upgrade_membership(owner_a, membership.id, annual.id, EFFECTIVE)

        assert updated.plan_id == annual.id
        assert updated.status == "ACTIVE"
        assert updated.end_date == end_before
        assert event.event_type == "UPGRADED"
        assert event.old_plan_id == monthly.id
        assert event.new_plan_id == annual.id
        assert event.pro_rata_credit is None

    def test_upgrade_frozen_keeps_frozen(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        monthly = plan_factory(tenant_a)
        annual = plan_factory(tenant_a, name="Annual", duration_days=365)
        membership = membership_factory(tenant_a, monthly, status="FROZEN")

        _, updated = upgrade_membership(owner_a, membership.id, annual.id, EFFECTIVE)
        assert updated.status == "FROZEN"

    def test_caller_supplied_credit_recorded(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        monthly = plan_factory(tenant_a)
        annual = plan_factory(tenant_a, name="Annual", duration_days=365)
        membership = membership_factory(tenant_a, monthly)

        event, _ = upgrade_membership(
            owner_a, membership.id, annual.id, EFFECTIVE,
            proration_policy=CallerSuppliedCredit("250.50"),
        )
        assert event.pro_rata_credit == Decimal("250.50")

    def test_negative_credit_rejected(self):
        with pytest.raises(ValidationError):
            CallerSuppliedCredit("-1")

    def test_no_proration_policy(self):
        assert NoProration().credit_for(None, None, None, EFFECTIVE) is None

    def test_upgrade_to_other_tenant_plan_not_found(
        self, db_session, tenant_a, tenant_b, owner_a, plan_factory, membership_factory
    ):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        foreign = plan_factory(tenant_b, name="Foreign")

        with pytest.raises(NotFound):
            upgrade_membership(owner_a, membership.id, foreign.id, EFFECTIVE)
        assert db_session.get(MemberMembership, membership.id).plan_id != foreign.id

    def test_upgrade_to_other_branch_plan_not_found(
        self, db_session, tenant_a, branch_a1, branch_a2, owner_a, plan_factory, membership_factory
    ):
        membership = membership_factory(tenant_a, plan_factory(tenant_a), branch=branch_a1)
        uptown_only = plan_factory(tenant_a, name="Uptown Elite", branch=branch_a2)

        with pytest.raises(NotFound):
            upgrade_membership(owner_a, membership.id, uptown_only.id, EFFECTIVE)

    def test_upgrade_to_own_branch_plan(
        self, db_session, tenant_a, branch_a1, owner_a, plan_factory, membership_factory
    ):
        membership = membership_factory(tenant_a, plan_factory(tenant_a), branch=branch_a1)
        downtown = plan_factory(tenant_a, name="Downtown Elite", branch=branch_a1)

        _, updated = upgrade_membership(owner_a, membership.id, downtown.id, EFFECTIVE)
        assert updated.plan_id == downtown.id

    def test_upgrade_to_same_plan_rejected(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        plan = plan_factory(tenant_a)
        membership = membership_factory(tenant_a, plan)
        with pytest.raises(ValidationError):
            upgrade_membership(owner_a, membership.id, plan.id, EFFECTIVE)

    def test_upgrade_to_inactive_plan_rejected(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        retired = plan_factory(tenant_a, name="Retired", is_active=False)
        with pytest.raises(ValidationError):
            upgrade_membership(owner_a, membership.id, retired.id, EFFECTIVE)

    def test_upgrade_cancelled_rejected(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a), status="INACTIVE")
        annual = plan_factory(tenant_a, name="Annual")
        with pytest.raises(InvalidState):
            upgrade_membership(owner_a, membership.id, annual.id, EFFECTIVE)


class TestCancel:

    def test_cancel_sets_end_date(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))

        event, updated = cancel_membership(owner_a, membership.id, EFFECTIVE, "Moving", refund_amount="300")
        assert updated.status == "INACTIVE"
        assert updated.end_date == EFFECTIVE
        assert event.refund_amount == Decimal("300.00")
        assert event.reason == "Moving"

    def test_cancel_frozen(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a), status="FROZEN")
        _, updated = cancel_membership(owner_a, membership.id, EFFECTIVE, "Moving")
        assert updated.status == "INACTIVE"

    def test_inactive_is_terminal(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        cancel_membership(owner_a, membership.id, EFFECTIVE, "Moving")

        with pytest.raises(InvalidState):
            cancel_membership(owner_a, membership.id, EFFECTIVE, "Again")
        with pytest.raises(InvalidState):
            resume_membership(owner_a, membership.id, EFFECTIVE)
        with pytest.raises(InvalidState):
            pause_membership(owner_a, membership.id, EFFECTIVE, 5, "Travel")

        assert db_session.query(MembershipLifecycleEvent).count() == 1

    @pytest.mark.parametrize("reason,refund", [("", None), ("  ", None), ("Moving", "-5")])
    def test_cancel_input_validation(self, db_session, tenant_a, owner_a, plan_factory, membership_factory, reason, refund):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        with pytest.raises(ValidationError):
            cancel_membership(owner_a, membership.id, EFFECTIVE, reason, refund_amount=refund)


class TestScopeAndHistory:

    def test_foreign_membership_not_found(self, db_session, tenant_a, tenant_b, owner_a, plan_factory, membership_factory):
        foreign = membership_factory(tenant_b, plan_factory(tenant_b))
        with pytest.raises(NotFound):
            pause_membership(owner_a, foreign.id, EFFECTIVE, 5, "Travel")
        assert db_session.get(MemberMembership, foreign.id).status == "ACTIVE"

    def test_branch_actor_cannot_touch_other_branch(
        self, db_session, tenant_a, branch_a1, branch_a2, context_for, plan_factory, membership_factory
    ):
        membership = membership_factory(tenant_a, plan_factory(tenant_a), branch=branch_a2)
        clerk = context_for(tenant_a, branch_a1, permissions=["memberships.*"])
        with pytest.raises(NotFound):
            cancel_membership(clerk, membership.id, EFFECTIVE, "Travel")

    def test_lifecycle_permission_required(self, db_session, tenant_a, context_for, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        viewer = context_for(tenant_a, permissions=["memberships.view"])
        with pytest.raises(Forbidden):
            pause_membership(viewer, membership.id, EFFECTIVE, 5, "Travel")

    def test_history_newest_first(self, db_session, tenant_a, owner_a, plan_factory, membership_factory):
        membership = membership_factory(tenant_a, plan_factory(tenant_a))
        pause_membership(owner_a, membership.id, EFFECTIVE, 5, "Travel")
        resume_membership(owner_a, membership.id, EFFECTIVE)
        cancel_membership(owner_a, membership.id, EFFECTIVE, "Moving")

        history = get_lifecycle_history(owner_a, membership.id)
        assert [e.event_type for e in history] == ["CANCELLED", "RESUMED", "PAUSED"]

    def test_history_of_foreign_membership_not_found(
        self, db_session, tenant_b, owner_a, plan_factory, membership_factory
    ):
        foreign = membership_factory(tenant_b, plan_factory(tenant_b))
        with pytest.raises(NotFound):
            get_lifecycle_history(owner_a, foreign.id)


class TestCreate:

    def test_create_membership(self, db_session, tenant_a, owner_a, plan_factory):
        plan = plan_factory(tenant_a, duration_days=30)
        membership = create_membership(owner_a, 7, plan.id, date(2026, 3, 1))

        assert membership.status == "ACTIVE"
        assert membership.end_date == date(2026, 3, 31)
        assert membership.tenant_id == tenant_a.id

    def test_create_with_foreign_plan_not_found(self, db_session, tenant_b, owner_a, plan_factory):
        foreign = plan_factory(tenant_b)
        with pytest.raises(NotFound):
            create_membership(owner_a, 7, foreign.id, date(2026, 3, 1))

    def test_create_with_inactive_plan_rejected(self, db_session, tenant_a, owner_a, plan_factory):
        plan = plan_factory(tenant_a, is_active=False)
        with pytest.raises(ValidationError):
            create_membership(owner_a, 7, plan.id, date(2026, 3, 1))

    def test_branch_actor_may_use_tenant_wide_plan(self, db_session, tenant_a, branch_a1, context_for, plan_factory):
        plan = plan_factory(tenant_a)
        clerk = context_for(tenant_a, branch_a1, permissions=["memberships.create"])
        membership = create_membership(clerk, 7, plan.id, date(2026, 3, 1))
        assert membership.branch_id == branch_a1.id
