# Overview: Pytest coverage for tenant/branch scope building and isolation.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that rows outside the caller's tenant (and branch,
for branch-scoped actors) are invisible, and that foreign branch ids are
rejected and logged.
"""

import pytest

from fitledger.errors import NotFound
from fitledger.models import Coupon, Invoice, SecurityEvent
from fitledger.services.tenant_service import (
    get_scoped_or_404,
    require_branch_in_tenant,
    resolve_target_branch,
    scoped_query,
    validate_tenant_active,
)


class TestScopedQuery:

    def test_tenant_wide_actor_sees_all_branches_of_own_tenant(
        self, db_session, tenant_a, tenant_b, branch_a1, branch_a2, branch_b1, owner_a, invoice_factory
    ):
        inv_a1 = invoice_factory(tenant_a, branch_a1)
        inv_a2 = invoice_factory(tenant_a, branch_a2)
        invoice_factory(tenant_b, branch_b1)

        ids = {inv.id for inv in scoped_query(Invoice, owner_a).all()}
        assert ids == {inv_a1.id, inv_a2.id}

    def test_branch_actor_sees_only_own_branch(
        self, db_session, tenant_a, branch_a1, branch_a2, context_for, invoice_factory
    ):
        inv_a1 = invoice_factory(tenant_a, branch_a1)
        invoice_factory(tenant_a, branch_a2)
        invoice_factory(tenant_a)  # tenant-level invoice

        clerk = context_for(tenant_a, branch_a1)
        ids = {inv.id for inv in scoped_query(Invoice, clerk).all()}
        assert ids == {inv_a1.id}

    def test_include_tenant_wide_admits_null_branch_rows(
        self, db_session, tenant_a, branch_a1, branch_a2, context_for
    ):
        from datetime import datetime

        def coupon(code, branch):
            c = Coupon(
                tenant_id=tenant_a.id,
                branch_id=branch.id if branch else None,
                code=code,
                name=code,
                discount_type="FLAT_AMOUNT",
                discount_value=10,
                valid_from=datetime(2026, 1, 1),
                valid_until=datetime(2027, 1, 1),
                created_by="fixture",
            )
            db_session.add(c)
            return c

        coupon("ALLCLUBS", None)
        coupon("DOWNTOWN", branch_a1)
        coupon("UPTOWN1", branch_a2)
        db_session.commit()

        clerk = context_for(tenant_a, branch_a1)
        codes = {c.code for c in scoped_query(Coupon, clerk, include_tenant_wide=True).all()}
        assert codes == {"ALLCLUBS", "DOWNTOWN"}


class TestGetScopedOr404:

    def test_foreign_tenant_row_is_not_found(
        self, db_session, tenant_b, branch_b1, owner_a, invoice_factory
    ):
        foreign = invoice_factory(tenant_b, branch_b1)
        with pytest.raises(NotFound):
            get_scoped_or_404(Invoice, foreign.id, owner_a)

    def test_other_branch_row_is_not_found(
        self, db_session, tenant_a, branch_a1, branch_a2, context_for, invoice_factory
    ):
        other = invoice_factory(tenant_a, branch_a2)
        clerk = context_for(tenant_a, branch_a1)
        with pytest.raises(NotFound):
            get_scoped_or_404(Invoice, other.id, clerk)

    def test_missing_and_foreign_are_indistinguishable(
        self, db_session, tenant_b, owner_a, invoice_factory
    ):
        foreign = invoice_factory(tenant_b)
        with pytest.raises(NotFound) as foreign_exc:
            get_scoped_or_404(Invoice, foreign.id, owner_a)
        with pytest.raises(NotFound) as missing_exc:
            get_scoped_or_404(Invoice, 999999, owner_a)
        assert foreign_exc.value.message == missing_exc.value.message


class TestBranchValidation:

    def test_own_branch_passes(self, db_session, branch_a1, owner_a):
        assert require_branch_in_tenant(branch_a1.id, owner_a).id == branch_a1.id

    def test_foreign_branch_rejected_and_logged(self, db_session, app, branch_b1, owner_a):
        with app.test_request_context("/api/invoices", method="POST"):
            with pytest.raises(NotFound):
                require_branch_in_tenant(branch_b1.id, owner_a)

        event = db_session.query(SecurityEvent).filter_by(
            event_type="CROSS_TENANT_ACCESS_DENIED"
        ).one()
        assert event.tenant_id == owner_a.tenant_id
        assert event.resource == "/api/invoices"

    def test_branch_actor_cannot_name_sibling_branch(
        self, db_session, tenant_a, branch_a1, branch_a2, context_for
    ):
        clerk = context_for(tenant_a, branch_a1)
        with pytest.raises(NotFound):
            require_branch_in_tenant(branch_a2.id, clerk)

    def test_resolve_target_branch(self, db_session, tenant_a, branch_a1, branch_a2, context_for, owner_a):
        clerk = context_for(tenant_a, branch_a1)
        assert resolve_target_branch(None, clerk) == branch_a1.id
        assert resolve_target_branch(None, owner_a) is None
        assert resolve_target_branch(branch_a2.id, owner_a) == branch_a2.id


class TestTenantActive:

    def test_inactive_tenant_rejected(self, db_session, tenant_a):
        tenant_a.is_active = False
        db_session.commit()
        with pytest.raises(NotFound):
            validate_tenant_active(tenant_a.id)

    def test_unknown_tenant_rejected(self, db_session):
        with pytest.raises(NotFound):
            validate_tenant_active(424242)
