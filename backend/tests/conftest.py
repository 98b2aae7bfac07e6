"""
Pytest fixtures for FitLedger backend tests.

Provides test database setup, two-tenant isolation fixtures, AuthContext
builders and test client.
"""

import json
from datetime import date, timedelta
from decimal import Decimal

import pytest
from fitledger import create_app
from fitledger.extensions import db
from fitledger.models import Tenant, Branch, Invoice, MembershipPlan, MemberMembership
from fitledger.services.auth_context import build_auth_context


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_WEBHOOK_SECRET': None,
        'PAYMENT_WEBHOOK_TOLERANCE_SECONDS': 300,
        'DEFAULT_TAX_RATE': '18',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (first gym chain)."""
    tenant = Tenant(name="Tenant A - Iron Temple", code="IRON", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second gym chain)."""
    tenant = Tenant(name="Tenant B - Flex Hub", code="FLEX", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def branch_a1(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Downtown", code="A1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_a2(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Uptown", code="A2")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b1(db_session, tenant_b):
    branch = Branch(tenant_id=tenant_b.id, name="Harbor", code="B1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def context_for():
    """Build an AuthContext for an actor in a tenant (tenant-wide unless branch is given)."""
    def _make(tenant, branch=None, permissions=("*",), actor="user-1", roles=()):
        return build_auth_context(
            actor_id=actor,
            tenant_id=tenant.id,
            branch_id=branch.id if branch is not None else None,
            permissions=list(permissions),
            roles=list(roles),
        )
    return _make


@pytest.fixture(scope='function')
def owner_a(tenant_a, context_for):
    """Tenant-wide owner of Tenant A."""
    return context_for(tenant_a, actor="owner-a")


@pytest.fixture(scope='function')
def owner_b(tenant_b, context_for):
    """Tenant-wide owner of Tenant B."""
    return context_for(tenant_b, actor="owner-b")


@pytest.fixture(scope='function')
def invoice_factory(db_session):
    """Insert a DRAFT invoice with nothing paid, numbered outside the INV- sequence."""
    def _make(tenant, branch=None, total="1000.00", member_id=1):
        total = Decimal(total)
        count = db_session.query(Invoice).filter_by(tenant_id=tenant.id).count()
        invoice = Invoice(
            tenant_id=tenant.id,
            branch_id=branch.id if branch is not None else None,
            member_id=member_id,
            invoice_number=f"FIX-{tenant.id:04d}-{count + 1:06d}",
            issue_date=date(2026, 1, 1),
            subtotal=total,
            tax_amount=Decimal("0.00"),
            total_amount=total,
            paid_amount=Decimal("0.00"),
            balance_amount=total,
            status="DRAFT",
            created_by="fixture",
        )
        db_session.add(invoice)
        db_session.commit()
        return invoice
    return _make


@pytest.fixture(scope='function')
def plan_factory(db_session):
    def _make(tenant, name="Monthly", duration_days=30, price="1000.00", branch=None, is_active=True):
        plan = MembershipPlan(
            tenant_id=tenant.id,
            branch_id=branch.id if branch is not None else None,
            name=name,
            duration_days=duration_days,
            price=Decimal(price),
            is_active=is_active,
        )
        db_session.add(plan)
        db_session.commit()
        return plan
    return _make


@pytest.fixture(scope='function')
def membership_factory(db_session):
    def _make(tenant, plan, branch=None, status="ACTIVE", start=date(2026, 1, 1), member_id=1):
        membership = MemberMembership(
            tenant_id=tenant.id,
            branch_id=branch.id if branch is not None else None,
            member_id=member_id,
            plan_id=plan.id,
            start_date=start,
            end_date=start + timedelta(days=plan.duration_days),
            status=status,
            freeze_days=0,
        )
        db_session.add(membership)
        db_session.commit()
        return membership
    return _make


@pytest.fixture(scope='function')
def headers_for():
    """Identity headers as set by the edge proxy."""
    def _make(tenant, permissions=("*",), branch=None, user="user-1", roles=None) -> dict:
        headers = {
            'x-user-id': user,
            'x-tenant-id': str(tenant.id),
            'x-user-permissions': json.dumps(list(permissions)),
        }
        if branch is not None:
            headers['x-branch-id'] = str(branch.id)
        if roles is not None:
            headers['x-user-roles'] = json.dumps(list(roles))
        return headers
    return _make
