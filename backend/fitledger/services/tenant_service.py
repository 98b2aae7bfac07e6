"""
Multi-Tenant Service: Tenant/Branch Scope Builder

WHY: Forgetting to scope a query is the highest-severity bug class in a
shared-database multi-tenant system. Every read or write of a
tenant-scoped table goes through scope_filter / scoped_query /
get_scoped_or_404, so the predicate is built in exactly one place.

SECURITY INVARIANTS:
1. Every scoped query filters on tenant_id == context.tenant_id
2. Branch-scoped actors additionally filter on branch_id == context.branch_id
3. Tenant-wide actors (branch_id None) see every branch of their tenant
4. Rows outside scope are reported as NotFound, never Forbidden

USAGE:
    from fitledger.services.tenant_service import get_scoped_or_404

    invoice = get_scoped_or_404(Invoice, invoice_id, context)
"""

from __future__ import annotations

from ..extensions import db
from ..errors import NotFound
from ..models import Branch, Tenant
from .concurrency import lock_for_update
from .permission_service import log_security_event


def scope_filter(model, context, *, include_tenant_wide: bool = False) -> list:
    """
    Build the isolation predicate for a tenant-scoped model.

    Args:
        model: SQLAlchemy model with tenant_id and branch_id columns
        context: AuthContext of the caller
        include_tenant_wide: also admit rows with branch_id NULL (plans, coupons)
    """
    criteria = [model.tenant_id == context.tenant_id]

    if context.branch_id is not None:
        if include_tenant_wide:
            criteria.append(
                (model.branch_id == context.branch_id) | (model.branch_id.is_(None))
            )
        else:
            criteria.append(model.branch_id == context.branch_id)

    return criteria


def scoped_query(model, context, *, include_tenant_wide: bool = False):
    """
    Create a base query scoped to the caller's tenant (and branch).

    Usage:
        invoices = scoped_query(Invoice, ctx).filter_by(status="PAID").all()
    """
    return db.session.query(model).filter(
        *scope_filter(model, context, include_tenant_wide=include_tenant_wide)
    )


def get_scoped_or_404(
    model,
    entity_id: int,
    context,
    *,
    lock: bool = False,
    include_tenant_wide: bool = False,
    label: str | None = None,
):
    """
    Fetch one row by id inside the caller's scope.

    Raises NotFound when the row is absent or belongs to another
    tenant/branch; the two cases are indistinguishable to the caller.
    """
    query = scoped_query(model, context, include_tenant_wide=include_tenant_wide).filter(
        model.id == entity_id
    )
    if lock:
        query = lock_for_update(query)

    entity = query.first()
    if entity is None:
        raise NotFound(f"{label or model.__name__} not found")
    return entity


def require_branch_in_tenant(branch_id: int, context) -> Branch:
    """
    Validate a client-supplied branch id against the caller's scope.

    SECURITY: Call this before any operation that uses a branch_id from
    client input. A branch-scoped actor may only name its own branch.
    """
    branch = db.session.get(Branch, branch_id)

    if branch is None:
        _log_cross_tenant_attempt(context, f"Branch {branch_id} not found")
        raise NotFound("Branch not found")

    if branch.tenant_id != context.tenant_id:
        # CRITICAL: Cross-tenant access attempt
        _log_cross_tenant_attempt(
            context,
            f"Branch {branch_id} belongs to tenant {branch.tenant_id}, not {context.tenant_id}",
        )
        raise NotFound("Branch not found")  # Don't reveal it exists in another tenant

    if context.branch_id is not None and branch.id != context.branch_id:
        _log_cross_tenant_attempt(
            context,
            f"Branch {branch_id} is outside actor branch {context.branch_id}",
        )
        raise NotFound("Branch not found")

    return branch


def resolve_target_branch(branch_id: int | None, context) -> int | None:
    """
    Pick the branch a new row is written to.

    Branch-scoped actors always write to their own branch; tenant-wide
    actors may name any branch of their tenant, or none.
    """
    if branch_id is None:
        return context.branch_id
    return require_branch_in_tenant(branch_id, context).id


def validate_tenant_active(tenant_id: int) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise NotFound("Tenant not found")
    return tenant


def _log_cross_tenant_attempt(context, reason: str) -> None:
    """
    Log a cross-tenant access attempt as a security event.

    SECURITY: Critical audit trail for detecting probing. These events
    should be monitored and alerted on.
    """
    log_security_event(
        actor_id=context.actor_id,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        reason=reason,
        tenant_id=context.tenant_id,
        branch_id=context.branch_id,
    )
