# Overview: Service-layer operations for permission; the single permission evaluator.

"""
Permission Checking and Security Event Logging with Multi-Tenant Support

WHY: Every entry point (request handler, webhook, CLI) funnels through
has_permission so the matching rules cannot diverge between surfaces.

MATCHING ORDER:
1. Actor holds "*"                -> allow
2. Actor holds the exact code     -> allow
3. Actor holds "{module}.*"       -> allow (module = text before the first ".")
4. Otherwise                      -> deny

DESIGN PRINCIPLES:
- Fail closed: no context, no permissions, no access
- Log denials only: grants are not logged
- Tenant isolation: security events carry tenant_id and branch_id
"""

from __future__ import annotations

from flask import has_request_context, request

from ..extensions import db
from ..errors import Forbidden, Unauthorized
from ..models import SecurityEvent
from ..permissions import WILDCARD, require_known_permission
from fitledger.time_utils import utcnow


def _grants_of(actor) -> frozenset[str]:
    if actor is None:
        return frozenset()
    permissions = getattr(actor, "permissions", actor)
    if permissions is None:
        return frozenset()
    if isinstance(permissions, str):
        return frozenset({permissions})
    return frozenset(permissions)


def has_permission(actor, required: str) -> bool:
    """
    Check whether an actor's grants satisfy a required permission.

    actor may be an AuthContext or any iterable of grant strings.
    """
    grants = _grants_of(actor)

    if WILDCARD in grants:
        return True

    if required in grants:
        return True

    module = required.split(".", 1)[0]
    return f"{module}.*" in grants


def has_any_permission(actor, required: list[str]) -> bool:
    return any(has_permission(actor, code) for code in required)


def has_all_permissions(actor, required: list[str]) -> bool:
    return all(has_permission(actor, code) for code in required)


def log_security_event(
    actor_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    tenant_id: int | None = None,
    branch_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    Client IP and user agent are taken from the active request, if any.

    event_type examples:
    - PERMISSION_DENIED
    - TENANT_CONTEXT_MISSING
    - CROSS_TENANT_ACCESS_DENIED
    - WEBHOOK_SIGNATURE_REJECTED
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")
        if resource is None:
            resource = request.path

    event = SecurityEvent(
        actor_id=actor_id,
        tenant_id=tenant_id,
        branch_id=branch_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def require_permission(context, permission_code: str, resource: str | None = None):
    """
    Require the context to hold a permission.

    Raises:
        ValueError: permission_code is not in the catalog (programming error)
        Unauthorized: no resolved context
        Forbidden: context lacks the permission (denial is logged)

    Returns the context so callers can write `ctx = require_permission(ctx, ...)`.
    """
    require_known_permission(permission_code)

    if context is None:
        raise Unauthorized("Authentication required")

    if not has_permission(context, permission_code):
        # Log only denials (policy: no granted logs)
        log_security_event(
            actor_id=context.actor_id,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=resource,
            action=permission_code,
            reason=f"Missing permission: {permission_code}",
            tenant_id=context.tenant_id,
            branch_id=context.branch_id,
        )
        raise Forbidden(f"Missing permission: {permission_code}")

    return context
