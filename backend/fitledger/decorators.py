# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import Forbidden, NotFound, Unauthorized
from .permissions import require_known_permission
from .services import permission_service
from .services.auth_context import HEADER_TENANT_ID, HEADER_USER_ID, resolve_from_headers
from .services.tenant_service import validate_tenant_active


def _is_authenticated() -> bool:
    return getattr(g, "auth_context", None) is not None


def require_auth(f):
    """
    Require identity headers and establish the tenant context.

    MULTI-TENANT: Sets g.auth_context (an immutable AuthContext) for the
    route. There is no default tenant and no default permission set.

    SECURITY: Returns 401 if:
    - x-user-id, x-tenant-id or x-user-permissions is missing or malformed
    - The tenant does not exist or is deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            context = resolve_from_headers(request.headers)
        except Unauthorized as e:
            # Identified user without a tenant is a broken upstream, not an anonymous caller
            if request.headers.get(HEADER_USER_ID) and not request.headers.get(HEADER_TENANT_ID):
                permission_service.log_security_event(
                    actor_id=request.headers.get(HEADER_USER_ID),
                    event_type="TENANT_CONTEXT_MISSING",
                    success=False,
                    action=request.method,
                    reason="Request missing tenant context - critical security invariant violated",
                )
            return jsonify({"success": False, "error": e.message}), 401

        try:
            validate_tenant_active(context.tenant_id)
        except NotFound:
            return jsonify({"success": False, "error": "Invalid tenant"}), 401

        g.auth_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Require a specific permission.

    The code is checked against the catalog when the route is declared,
    so a typo fails at import time rather than denying every request.
    """
    require_known_permission(permission_code)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"success": False, "error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    g.auth_context, permission_code, resource=request.path
                )
            except Forbidden as e:
                return jsonify({
                    "success": False,
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": e.message,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
