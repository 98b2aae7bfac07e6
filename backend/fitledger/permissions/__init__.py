# Overview: Permission system package.
# Re-exports all public APIs for the services and decorators.

from .categories import PermissionModule, ALL_MODULES
from .definitions import (
    PERMISSION_DEFINITIONS,
    INVOICE_PERMISSIONS,
    MEMBERSHIP_PERMISSIONS,
    MEMBER_PERMISSIONS,
    COUPON_PERMISSIONS,
    WEBHOOK_PERMISSIONS,
    BRANCH_PERMISSIONS,
    AUDIT_PERMISSIONS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS, permissions_for_roles
from .helpers import (
    WILDCARD,
    PermissionCode,
    PERMISSION_CODES,
    get_all_permission_codes,
    get_permissions_by_module,
    get_permission_definition,
    validate_permission_code,
    require_known_permission,
    validate_grant,
)

__all__ = [
    "PermissionModule",
    "ALL_MODULES",
    "PERMISSION_DEFINITIONS",
    "INVOICE_PERMISSIONS",
    "MEMBERSHIP_PERMISSIONS",
    "MEMBER_PERMISSIONS",
    "COUPON_PERMISSIONS",
    "WEBHOOK_PERMISSIONS",
    "BRANCH_PERMISSIONS",
    "AUDIT_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "permissions_for_roles",
    "WILDCARD",
    "PermissionCode",
    "PERMISSION_CODES",
    "get_all_permission_codes",
    "get_permissions_by_module",
    "get_permission_definition",
    "validate_permission_code",
    "require_known_permission",
    "validate_grant",
]
