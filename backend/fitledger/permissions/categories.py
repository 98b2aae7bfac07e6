# Overview: Permission module constants; the left half of every "module.action" code.


class PermissionModule:
    """Permission modules, used for wildcard grants ("invoices.*") and UI grouping."""
    INVOICES = "invoices"
    MEMBERSHIPS = "memberships"
    MEMBERS = "members"
    COUPONS = "coupons"
    WEBHOOKS = "webhooks"
    BRANCHES = "branches"
    AUDIT = "audit"


ALL_MODULES = frozenset(
    value for key, value in vars(PermissionModule).items() if not key.startswith("_")
)
