# Overview: Default role bundles, expressed as permission grants (wildcards allowed).

DEFAULT_ROLE_PERMISSIONS = {
    "owner": ["*"],
    "manager": [
        "invoices.*",
        "memberships.*",
        "members.*",
        "coupons.*",
        "branches.view",
    ],
    "accountant": [
        "invoices.*",
        "webhooks.*",
        "audit.view",
    ],
    "front_desk": [
        "invoices.view",
        "invoices.create",
        "invoices.payment",
        "memberships.view",
        "memberships.create",
        "members.view",
        "coupons.view",
        "coupons.apply",
    ],
}


def permissions_for_roles(role_names) -> frozenset[str]:
    """Union of the default grants for the given roles; unknown roles grant nothing."""
    grants: set[str] = set()
    for name in role_names:
        grants.update(DEFAULT_ROLE_PERMISSIONS.get(name, ()))
    return frozenset(grants)
