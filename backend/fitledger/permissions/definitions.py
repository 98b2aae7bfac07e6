# Overview: All permission definitions organized by module.
# Each permission is defined as: (code, name, description, module)

from .categories import PermissionModule


# -- INVOICES --

INVOICE_PERMISSIONS = [
    (
        "invoices.view",
        "View Invoices",
        "View invoices, payment and refund history",
        PermissionModule.INVOICES,
    ),
    (
        "invoices.create",
        "Create Invoices",
        "Issue new invoices",
        PermissionModule.INVOICES,
    ),
    (
        "invoices.update",
        "Update Invoices",
        "Cancel unpaid invoices",
        PermissionModule.INVOICES,
    ),
    (
        "invoices.payment",
        "Record Payments",
        "Record payments against invoices",
        PermissionModule.INVOICES,
    ),
    (
        "invoices.refund",
        "Process Refunds",
        "Refund invoice payments and issue credit notes",
        PermissionModule.INVOICES,
    ),
]


# -- MEMBERSHIPS --

MEMBERSHIP_PERMISSIONS = [
    (
        "memberships.view",
        "View Memberships",
        "View memberships and their lifecycle history",
        PermissionModule.MEMBERSHIPS,
    ),
    (
        "memberships.create",
        "Create Memberships",
        "Enroll a member on a plan",
        PermissionModule.MEMBERSHIPS,
    ),
    (
        "memberships.lifecycle",
        "Manage Membership Lifecycle",
        "Freeze, resume, upgrade and cancel memberships",
        PermissionModule.MEMBERSHIPS,
    ),
]


# -- MEMBERS --

MEMBER_PERMISSIONS = [
    (
        "members.view",
        "View Members",
        "View member profiles",
        PermissionModule.MEMBERS,
    ),
    (
        "members.create",
        "Create Members",
        "Register new members",
        PermissionModule.MEMBERS,
    ),
    (
        "members.update",
        "Update Members",
        "Edit member profiles",
        PermissionModule.MEMBERS,
    ),
    (
        "members.delete",
        "Delete Members",
        "Remove member profiles",
        PermissionModule.MEMBERS,
    ),
]


# -- COUPONS --

COUPON_PERMISSIONS = [
    (
        "coupons.view",
        "View Coupons",
        "List and validate coupons",
        PermissionModule.COUPONS,
    ),
    (
        "coupons.create",
        "Create Coupons",
        "Create discount coupons",
        PermissionModule.COUPONS,
    ),
    (
        "coupons.apply",
        "Apply Coupons",
        "Redeem a coupon for a member purchase",
        PermissionModule.COUPONS,
    ),
]


# -- WEBHOOKS --

WEBHOOK_PERMISSIONS = [
    (
        "webhooks.view",
        "View Webhook Events",
        "Inspect received payment-gateway notifications",
        PermissionModule.WEBHOOKS,
    ),
    (
        "webhooks.replay",
        "Replay Webhook Events",
        "Re-run failed payment-gateway notifications",
        PermissionModule.WEBHOOKS,
    ),
]


# -- BRANCHES / AUDIT --

BRANCH_PERMISSIONS = [
    (
        "branches.view",
        "View Branches",
        "View branches of the tenant",
        PermissionModule.BRANCHES,
    ),
]

AUDIT_PERMISSIONS = [
    (
        "audit.view",
        "View Audit Logs",
        "View security events",
        PermissionModule.AUDIT,
    ),
]


PERMISSION_DEFINITIONS = (
    INVOICE_PERMISSIONS
    + MEMBERSHIP_PERMISSIONS
    + MEMBER_PERMISSIONS
    + COUPON_PERMISSIONS
    + WEBHOOK_PERMISSIONS
    + BRANCH_PERMISSIONS
    + AUDIT_PERMISSIONS
)
