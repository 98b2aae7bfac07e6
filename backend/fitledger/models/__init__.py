from .tenancy import Tenant, Branch
from .security import SecurityEvent
from .billing import Invoice, InvoiceItem, InvoicePayment, InvoiceRefund, InvoiceSequence
from .webhooks import WebhookEvent
from .memberships import MembershipPlan, MemberMembership, MembershipLifecycleEvent
from .coupons import Coupon, CouponUsage

__all__ = [
    'Tenant', 'Branch',
    'SecurityEvent',
    'Invoice', 'InvoiceItem', 'InvoicePayment', 'InvoiceRefund', 'InvoiceSequence',
    'WebhookEvent',
    'MembershipPlan', 'MemberMembership', 'MembershipLifecycleEvent',
    'Coupon', 'CouponUsage',
]
