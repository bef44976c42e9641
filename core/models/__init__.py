"""Core domain models."""

from core.models.billing import (
    TenantBillingState, SubscriptionStatus, tier_defaults,
    BillingOverride, OverrideAction, OverrideOperation,
    DiscountType, DiscountDuration,
    TierChangeRequest, CompRequest, DiscountRequest,
    BillingResult, SeatSyncResult, ActiveDiscount, BillingOverview,
)
from core.models.subscription import (
    SubscriptionItem, ExternalSubscription, ItemMutation,
    CouponSpec, Coupon, PaymentIntent,
)
from core.models.line_item import LineItemInput, InvoiceLineItem
from core.models.payment import PaymentMethod, PaymentCreate, InvoicePayment
from core.models.change_order import (
    ChangeOrder, ChangeOrderCreate, ChangeOrderStatus, ChangeOrderApproval,
)
from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceStatus, InvoiceDetail,
    InvoiceSettings, InvoiceSettingsUpdate, InvoiceFilter, PaymentResult,
)
from core.models.public import (
    PublicInvoiceView, PublicLineItem, PublicPayment, PublicChangeOrder,
    PublicClient, PublicBusiness, PublicPaymentRequest, PublicPaymentSession,
)

__all__ = [
    # Billing
    "TenantBillingState", "SubscriptionStatus", "tier_defaults",
    "BillingOverride", "OverrideAction", "OverrideOperation",
    "DiscountType", "DiscountDuration",
    "TierChangeRequest", "CompRequest", "DiscountRequest",
    "BillingResult", "SeatSyncResult", "ActiveDiscount", "BillingOverview",
    # Subscription
    "SubscriptionItem", "ExternalSubscription", "ItemMutation",
    "CouponSpec", "Coupon", "PaymentIntent",
    # Line item
    "LineItemInput", "InvoiceLineItem",
    # Payment
    "PaymentMethod", "PaymentCreate", "InvoicePayment",
    # Change order
    "ChangeOrder", "ChangeOrderCreate", "ChangeOrderStatus", "ChangeOrderApproval",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus", "InvoiceDetail",
    "InvoiceSettings", "InvoiceSettingsUpdate", "InvoiceFilter", "PaymentResult",
    # Public
    "PublicInvoiceView", "PublicLineItem", "PublicPayment", "PublicChangeOrder",
    "PublicClient", "PublicBusiness", "PublicPaymentRequest", "PublicPaymentSession",
]
