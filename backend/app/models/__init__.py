"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.vendor import Vendor, VendorCustomer, SubscriptionStatus
from app.models.invoice import Invoice, InvoiceStatus
from app.models.activity_log import ActivityLog
from app.models.stripe_event import StripeEvent

# Export all for convenience
__all__ = [
    "Base", "Vendor", "VendorCustomer", "SubscriptionStatus",
    "Invoice", "InvoiceStatus", "ActivityLog", "StripeEvent"
]
