"""Vendor model"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class SubscriptionStatus:
    """Subscription lifecycle states as reported by Stripe"""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"

    ALL = (TRIALING, ACTIVE, PAST_DUE, CANCELED, UNPAID, INCOMPLETE, INCOMPLETE_EXPIRED, PAUSED)


class Vendor(Base):
    """Vendor accounts, each paired 1:1 with a Stripe customer"""
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    approved = Column(Boolean, default=False, nullable=False)
    stripe_customer_id = Column(String(255), unique=True, nullable=False, index=True)
    # Cache of Stripe's subscription status; local writes are provisional
    subscription_status = Column(String(50), default=SubscriptionStatus.TRIALING, nullable=False, index=True)
    # `created` of the Stripe event that last set subscription_status (None = provisional only)
    subscription_event_created = Column(BigInteger, nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    stripe_connect_account_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    customers = relationship("VendorCustomer", back_populates="vendor", cascade="all, delete-orphan", order_by="VendorCustomer.id")

    @property
    def customer_ids(self):
        return [c.stripe_customer_id for c in self.customers]


class VendorCustomer(Base):
    """Stripe customers a vendor bills"""
    __tablename__ = "vendor_customers"
    __table_args__ = (UniqueConstraint("vendor_id", "stripe_customer_id", name="uq_vendor_customer"),)

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_customer_id = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    vendor = relationship("Vendor", back_populates="customers")
