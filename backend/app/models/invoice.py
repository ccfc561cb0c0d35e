"""Invoice model"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Text
from datetime import datetime, timezone
from app.models.base import Base


class InvoiceStatus:
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"

    ALL = (OPEN, PAID, VOID, UNCOLLECTIBLE)


# Allowed status transitions; paid and void are terminal
INVOICE_TRANSITIONS = {
    InvoiceStatus.OPEN: {InvoiceStatus.PAID, InvoiceStatus.VOID, InvoiceStatus.UNCOLLECTIBLE},
    InvoiceStatus.UNCOLLECTIBLE: {InvoiceStatus.PAID, InvoiceStatus.VOID},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.VOID: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in INVOICE_TRANSITIONS.get(current, set())


class Invoice(Base):
    """Local copy of a Stripe invoice, keyed for reconciliation by stripe_invoice_id"""
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    stripe_invoice_id = Column(String(255), unique=True, nullable=False, index=True)
    customer_id = Column(String(255), nullable=False, index=True)  # Stripe customer ID
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=True)
    invoice_url = Column(String(1024), nullable=True)
    status = Column(String(20), default=InvoiceStatus.OPEN, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
