"""StripeEvent model"""
from sqlalchemy import Column, Integer, BigInteger, String, Text, JSON, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class StripeEvent(Base):
    """Stripe webhook events that have been applied (idempotency guard)"""
    __tablename__ = "stripe_events"

    id = Column(Integer, primary_key=True, index=True)
    stripe_event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    object_id = Column(String(255), nullable=True, index=True)  # id of data.object (invoice, charge, ...)
    outcome = Column(String(50), nullable=False)  # 'applied', 'not_found', 'stale', ...
    payload = Column(JSON, nullable=False)
    error_message = Column(Text, nullable=True)
    event_created_at = Column(BigInteger, nullable=True)  # Stripe's `created` (unix seconds)
    processed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
