"""Processed-event guard for Stripe webhooks.

A row in ``stripe_events`` means the event's effects (or its lookup miss) were
committed. The unique constraint on ``stripe_event_id`` settles races between
concurrent deliveries of the same event.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.models.stripe_event import StripeEvent
from app.schemas.webhooks import WebhookEvent

logger = logging.getLogger(__name__)


def has_processed(db: Session, event_id: str) -> bool:
    return db.query(StripeEvent.id).filter(StripeEvent.stripe_event_id == event_id).first() is not None


def record_processed(
    db: Session,
    event: WebhookEvent,
    outcome: str,
    error_message: Optional[str] = None
) -> StripeEvent:
    """Add the guard row and flush it.

    Raises ``IntegrityError`` if another delivery already recorded the event.
    """
    record = StripeEvent(
        stripe_event_id=event.id,
        event_type=event.type,
        object_id=event.object_id,
        outcome=outcome,
        payload=event.model_dump(mode="json"),
        error_message=error_message,
        event_created_at=event.created
    )
    db.add(record)
    db.flush()
    return record


def find_unmatched_event(db: Session, event_type: str, object_id: str) -> Optional[StripeEvent]:
    """Return a recorded event of ``event_type`` for ``object_id`` whose local record was missing."""
    return db.query(StripeEvent).filter(
        StripeEvent.event_type == event_type,
        StripeEvent.object_id == object_id,
        StripeEvent.outcome == "not_found"
    ).order_by(StripeEvent.processed_at.desc()).first()


def purge_expired(db: Session, retention_days: int) -> int:
    """Delete guard rows older than the retention window. Returns the number removed.

    The window must exceed Stripe's redelivery horizon (3 days) or replays
    could be applied twice.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    deleted = db.query(StripeEvent).filter(StripeEvent.processed_at < cutoff).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"Purged {deleted} processed Stripe event(s) older than {retention_days} days")
    return deleted
