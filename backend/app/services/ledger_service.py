"""Activity ledger - append-only audit trail.

Ledger writes are best-effort: a failure is reported on the ``ledger`` logger
and counted, but never undoes or fails the operation being audited.
"""
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.metrics import ledger_write_failures_counter
from app.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)
ledger_logger = logging.getLogger("ledger")

INFO = "info"
WARNING = "warning"
ERROR = "error"


class ActivityType:
    """Known ledger event types (the column accepts any string)"""
    VENDOR_REGISTERED = "vendor_registered"
    VENDOR_APPROVED = "vendor_approved"
    CUSTOMER_ADDED = "customer_added"
    INVOICE_CREATED = "invoice_created"
    INVOICE_CREATED_AND_PAID = "invoice_created_and_paid"
    INVOICE_PAID = "invoice_paid"
    INVOICE_PAYMENT_REJECTED = "invoice_payment_rejected"
    VENDOR_SUBSCRIBED = "vendor_subscribed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_STATUS_UPDATED = "subscription_status_updated"
    PAYOUT_REQUESTED = "payout_requested"
    PAYOUT_SUCCEEDED = "payout_succeeded"
    PAYOUT_FAILED = "payout_failed"
    CHARGE_REFUNDED = "charge_refunded"
    FRAUD_WARNING_REFUND = "fraud_warning_refund"
    FRAUD_WARNING_REFUND_FAILED = "fraud_warning_refund_failed"
    RECONCILIATION_LOOKUP_MISS = "reconciliation_lookup_miss"
    RECONCILIATION_FAILED = "reconciliation_failed"


def record_activity(
    db: Session,
    event_type: str,
    description: str,
    related_id: Optional[str] = None,
    severity: str = INFO
) -> Optional[ActivityLog]:
    """Append a ledger entry inside the caller's transaction.

    The entry is flushed in a SAVEPOINT so a failed insert is rolled back on its
    own; the caller's pending changes survive and are committed by the caller.
    Call this after the audited mutation has been flushed.
    """
    entry = ActivityLog(
        event_type=event_type,
        description=description,
        related_id=str(related_id) if related_id is not None else None,
        severity=severity
    )
    try:
        with db.begin_nested():
            db.add(entry)
        return entry
    except SQLAlchemyError as e:
        ledger_write_failures_counter.inc()
        ledger_logger.error(f"Failed to append ledger entry {event_type} ({related_id}): {e}")
        return None


def write_activity(
    db: Session,
    event_type: str,
    description: str,
    related_id: Optional[str] = None,
    severity: str = INFO
) -> Optional[ActivityLog]:
    """Append and commit a standalone ledger entry (no audited mutation in this transaction)."""
    entry = ActivityLog(
        event_type=event_type,
        description=description,
        related_id=str(related_id) if related_id is not None else None,
        severity=severity
    )
    try:
        db.add(entry)
        db.commit()
        return entry
    except SQLAlchemyError as e:
        db.rollback()
        ledger_write_failures_counter.inc()
        ledger_logger.error(f"Failed to write ledger entry {event_type} ({related_id}): {e}")
        return None


def list_activity(
    db: Session,
    search: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 500
) -> List[ActivityLog]:
    """Ledger entries, newest first, optionally filtered by description text and type"""
    query = db.query(ActivityLog)
    if search:
        query = query.filter(ActivityLog.description.ilike(f"%{search}%"))
    if event_type:
        query = query.filter(ActivityLog.event_type == event_type)
    return query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit).all()


def activity_to_dict(entry: ActivityLog) -> dict:
    return {
        "id": entry.id,
        "event_type": entry.event_type,
        "description": entry.description,
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
        "related_id": entry.related_id,
        "severity": entry.severity,
    }
