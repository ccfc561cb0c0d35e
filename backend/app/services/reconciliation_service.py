"""Apply Stripe-reported state to local records.

Each handler runs inside the webhook transaction: it mutates and flushes local
rows, then returns the ledger entries describing what changed. A missing local
record is reported with ``NotFoundError`` so the caller can acknowledge the
event and log the miss.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.invoice import Invoice, InvoiceStatus, can_transition
from app.models.vendor import SubscriptionStatus, Vendor
from app.schemas.webhooks import EventType, WebhookEvent
from app.services.ledger_service import INFO, WARNING, ActivityType
from app.services.stripe_service import get_stripe_id

logger = logging.getLogger(__name__)


@dataclass
class LedgerEntry:
    event_type: str
    description: str
    related_id: Optional[str] = None
    severity: str = INFO


@dataclass
class Reconciliation:
    """Outcome of applying one event: a short outcome tag plus ledger entries to append"""
    outcome: str
    entries: List[LedgerEntry] = field(default_factory=list)


def format_amount(minor_units: Optional[int], currency: Optional[str]) -> str:
    return f"{(minor_units or 0) / 100:.2f} {(currency or '').upper()}".strip()


def apply_subscription_status(db: Session, event: WebhookEvent, prepared=None) -> Reconciliation:
    """Mirror Stripe's subscription status onto the vendor, last writer by event time wins."""
    subscription = event.data_object
    customer_id = get_stripe_id(subscription.get("customer"))
    status = subscription.get("status")
    if not status and event.type == EventType.CUSTOMER_SUBSCRIPTION_DELETED.value:
        status = SubscriptionStatus.CANCELED
    if not status:
        raise NotFoundError(f"Subscription {subscription.get('id')} carries no status")

    vendor = db.query(Vendor).filter(Vendor.stripe_customer_id == customer_id).first()
    if not vendor:
        raise NotFoundError(f"No vendor for Stripe customer {customer_id}")

    if vendor.subscription_event_created is not None and event.created < vendor.subscription_event_created:
        logger.info(
            f"Ignoring stale {event.type} {event.id} for vendor {vendor.username}: "
            f"event created {event.created} < last applied {vendor.subscription_event_created}"
        )
        return Reconciliation("stale")

    previous = vendor.subscription_status
    vendor.subscription_status = status
    vendor.subscription_event_created = event.created
    db.flush()
    logger.info(f"Vendor {vendor.username} subscription status {previous} -> {status}")

    return Reconciliation("applied", [LedgerEntry(
        ActivityType.SUBSCRIPTION_STATUS_UPDATED,
        f"Vendor {vendor.username} subscription status updated to {status}.",
        related_id=vendor.id
    )])


def apply_invoice_paid(db: Session, event: WebhookEvent, prepared=None) -> Reconciliation:
    """Mark the local invoice paid. Replays of an already-paid invoice change nothing."""
    stripe_invoice_id = event.object_id
    invoice = db.query(Invoice).filter(Invoice.stripe_invoice_id == stripe_invoice_id).first()
    if not invoice:
        raise NotFoundError(f"No local invoice for Stripe invoice {stripe_invoice_id}")

    if invoice.status == InvoiceStatus.PAID:
        logger.info(f"Invoice {stripe_invoice_id} already paid, nothing to do")
        return Reconciliation("unchanged")

    if not can_transition(invoice.status, InvoiceStatus.PAID):
        logger.warning(f"Invoice {stripe_invoice_id} is {invoice.status}; refusing transition to paid")
        return Reconciliation("rejected", [LedgerEntry(
            ActivityType.INVOICE_PAYMENT_REJECTED,
            f"Payment reported for invoice {stripe_invoice_id} but local status is {invoice.status}.",
            related_id=invoice.id,
            severity=WARNING
        )])

    invoice.status = InvoiceStatus.PAID
    db.flush()

    return Reconciliation("applied", [LedgerEntry(
        ActivityType.INVOICE_PAID,
        f"Invoice {stripe_invoice_id} paid successfully.",
        related_id=invoice.id
    )])


def record_payout_succeeded(db: Session, event: WebhookEvent, prepared=None) -> Reconciliation:
    payout = event.data_object
    return Reconciliation("applied", [LedgerEntry(
        ActivityType.PAYOUT_SUCCEEDED,
        f"Payout {payout.get('id')} of {format_amount(payout.get('amount'), payout.get('currency'))} succeeded.",
        related_id=payout.get("id")
    )])


def record_payout_failed(db: Session, event: WebhookEvent, prepared=None) -> Reconciliation:
    payout = event.data_object
    reason = payout.get("failure_message") or payout.get("failure_code") or "N/A"
    return Reconciliation("applied", [LedgerEntry(
        ActivityType.PAYOUT_FAILED,
        f"Payout {payout.get('id')} of {format_amount(payout.get('amount'), payout.get('currency'))} "
        f"failed. Reason: {reason}",
        related_id=payout.get("id"),
        severity=WARNING
    )])


def record_charge_refunded(db: Session, event: WebhookEvent, prepared=None) -> Reconciliation:
    charge = event.data_object
    return Reconciliation("applied", [LedgerEntry(
        ActivityType.CHARGE_REFUNDED,
        f"Charge {charge.get('id')} refunded "
        f"({format_amount(charge.get('amount_refunded'), charge.get('currency'))}).",
        related_id=charge.get("id")
    )])
