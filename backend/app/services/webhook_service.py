"""Stripe webhook processing.

Pipeline for one delivery: verify, route by event type, skip events already
recorded, take the per-event lock, run the handler's remote side effects once,
then apply local changes together with the idempotency guard and ledger
entries in a single transaction (retried on transient database errors).

Every outcome other than a failed verification or a held lock is acknowledged
so Stripe does not redeliver an event that can never succeed. A held lock is
answered with 409 so the event is redelivered once the other holder finishes.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import redis
from opentelemetry import trace
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.context import AppContext
from app.core.errors import NotFoundError, PersistenceError
from app.core.metrics import webhook_events_counter
from app.db.redis import acquire_lock, release_lock
from app.schemas.webhooks import EventType, WebhookEvent
from app.services import fraud_service, reconciliation_service
from app.services.idempotency_service import has_processed, record_processed
from app.services.ledger_service import ERROR, WARNING, ActivityType, record_activity, write_activity
from app.services.reconciliation_service import LedgerEntry, Reconciliation
from app.services.webhook_verifier import verify_event

logger = logging.getLogger(__name__)
webhook_logger = logging.getLogger("webhooks")
tracer = trace.get_tracer(__name__)

IGNORED = "ignored"
ALREADY_PROCESSED = "already_processed"
IN_PROGRESS = "in_progress"
NOT_FOUND = "not_found"
ERROR_LOGGED = "error_logged"


@dataclass(frozen=True)
class EventHandler:
    """``prepare`` performs remote side effects once per delivery; ``apply`` runs in the transaction.

    When ``prepare`` is set, ``apply`` only describes the prepared outcome and
    leaves the session untouched, so it can also be used after a failed transaction.
    """
    apply: Callable[[Session, WebhookEvent, Any], Reconciliation]
    prepare: Optional[Callable[[WebhookEvent, AppContext], Any]] = None


EVENT_HANDLERS: Dict[EventType, EventHandler] = {
    EventType.CHARGE_DISPUTE_CREATED: EventHandler(
        apply=fraud_service.apply_dispute_outcome,
        prepare=fraud_service.prepare_dispute_refund,
    ),
    EventType.CUSTOMER_SUBSCRIPTION_UPDATED: EventHandler(apply=reconciliation_service.apply_subscription_status),
    EventType.CUSTOMER_SUBSCRIPTION_DELETED: EventHandler(apply=reconciliation_service.apply_subscription_status),
    EventType.INVOICE_PAYMENT_SUCCEEDED: EventHandler(apply=reconciliation_service.apply_invoice_paid),
    EventType.PAYOUT_PAID: EventHandler(apply=reconciliation_service.record_payout_succeeded),
    EventType.PAYOUT_SUCCEEDED: EventHandler(apply=reconciliation_service.record_payout_succeeded),
    EventType.PAYOUT_FAILED: EventHandler(apply=reconciliation_service.record_payout_failed),
    EventType.CHARGE_REFUNDED: EventHandler(apply=reconciliation_service.record_charge_refunded),
}


class DuplicateDelivery(Exception):
    """Another delivery of the same event committed its guard row first"""


def resolve_handler(event_type: str) -> Optional[EventHandler]:
    try:
        return EVENT_HANDLERS[EventType(event_type)]
    except ValueError:
        return None


def _acknowledge(event: WebhookEvent, status: str) -> dict:
    webhook_events_counter.labels(event_type=event.type, outcome=status).inc()
    return {"received": True, "status": status}


def _acquire_event_lock(lock_key: str, timeout: int) -> Union[str, bool, None]:
    """The holder token, False when another delivery holds the lock, None when Redis is unreachable"""
    try:
        return acquire_lock(lock_key, timeout) or False
    except redis.RedisError as e:
        webhook_logger.warning(f"Redis unavailable for {lock_key}, relying on the guard constraint: {e}")
        return None


def _release_event_lock(lock_key: str, token: str) -> None:
    try:
        if not release_lock(lock_key, token):
            webhook_logger.warning(f"{lock_key} expired before release; left to its current holder")
    except redis.RedisError as e:
        webhook_logger.warning(f"Failed to release {lock_key} (expires on its own): {e}")


def _record_guard(db: Session, event: WebhookEvent, outcome: str, error_message: Optional[str] = None) -> None:
    try:
        record_processed(db, event, outcome, error_message)
    except IntegrityError:
        db.rollback()
        if has_processed(db, event.id):
            raise DuplicateDelivery(event.id)
        raise


def _write_entries(db: Session, entries) -> None:
    for entry in entries:
        record_activity(db, entry.event_type, entry.description, entry.related_id, entry.severity)


def _apply_once(db: Session, event: WebhookEvent, handler: EventHandler, prepared: Any) -> Reconciliation:
    try:
        try:
            result = handler.apply(db, event, prepared)
        except NotFoundError as e:
            db.rollback()
            webhook_logger.warning(f"{event.type} {event.id}: {e.message}")
            result = Reconciliation(NOT_FOUND, [LedgerEntry(
                ActivityType.RECONCILIATION_LOOKUP_MISS,
                f"{event.type} {event.id}: {e.message}",
                related_id=event.object_id,
                severity=WARNING
            )])
            _record_guard(db, event, NOT_FOUND, e.message)
        else:
            _record_guard(db, event, result.outcome)
        _write_entries(db, result.entries)
        db.commit()
        return result
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to persist {event.type} {event.id}", cause=e)


def _write_failure(db: Session, event: WebhookEvent, handler: EventHandler, prepared: Any,
                   cause: Optional[BaseException]) -> None:
    """Ledger entries for an event whose transaction was given up.

    Remote side effects from ``prepare`` already happened, so their outcome is
    written on its own before the failure itself.
    """
    if handler.prepare is not None and prepared is not None:
        try:
            outcome = handler.apply(db, event, prepared)
        except Exception as e:
            webhook_logger.error(f"Could not describe prepared outcome of {event.type} {event.id}: {e}")
        else:
            for entry in outcome.entries:
                write_activity(db, entry.event_type, entry.description, entry.related_id, entry.severity)

    write_activity(
        db,
        ActivityType.RECONCILIATION_FAILED,
        f"Failed to apply {event.type} {event.id}: {cause}",
        related_id=event.object_id,
        severity=ERROR
    )


def _apply_with_retries(db: Session, event: WebhookEvent, handler: EventHandler, prepared: Any,
                        attempts: int) -> Reconciliation:
    retrying = Retrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_exponential(multiplier=0.05, max=1),
        retry=retry_if_exception_type(PersistenceError),
        before_sleep=lambda state: webhook_logger.warning(
            f"Retrying {event.type} {event.id} (attempt {state.attempt_number} failed)"
        ),
        reraise=True,
    )
    return retrying(_apply_once, db, event, handler, prepared)


def process_stripe_webhook(payload: bytes, sig_header: Optional[str], db: Session, ctx: AppContext) -> dict:
    """Process one webhook delivery and return the acknowledgement body.

    Raises ``AuthenticationError`` only when the signature does not verify.
    """
    event = verify_event(payload, sig_header, ctx.webhook_secret, ctx.webhook_tolerance)
    webhook_logger.info(f"Received {event.type} {event.id} (livemode={event.livemode})")

    with tracer.start_as_current_span("stripe.webhook") as span:
        span.set_attribute("stripe.event_id", event.id)
        span.set_attribute("stripe.event_type", event.type)
        ack = handle_event(event, db, ctx)
        span.set_attribute("stripe.outcome", ack["status"])
        return ack


def handle_event(event: WebhookEvent, db: Session, ctx: AppContext) -> dict:
    """Route a verified event through the guard, lock and handler"""
    handler = resolve_handler(event.type)
    if handler is None:
        webhook_logger.info(f"Ignoring unhandled event type {event.type}")
        return _acknowledge(event, IGNORED)

    if has_processed(db, event.id):
        webhook_logger.info(f"Event {event.id} already processed")
        return _acknowledge(event, ALREADY_PROCESSED)

    lock_key = f"webhook_lock:{event.id}"
    locked = _acquire_event_lock(lock_key, ctx.settings.WEBHOOK_LOCK_TIMEOUT)
    if locked is False:
        webhook_logger.info(f"Event {event.id} is being processed by another delivery")
        return _acknowledge(event, IN_PROGRESS)

    try:
        # The previous holder may have committed between the check and the lock
        if has_processed(db, event.id):
            return _acknowledge(event, ALREADY_PROCESSED)

        prepared = handler.prepare(event, ctx) if handler.prepare else None

        try:
            result = _apply_with_retries(db, event, handler, prepared, ctx.settings.WEBHOOK_PERSIST_ATTEMPTS)
        except DuplicateDelivery:
            webhook_logger.info(f"Event {event.id} committed by a concurrent delivery")
            return _acknowledge(event, ALREADY_PROCESSED)
        except PersistenceError as e:
            webhook_logger.error(f"Giving up on {event.type} {event.id}: {e.message} ({e.cause})")
            _write_failure(db, event, handler, prepared, e.cause)
            return _acknowledge(event, ERROR_LOGGED)
        except Exception as e:
            db.rollback()
            webhook_logger.error(f"Handler for {event.type} {event.id} failed: {e}", exc_info=True)
            _write_failure(db, event, handler, prepared, e)
            return _acknowledge(event, ERROR_LOGGED)

        webhook_logger.info(f"Processed {event.type} {event.id}: {result.outcome}")
        return _acknowledge(event, result.outcome)
    finally:
        if locked:
            _release_event_lock(lock_key, locked)
