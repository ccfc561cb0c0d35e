"""Automatic refund of disputed charges.

A ``charge.dispute.created`` event triggers a refund of the disputed charge.
The refund call happens once per delivery, before the webhook transaction;
its outcome is then written to the ledger inside the transaction. A failed
refund is reported to operators and the event is still acknowledged (there
is no automatic retry).
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from app.core.context import AppContext
from app.core.errors import UpstreamError
from app.core.metrics import refund_attempts_counter
from app.schemas.webhooks import WebhookEvent
from app.services.ledger_service import ERROR, WARNING, ActivityType
from app.services.reconciliation_service import LedgerEntry, Reconciliation
from app.services.stripe_service import get_stripe_id, get_stripe_value

logger = logging.getLogger(__name__)
alert_logger = logging.getLogger("alerts")

# Stripe error code for a refund that already covers the whole charge
ALREADY_REFUNDED = "charge_already_refunded"


class DisputeState(str, Enum):
    OBSERVED = "dispute_observed"
    AUTO_REFUNDED = "auto_refunded"
    REFUND_FAILED = "refund_failed"


@dataclass
class DisputeResolution:
    dispute_id: Optional[str]
    charge_id: Optional[str]
    state: DisputeState = DisputeState.OBSERVED
    refund_id: Optional[str] = None
    reason: Optional[str] = None


def refund_idempotency_key(dispute_id: str) -> str:
    return f"dispute-refund-{dispute_id}"


def _error_code(error: UpstreamError) -> Optional[str]:
    return getattr(error.cause, "code", None)


def prepare_dispute_refund(event: WebhookEvent, ctx: AppContext) -> DisputeResolution:
    """Refund the disputed charge. Never raises for processor failures."""
    dispute = event.data_object
    resolution = DisputeResolution(
        dispute_id=dispute.get("id"),
        charge_id=get_stripe_id(dispute.get("charge"))
    )
    alert_logger.warning(
        f"Fraud warning: dispute {resolution.dispute_id} opened on charge {resolution.charge_id} "
        f"(reason: {dispute.get('reason', 'unknown')})"
    )

    if not resolution.charge_id:
        resolution.state = DisputeState.REFUND_FAILED
        resolution.reason = "dispute carries no charge reference"
    else:
        try:
            refund = ctx.stripe.create_refund(
                resolution.charge_id,
                idempotency_key=refund_idempotency_key(resolution.dispute_id or event.id)
            )
            resolution.state = DisputeState.AUTO_REFUNDED
            resolution.refund_id = get_stripe_value(refund, "id")
        except UpstreamError as e:
            if _error_code(e) == ALREADY_REFUNDED:
                logger.info(f"Charge {resolution.charge_id} was already refunded")
                resolution.state = DisputeState.AUTO_REFUNDED
            else:
                resolution.state = DisputeState.REFUND_FAILED
                resolution.reason = str(e.cause or e.message)

    refund_attempts_counter.labels(outcome=resolution.state.value).inc()
    if resolution.state == DisputeState.REFUND_FAILED:
        alert_logger.error(
            f"ADMIN NOTIFICATION: automatic refund failed for charge {resolution.charge_id} "
            f"(dispute {resolution.dispute_id}): {resolution.reason}. Manual action required."
        )
    else:
        logger.info(f"Refunded charge {resolution.charge_id} for dispute {resolution.dispute_id}")
    return resolution


def apply_dispute_outcome(db: Session, event: WebhookEvent, resolution: DisputeResolution) -> Reconciliation:
    if resolution.state == DisputeState.AUTO_REFUNDED:
        entry = LedgerEntry(
            ActivityType.FRAUD_WARNING_REFUND,
            f"Dispute {resolution.dispute_id} created for charge {resolution.charge_id}. "
            f"Charge automatically refunded (refund {resolution.refund_id}).",
            related_id=resolution.charge_id,
            severity=WARNING
        )
    else:
        entry = LedgerEntry(
            ActivityType.FRAUD_WARNING_REFUND_FAILED,
            f"Dispute {resolution.dispute_id} created for charge {resolution.charge_id}. "
            f"Automatic refund failed: {resolution.reason}",
            related_id=resolution.charge_id,
            severity=ERROR
        )
    return Reconciliation(resolution.state.value, [entry])
