"""Pydantic schemas for Stripe webhook events"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class EventType(str, Enum):
    """Stripe event types this service reacts to"""
    CHARGE_DISPUTE_CREATED = "charge.dispute.created"
    CUSTOMER_SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    CUSTOMER_SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    PAYOUT_PAID = "payout.paid"
    PAYOUT_SUCCEEDED = "payout.succeeded"
    PAYOUT_FAILED = "payout.failed"
    CHARGE_REFUNDED = "charge.refunded"


class WebhookEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: Dict[str, Any]


class WebhookEvent(BaseModel):
    """A verified Stripe event"""
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: int
    livemode: bool = False
    data: WebhookEventData

    @property
    def data_object(self) -> Dict[str, Any]:
        return self.data.object

    @property
    def object_id(self) -> Optional[str]:
        return self.data.object.get("id")
