"""Vendor service - customers, subscription, Connect account and payouts"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.context import AppContext
from app.core.errors import ConflictError, NotFoundError, PreconditionError, UpstreamError
from app.models.vendor import Vendor, VendorCustomer
from app.services.ledger_service import ActivityType, record_activity
from app.services.stripe_service import get_stripe_id, get_stripe_value, to_minor_units

logger = logging.getLogger(__name__)


# Customers

def _associate(db: Session, vendor: Vendor, customer_id: str) -> None:
    if customer_id in vendor.customer_ids:
        raise ConflictError("Customer already associated with this vendor")
    vendor.customers.append(VendorCustomer(stripe_customer_id=customer_id))
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Customer already associated with this vendor", cause=e)


def add_customer(vendor: Vendor, email: Optional[str], name: Optional[str], phone: Optional[str],
                 db: Session, ctx: AppContext) -> Dict:
    """Create a Stripe customer and associate it with the vendor"""
    customer = ctx.stripe.create_customer(email=email, name=name, phone=phone)
    customer_id = get_stripe_id(customer)
    _associate(db, vendor, customer_id)
    record_activity(
        db, ActivityType.CUSTOMER_ADDED,
        f"New customer added by {vendor.username}: {name} ({email})",
        related_id=customer_id
    )
    db.commit()
    return {"message": "Customer created successfully", "customer_id": customer_id}


def associate_customer(vendor: Vendor, customer_id: str, db: Session) -> Dict:
    """Associate an existing Stripe customer id with the vendor"""
    _associate(db, vendor, customer_id)
    db.commit()
    logger.info(f"Customer {customer_id} associated with vendor {vendor.username}")
    return {"message": "Customer associated with vendor successfully"}


def list_customers(vendor: Vendor, ctx: AppContext) -> List[Dict]:
    """The vendor's customers with name, email and last paid invoice from Stripe.

    A customer that cannot be fetched is listed with a placeholder entry.
    """
    enriched = []
    for customer_id in vendor.customer_ids:
        try:
            customer = ctx.stripe.retrieve_customer(customer_id)
            paid = ctx.stripe.list_paid_invoices(customer_id, limit=1)
        except UpstreamError as e:
            logger.warning(f"Could not load Stripe customer {customer_id}: {e.cause}")
            enriched.append({"id": customer_id, "name": f"Customer {customer_id} (unavailable)",
                             "email": None, "phone": None, "last_invoice": None})
            continue

        invoices = get_stripe_value(paid, "data", [])
        last = invoices[0] if invoices else None
        enriched.append({
            "id": get_stripe_id(customer),
            "name": get_stripe_value(customer, "name"),
            "email": get_stripe_value(customer, "email"),
            "phone": get_stripe_value(customer, "phone"),
            "last_invoice": {
                "id": get_stripe_id(last),
                "amount": (get_stripe_value(last, "amount_due", 0)) / 100,
                "currency": (get_stripe_value(last, "currency", "") or "").upper(),
                "date": datetime.fromtimestamp(get_stripe_value(last, "created", 0), tz=timezone.utc).isoformat(),
                "status": get_stripe_value(last, "status"),
                "url": get_stripe_value(last, "hosted_invoice_url"),
            } if last else None,
        })
    return enriched


def create_customer_setup_intent(vendor: Vendor, customer_id: str, ctx: AppContext) -> Dict:
    if customer_id not in vendor.customer_ids:
        raise NotFoundError(f"Customer {customer_id} is not associated with vendor {vendor.username}")
    setup_intent = ctx.stripe.create_setup_intent(customer_id)
    return {"client_secret": get_stripe_value(setup_intent, "client_secret")}


# Subscription

def create_subscription_setup_intent(vendor: Vendor, ctx: AppContext) -> Dict:
    setup_intent = ctx.stripe.create_setup_intent(vendor.stripe_customer_id)
    return {"client_secret": get_stripe_value(setup_intent, "client_secret")}


def subscribe(vendor: Vendor, payment_method_id: str, db: Session, ctx: AppContext) -> Dict:
    """Attach the card, make it the default and subscribe the vendor to the platform plan.

    The local status written here is provisional; subscription webhooks are authoritative.
    """
    if not ctx.settings.STRIPE_SUBSCRIPTION_PRICE_ID:
        raise PreconditionError("Subscription plan is not configured")

    ctx.stripe.attach_payment_method(payment_method_id, vendor.stripe_customer_id)
    ctx.stripe.set_default_payment_method(vendor.stripe_customer_id, payment_method_id)
    subscription = ctx.stripe.create_subscription(vendor.stripe_customer_id, ctx.settings.STRIPE_SUBSCRIPTION_PRICE_ID)
    status = get_stripe_value(subscription, "status")

    if status:
        vendor.subscription_status = status
    db.flush()
    record_activity(
        db, ActivityType.VENDOR_SUBSCRIBED,
        f"Vendor {vendor.username} subscribed to plan. Status: {status}",
        related_id=vendor.id
    )
    db.commit()
    logger.info(f"Vendor {vendor.username} subscribed: {status}")
    return {
        "message": "Subscription created",
        "subscription_id": get_stripe_id(subscription),
        "status": status,
    }


def cancel_subscription(vendor: Vendor, db: Session, ctx: AppContext) -> Dict:
    subscriptions = ctx.stripe.list_active_subscriptions(vendor.stripe_customer_id, limit=1)
    active = get_stripe_value(subscriptions, "data", [])
    if not active:
        raise PreconditionError("No active subscription found for this vendor")

    canceled = ctx.stripe.cancel_subscription(get_stripe_id(active[0]))
    status = get_stripe_value(canceled, "status")

    if status:
        vendor.subscription_status = status
    db.flush()
    record_activity(
        db, ActivityType.SUBSCRIPTION_CANCELED,
        f"Vendor {vendor.username} canceled subscription. Status: {status}",
        related_id=vendor.id
    )
    db.commit()
    logger.info(f"Vendor {vendor.username} canceled subscription {get_stripe_id(canceled)}")
    return {"message": "Subscription canceled", "status": status}


# Connect & payouts

def create_connect_account(vendor: Vendor, db: Session, ctx: AppContext) -> Dict:
    """Create (once) an Express account for the vendor and return an onboarding link"""
    if not vendor.stripe_connect_account_id:
        account = ctx.stripe.create_connect_account(email=vendor.username)
        vendor.stripe_connect_account_id = get_stripe_id(account)
        db.commit()
        logger.info(f"Created Connect account {vendor.stripe_connect_account_id} for {vendor.username}")

    link = ctx.stripe.create_account_link(
        vendor.stripe_connect_account_id,
        refresh_url=ctx.settings.CONNECT_REFRESH_URL,
        return_url=ctx.settings.CONNECT_RETURN_URL,
    )
    return {"url": get_stripe_value(link, "url"), "account_id": vendor.stripe_connect_account_id}


def request_payout(vendor: Vendor, amount: Decimal, db: Session, ctx: AppContext) -> Dict:
    if not vendor.stripe_connect_account_id:
        raise PreconditionError("Stripe Express account not connected for this vendor")

    payout = ctx.stripe.create_payout(
        vendor.stripe_connect_account_id,
        to_minor_units(amount),
        ctx.settings.STRIPE_CURRENCY,
        idempotency_key=f"payout-{uuid.uuid4().hex}",
    )
    payout_id = get_stripe_id(payout)
    record_activity(
        db, ActivityType.PAYOUT_REQUESTED,
        f"Payout of {amount} requested by {vendor.username}. Payout ID: {payout_id}",
        related_id=payout_id
    )
    db.commit()
    return {"message": f"Payout of {amount} requested successfully", "payout_id": payout_id}


def list_payouts(vendor: Vendor, ctx: AppContext) -> List[Dict]:
    if not vendor.stripe_connect_account_id:
        raise PreconditionError("Stripe Express account not connected for this vendor")

    payouts = ctx.stripe.list_payouts(vendor.stripe_connect_account_id, limit=10)
    return [{
        "id": get_stripe_id(p),
        "amount": get_stripe_value(p, "amount", 0) / 100,
        "currency": (get_stripe_value(p, "currency", "") or "").upper(),
        "status": get_stripe_value(p, "status"),
        "arrival_date": get_stripe_value(p, "arrival_date"),
    } for p in get_stripe_value(payouts, "data", [])]
