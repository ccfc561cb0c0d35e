"""Invoice service - invoice creation pipeline and invoice listings.

Creation runs as a strictly sequential pipeline against Stripe:

    retrieve_customer -> create_invoice -> create_invoice_item -> finalize_invoice

A failing step raises ``UpstreamError`` naming the step. The local ``Invoice``
row is written only once Stripe has finalized the invoice, with the status
Stripe reports at that point.
"""
import logging
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.context import AppContext
from app.core.errors import NotFoundError, PersistenceError
from app.models.invoice import Invoice, InvoiceStatus
from app.models.vendor import Vendor
from app.schemas.webhooks import EventType
from app.services.idempotency_service import find_unmatched_event
from app.services.ledger_service import ActivityType, record_activity
from app.services.stripe_service import get_stripe_id, get_stripe_value, to_minor_units

logger = logging.getLogger(__name__)


def invoice_to_dict(invoice: Invoice) -> Dict:
    return {
        "id": invoice.id,
        "stripe_invoice_id": invoice.stripe_invoice_id,
        "customer_id": invoice.customer_id,
        "amount": str(invoice.amount),
        "description": invoice.description,
        "invoice_url": invoice.invoice_url,
        "status": invoice.status,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }


def has_default_payment_method(customer) -> bool:
    invoice_settings = get_stripe_value(customer, "invoice_settings")
    return bool(get_stripe_value(invoice_settings, "default_payment_method"))


def create_invoice(
    vendor: Vendor,
    customer_id: str,
    amount: Decimal,
    description: Optional[str],
    db: Session,
    ctx: AppContext
) -> Dict:
    """Create, fill and finalize a Stripe invoice for one of the vendor's customers"""
    if customer_id not in vendor.customer_ids:
        raise NotFoundError(f"Customer {customer_id} is not associated with vendor {vendor.username}")

    # Shared by the steps so a transport retry cannot create a second invoice or item
    request_key = uuid.uuid4().hex
    amount_cents = to_minor_units(amount)

    customer = ctx.stripe.retrieve_customer(customer_id, expand=["invoice_settings.default_payment_method"])
    charge_automatically = has_default_payment_method(customer)

    draft = ctx.stripe.create_invoice(
        customer_id,
        charge_automatically=charge_automatically,
        days_until_due=ctx.settings.INVOICE_DAYS_UNTIL_DUE,
        idempotency_key=f"invoice-create-{request_key}",
    )
    stripe_invoice_id = get_stripe_id(draft)

    ctx.stripe.create_invoice_item(
        customer_id,
        stripe_invoice_id,
        amount_cents,
        ctx.settings.STRIPE_CURRENCY,
        description,
        idempotency_key=f"invoice-item-{request_key}",
    )

    finalized = ctx.stripe.finalize_invoice(stripe_invoice_id)
    remote_status = get_stripe_value(finalized, "status")
    invoice_url = get_stripe_value(finalized, "hosted_invoice_url")

    status = InvoiceStatus.PAID if remote_status == InvoiceStatus.PAID else InvoiceStatus.OPEN
    if status != InvoiceStatus.PAID and find_unmatched_event(
        db, EventType.INVOICE_PAYMENT_SUCCEEDED.value, stripe_invoice_id
    ):
        logger.info(f"Payment for {stripe_invoice_id} was reported before the invoice was stored")
        status = InvoiceStatus.PAID

    invoice = Invoice(
        stripe_invoice_id=stripe_invoice_id,
        customer_id=customer_id,
        amount=amount,
        description=description,
        invoice_url=invoice_url,
        status=status,
    )
    try:
        db.add(invoice)
        db.flush()
        if status == InvoiceStatus.PAID:
            record_activity(
                db, ActivityType.INVOICE_CREATED_AND_PAID,
                f"Invoice {stripe_invoice_id} created and paid for customer {customer_id}. Amount: {amount}",
                related_id=invoice.id
            )
        else:
            record_activity(
                db, ActivityType.INVOICE_CREATED,
                f"Invoice {stripe_invoice_id} created for customer {customer_id}. Amount: {amount}. "
                + ("Automatic charge pending." if charge_automatically else "Manual send required."),
                related_id=invoice.id
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Stripe invoice {stripe_invoice_id} finalized but not stored locally: {e}")
        raise PersistenceError(f"Invoice {stripe_invoice_id} was created in Stripe but could not be saved", cause=e)

    logger.info(f"Vendor {vendor.username} created invoice {stripe_invoice_id} ({status}) for {customer_id}")
    if charge_automatically:
        message = "Invoice created and will be charged automatically"
    else:
        message = "Invoice created successfully (manual send required)"
    return {
        "message": message,
        "id": invoice.id,
        "invoice_id": stripe_invoice_id,
        "invoice_url": invoice_url,
        "status": status,
    }


def list_vendor_invoices(db: Session, vendor: Vendor) -> List[Dict]:
    customer_ids = vendor.customer_ids
    if not customer_ids:
        return []
    invoices = db.query(Invoice).filter(Invoice.customer_id.in_(customer_ids)).order_by(Invoice.created_at.desc()).all()
    return [invoice_to_dict(i) for i in invoices]


def list_customer_invoices(db: Session, customer_id: str) -> List[Dict]:
    invoices = db.query(Invoice).filter(Invoice.customer_id == customer_id).order_by(Invoice.created_at.desc()).all()
    return [invoice_to_dict(i) for i in invoices]
