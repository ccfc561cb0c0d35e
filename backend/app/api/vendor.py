"""Vendor API routes"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.context import AppContext, get_context
from app.core.security import require_vendor
from app.db.session import get_db
from app.models.vendor import Vendor
from app.schemas.vendor import (
    CreateCustomerRequest, CreateInvoiceRequest, PayoutRequest, SetupIntentRequest, SubscribeRequest
)
from app.services import invoice_service, vendor_service

router = APIRouter(prefix="/api/vendor", tags=["vendor"])
logger = logging.getLogger(__name__)


@router.post("/customers", status_code=201)
def create_customer(
    request_data: CreateCustomerRequest,
    vendor: Vendor = Depends(require_vendor),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    """Create a Stripe customer and associate it with the vendor"""
    return vendor_service.add_customer(vendor, request_data.email, request_data.name, request_data.phone, db, ctx)


@router.post("/customers/{customer_id}")
def associate_customer(customer_id: str, vendor: Vendor = Depends(require_vendor), db: Session = Depends(get_db)):
    """Associate an existing Stripe customer with the vendor"""
    return vendor_service.associate_customer(vendor, customer_id, db)


@router.get("/customers")
def list_customers(vendor: Vendor = Depends(require_vendor), ctx: AppContext = Depends(get_context)):
    return vendor_service.list_customers(vendor, ctx)


@router.post("/setup-intent")
def setup_intent(
    request_data: SetupIntentRequest,
    vendor: Vendor = Depends(require_vendor),
    ctx: AppContext = Depends(get_context)
):
    """SetupIntent for saving a customer's card"""
    return vendor_service.create_customer_setup_intent(vendor, request_data.customer_id, ctx)


@router.post("/invoices")
def create_invoice(
    request_data: CreateInvoiceRequest,
    vendor: Vendor = Depends(require_vendor),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    """Create and finalize a Stripe invoice for one of the vendor's customers"""
    return invoice_service.create_invoice(
        vendor, request_data.customer_id, request_data.amount, request_data.description, db, ctx
    )


@router.get("/invoices")
def list_invoices(vendor: Vendor = Depends(require_vendor), db: Session = Depends(get_db)):
    return invoice_service.list_vendor_invoices(db, vendor)


@router.post("/subscription")
def subscribe(
    request_data: SubscribeRequest,
    vendor: Vendor = Depends(require_vendor),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    """Subscribe the vendor to the platform plan"""
    return vendor_service.subscribe(vendor, request_data.payment_method_id, db, ctx)


@router.post("/subscription/setup-intent")
def subscription_setup_intent(vendor: Vendor = Depends(require_vendor), ctx: AppContext = Depends(get_context)):
    return vendor_service.create_subscription_setup_intent(vendor, ctx)


@router.post("/subscription/cancel")
def cancel_subscription(
    vendor: Vendor = Depends(require_vendor),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    return vendor_service.cancel_subscription(vendor, db, ctx)


@router.post("/connect-account")
def connect_account(
    vendor: Vendor = Depends(require_vendor),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    """Stripe Express onboarding link"""
    return vendor_service.create_connect_account(vendor, db, ctx)


@router.post("/payouts")
def request_payout(
    request_data: PayoutRequest,
    vendor: Vendor = Depends(require_vendor),
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    return vendor_service.request_payout(vendor, request_data.amount, db, ctx)


@router.get("/payouts")
def list_payouts(vendor: Vendor = Depends(require_vendor), ctx: AppContext = Depends(get_context)):
    """Last 10 payouts on the vendor's connected account"""
    return vendor_service.list_payouts(vendor, ctx)
