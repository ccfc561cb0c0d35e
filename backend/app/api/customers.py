"""Customer-facing invoice routes"""
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import ROLE_ADMIN, require_session
from app.db.session import get_db
from app.models.vendor import Vendor, VendorCustomer
from app.services.invoice_service import list_customer_invoices

router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.get("/{customer_id}/invoices")
def customer_invoices(customer_id: str, principal: Dict = Depends(require_session), db: Session = Depends(get_db)):
    """Invoices for a customer (admins, or the vendor that bills the customer)"""
    if principal.get("role") != ROLE_ADMIN:
        owned = db.query(VendorCustomer.id).join(Vendor).filter(
            Vendor.username == principal.get("username"),
            VendorCustomer.stripe_customer_id == customer_id
        ).first()
        if not owned:
            raise HTTPException(404, "Customer not found")
    return list_customer_invoices(db, customer_id)
