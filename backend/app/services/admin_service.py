"""Admin service - vendor approval, listings and analytics"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.invoice import Invoice
from app.models.vendor import SubscriptionStatus, Vendor
from app.services.invoice_service import invoice_to_dict
from app.services.ledger_service import ActivityType, record_activity

logger = logging.getLogger(__name__)


def vendor_to_dict(vendor: Vendor) -> Dict:
    return {
        "id": vendor.id,
        "username": vendor.username,
        "approved": vendor.approved,
        "subscription_status": vendor.subscription_status,
        "trial_ends_at": vendor.trial_ends_at.isoformat() if vendor.trial_ends_at else None,
        "stripe_customer_id": vendor.stripe_customer_id,
        "stripe_connect_account_id": vendor.stripe_connect_account_id,
        "created_at": vendor.created_at.isoformat() if vendor.created_at else None,
    }


def get_vendor(db: Session, username: str) -> Vendor:
    vendor = db.query(Vendor).filter(Vendor.username == username).first()
    if not vendor:
        raise NotFoundError(f"Vendor {username} not found")
    return vendor


def list_pending_vendors(db: Session) -> List[Dict]:
    vendors = db.query(Vendor).filter(Vendor.approved.is_(False)).order_by(Vendor.created_at.asc()).all()
    return [vendor_to_dict(v) for v in vendors]


def list_vendors(
    db: Session,
    search: Optional[str] = None,
    approved: Optional[bool] = None,
    subscription_status: Optional[str] = None
) -> List[Dict]:
    """List vendors filtered by username substring (case-insensitive), approval and subscription status"""
    query = db.query(Vendor)
    if search:
        query = query.filter(Vendor.username.ilike(f"%{search}%"))
    if approved is not None:
        query = query.filter(Vendor.approved.is_(approved))
    if subscription_status:
        query = query.filter(Vendor.subscription_status == subscription_status)
    return [vendor_to_dict(v) for v in query.order_by(Vendor.username.asc()).all()]


def get_vendor_details(db: Session, username: str) -> Dict:
    """Vendor with its customer ids and their invoices"""
    vendor = get_vendor(db, username)
    customer_ids = vendor.customer_ids
    invoices = []
    if customer_ids:
        invoices = db.query(Invoice).filter(Invoice.customer_id.in_(customer_ids)).order_by(Invoice.created_at.desc()).all()
    details = vendor_to_dict(vendor)
    details["customers"] = [{"id": customer_id} for customer_id in customer_ids]
    details["invoices"] = [invoice_to_dict(i) for i in invoices]
    return details


def approve_vendor(db: Session, username: str, admin_username: str) -> Dict:
    vendor = get_vendor(db, username)
    if vendor.approved:
        return {"message": f"Vendor {username} is already approved"}

    vendor.approved = True
    db.flush()
    record_activity(db, ActivityType.VENDOR_APPROVED, f"Vendor approved: {username}", related_id=vendor.id)
    db.commit()
    logger.info(f"Vendor {username} approved by {admin_username}")
    return {"message": f"Vendor {username} approved successfully"}


def get_analytics(db: Session) -> Dict:
    total = db.query(func.count(Vendor.id)).scalar() or 0
    approved = db.query(func.count(Vendor.id)).filter(Vendor.approved.is_(True)).scalar() or 0
    trialing = db.query(func.count(Vendor.id)).filter(
        Vendor.subscription_status == SubscriptionStatus.TRIALING
    ).scalar() or 0
    return {
        "total_vendors": total,
        "approved_vendors": approved,
        "trialing_vendors": trialing,
    }
