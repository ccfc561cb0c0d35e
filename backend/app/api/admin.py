"""Admin API routes"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.security import require_admin
from app.db.session import get_db
from app.services.admin_service import (
    approve_vendor, get_analytics, get_vendor_details, list_pending_vendors, list_vendors
)
from app.services.ledger_service import activity_to_dict, list_activity

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/vendors/pending")
def pending_vendors(admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """Vendors awaiting approval"""
    return list_pending_vendors(db)


@router.get("/vendors")
def all_vendors(
    search: Optional[str] = Query(None),
    approved: Optional[bool] = Query(None),
    subscription_status: Optional[str] = Query(None),
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List vendors with optional filters"""
    return list_vendors(db, search=search, approved=approved, subscription_status=subscription_status)


@router.get("/vendors/{username}")
def vendor_details(username: str, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """Vendor details including customers and invoices"""
    return get_vendor_details(db, username)


@router.post("/vendors/{username}/approve")
def approve(username: str, admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """Approve a vendor"""
    return approve_vendor(db, username, admin)


@router.get("/analytics")
def analytics(admin: str = Depends(require_admin), db: Session = Depends(get_db)):
    """Vendor counts"""
    return get_analytics(db)


@router.get("/activity-log")
def activity_log(
    search: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Activity ledger, newest first"""
    return [activity_to_dict(e) for e in list_activity(db, search=search, event_type=event_type, limit=limit)]
