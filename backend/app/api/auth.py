"""Auth API routes"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from app.core.context import AppContext, get_context
from app.core.security import SESSION_COOKIE, set_auth_cookie
from app.db.session import get_db
from app.schemas.auth import LoginRequest, RegisterRequest
from app.services.auth_service import (
    get_current_principal, login_admin, login_vendor, logout, register_vendor, vendor_summary
)

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/register", status_code=201)
def register(
    request_data: RegisterRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    """Register a vendor (awaits admin approval)"""
    register_vendor(request_data.username, request_data.password, db, ctx)
    return {"message": "Vendor registered successfully. Awaiting admin approval."}


@router.post("/login")
def login(request_data: LoginRequest, response: Response, db: Session = Depends(get_db)):
    """Login vendor"""
    try:
        session_id, vendor = login_vendor(request_data.username, request_data.password, db)
    except ValueError as e:
        error_msg = str(e)
        if "awaiting admin approval" in error_msg:
            raise HTTPException(403, error_msg)
        raise HTTPException(401, error_msg)

    set_auth_cookie(response, session_id)
    return {"message": "Login successful", "user": vendor_summary(vendor)}


@router.post("/admin/login")
def admin_login(request_data: LoginRequest, response: Response, ctx: AppContext = Depends(get_context)):
    """Login operator"""
    try:
        session_id = login_admin(request_data.username, request_data.password, ctx)
    except ValueError as e:
        raise HTTPException(401, str(e))

    set_auth_cookie(response, session_id)
    return {"message": "Admin login successful", "user": {"username": ctx.settings.ADMIN_USERNAME, "role": "admin"}}


@router.post("/logout")
def logout_route(request: Request, response: Response):
    """Logout"""
    result = logout(request.cookies.get(SESSION_COOKIE))
    response.delete_cookie(SESSION_COOKIE)
    return result


@router.get("/me")
def get_current_user(request: Request, db: Session = Depends(get_db)):
    """Get current logged-in principal"""
    return get_current_principal(request.cookies.get(SESSION_COOKIE), db)
