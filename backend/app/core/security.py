"""Security dependencies, rate limiting and API access logging"""
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.redis import check_rate_limit as redis_check_rate_limit, get_session
from app.db.session import get_db
from app.models.vendor import Vendor

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")

SESSION_COOKIE = "session_id"
ROLE_VENDOR = "vendor"
ROLE_ADMIN = "admin"


def require_session(request: Request) -> Dict:
    """Dependency: Require a logged-in session, return its principal ({'role', 'username'})"""
    session_id = request.cookies.get(SESSION_COOKIE)

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    principal = get_session(session_id)
    if not principal:
        raise HTTPException(401, "Session expired. Please log in again.")

    return principal


def require_admin(principal: Dict = Depends(require_session)) -> str:
    """Dependency: Require an admin session, return the admin username"""
    if principal.get("role") != ROLE_ADMIN:
        security_logger.warning(f"Admin access denied for {principal.get('role')} {principal.get('username')}")
        raise HTTPException(403, "Admin access required")
    return principal["username"]


def require_vendor(principal: Dict = Depends(require_session), db: Session = Depends(get_db)) -> Vendor:
    """Dependency: Require an approved vendor session, return the Vendor"""
    if principal.get("role") != ROLE_VENDOR:
        raise HTTPException(403, "Vendor access required")

    vendor = db.query(Vendor).filter(Vendor.username == principal.get("username")).first()
    if not vendor:
        raise HTTPException(401, "Session expired. Please log in again.")
    if not vendor.approved:
        raise HTTPException(403, "Vendor account is pending approval")
    return vendor


def get_client_identifier(request: Request, session_id: Optional[str] = None) -> str:
    """Get a unique identifier for rate limiting"""
    if session_id:
        return f"session:{session_id}"

    # Fallback to IP address
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit

    Args:
        identifier: Client identifier (session ID or IP)
        strict: If True, use stricter rate limits for state-changing operations

    Returns:
        True if within limit, False if exceeded
    """
    return redis_check_rate_limit(identifier, strict=strict)


def log_api_access(
    request: Request,
    session_id: Optional[str] = None,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "session_id": session_id[:16] + "..." if session_id else None,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")


def set_auth_cookie(response: Response, session_id: str) -> None:
    """Set the session cookie"""
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_id,
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=60 * 60 * 24  # matches the Redis session TTL
    )
