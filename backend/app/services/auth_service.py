"""Authentication service - vendor registration and session login"""
import bcrypt
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.context import AppContext
from app.core.errors import ConflictError
from app.core.metrics import login_attempts_counter
from app.core.security import ROLE_ADMIN, ROLE_VENDOR
from app.db.redis import delete_session, get_session, set_session
from app.models.vendor import SubscriptionStatus, Vendor
from app.services.ledger_service import ActivityType, record_activity
from app.services.stripe_service import get_stripe_id

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    if not password_hash or not password:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash (e.g. misconfigured ADMIN_PASSWORD_HASH)
        security_logger.error("Stored password hash is not a valid bcrypt hash")
        return False


def vendor_summary(vendor: Vendor) -> Dict:
    return {
        "username": vendor.username,
        "approved": vendor.approved,
        "role": ROLE_VENDOR,
        "subscription_status": vendor.subscription_status,
        "trial_ends_at": vendor.trial_ends_at.isoformat() if vendor.trial_ends_at else None,
        "stripe_connect_account_id": vendor.stripe_connect_account_id,
    }


def register_vendor(username: str, password: str, db: Session, ctx: AppContext) -> Vendor:
    """Create the vendor's Stripe customer, then the vendor (unapproved, trialing).

    Raises:
        ConflictError: username already taken
        UpstreamError: Stripe customer creation failed (nothing is stored)
    """
    if db.query(Vendor.id).filter(Vendor.username == username).first():
        raise ConflictError("Vendor with this username already exists")

    customer = ctx.stripe.create_customer(email=username, name=username, description=f"Vendor: {username}")
    customer_id = get_stripe_id(customer)

    vendor = Vendor(
        username=username,
        password_hash=hash_password(password),
        approved=False,
        stripe_customer_id=customer_id,
        subscription_status=SubscriptionStatus.TRIALING,
        trial_ends_at=datetime.now(timezone.utc) + timedelta(days=ctx.settings.TRIAL_PERIOD_DAYS),
    )
    db.add(vendor)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Registration race for {username}; Stripe customer {customer_id} left unused")
        raise ConflictError("Vendor with this username already exists", cause=e)

    record_activity(db, ActivityType.VENDOR_REGISTERED, f"New vendor registered: {username}", related_id=vendor.id)
    db.commit()
    db.refresh(vendor)
    logger.info(f"Registered vendor {username} (Stripe customer {customer_id})")
    return vendor


def _start_session(role: str, username: str) -> str:
    session_id = secrets.token_urlsafe(32)
    set_session(session_id, role, username)
    return session_id


def login_vendor(username: str, password: str, db: Session) -> Tuple[str, Vendor]:
    """Authenticate a vendor. Returns (session_id, vendor).

    Raises ValueError with a user-facing message on failure.
    """
    vendor = db.query(Vendor).filter(Vendor.username == username).first()
    if not vendor or not verify_password(password, vendor.password_hash):
        login_attempts_counter.labels(status="failed", role=ROLE_VENDOR).inc()
        security_logger.warning(f"Failed vendor login for {username}")
        raise ValueError("Invalid credentials")

    if not vendor.approved:
        login_attempts_counter.labels(status="pending_approval", role=ROLE_VENDOR).inc()
        raise ValueError("Your account is awaiting admin approval")

    login_attempts_counter.labels(status="success", role=ROLE_VENDOR).inc()
    return _start_session(ROLE_VENDOR, vendor.username), vendor


def login_admin(username: str, password: str, ctx: AppContext) -> str:
    """Authenticate the operator account configured in settings. Returns session_id."""
    admin_username = ctx.settings.ADMIN_USERNAME
    if not ctx.settings.ADMIN_PASSWORD_HASH:
        security_logger.error("Admin login attempted but ADMIN_PASSWORD_HASH is not configured")
        raise ValueError("Invalid admin credentials")

    if not secrets.compare_digest(username.encode("utf-8"), admin_username.encode("utf-8")) or \
            not verify_password(password, ctx.settings.ADMIN_PASSWORD_HASH):
        login_attempts_counter.labels(status="failed", role=ROLE_ADMIN).inc()
        security_logger.warning(f"Failed admin login for {username}")
        raise ValueError("Invalid admin credentials")

    login_attempts_counter.labels(status="success", role=ROLE_ADMIN).inc()
    return _start_session(ROLE_ADMIN, admin_username)


def logout(session_id: Optional[str]) -> Dict:
    if session_id:
        delete_session(session_id)
    return {"message": "Logged out successfully"}


def get_current_principal(session_id: Optional[str], db: Session) -> Dict:
    """Describe the logged-in principal, or ``{"user": None}``"""
    if not session_id:
        return {"user": None}

    principal = get_session(session_id)
    if not principal:
        return {"user": None}

    if principal.get("role") == ROLE_ADMIN:
        return {"user": {"username": principal["username"], "role": ROLE_ADMIN}}

    vendor = db.query(Vendor).filter(Vendor.username == principal.get("username")).first()
    if not vendor:
        return {"user": None}
    return {"user": vendor_summary(vendor)}
