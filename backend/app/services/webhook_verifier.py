"""Stripe webhook signature verification"""
import logging
from typing import Optional

import stripe
from pydantic import ValidationError

from app.core.errors import AuthenticationError
from app.schemas.webhooks import WebhookEvent

security_logger = logging.getLogger("security")


def verify_event(payload: bytes, sig_header: Optional[str], secret: str, tolerance: int) -> WebhookEvent:
    """Check the ``Stripe-Signature`` header against the raw body and parse the event.

    Uses Stripe's scheme: HMAC-SHA256 over ``"{t}.{body}"`` with the endpoint
    secret, timestamp within ``tolerance`` seconds. Raises ``AuthenticationError``
    on any failure; nothing is trusted from an unverified body.
    """
    if not secret:
        security_logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET is not configured")
        raise AuthenticationError("Webhook secret not configured")
    if not sig_header:
        security_logger.warning("Webhook rejected: missing Stripe-Signature header")
        raise AuthenticationError("Missing Stripe-Signature header")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthenticationError("Invalid payload", cause=e)

    try:
        stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        security_logger.warning(f"Webhook rejected: {e}")
        raise AuthenticationError("Invalid signature", cause=e)

    try:
        return WebhookEvent.model_validate_json(body)
    except ValidationError as e:
        security_logger.warning(f"Webhook rejected: signed payload is not a Stripe event ({e.error_count()} errors)")
        raise AuthenticationError("Invalid payload", cause=e)
