"""Outbound Stripe operations.

Every call goes through ``StripeGateway._call`` which applies the configured
request timeout, retries transport-level failures once (same idempotency key)
and converts any ``stripe.StripeError`` into an ``UpstreamError`` naming the
step that failed.
"""
import logging
import stripe
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.errors import UpstreamError

logger = logging.getLogger(__name__)

# Failures where the request may not have reached Stripe, safe to retry with an idempotency key
TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


def configure_stripe(timeout_seconds: float) -> None:
    """Install an HTTP client with an explicit timeout; retries are handled by StripeGateway."""
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
    stripe.max_network_retries = 0


def to_minor_units(amount) -> int:
    """Convert a decimal currency amount (e.g. 50.00) into cents."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, None)
    return default if value is None else value


def get_stripe_id(obj: Any) -> Optional[str]:
    """Return the id of an expandable field, whether it holds an id string or an object."""
    if obj is None or isinstance(obj, str):
        return obj
    return get_stripe_value(obj, "id")


class StripeGateway:
    """Thin wrapper over the Stripe API used by forward actions and the fraud handler"""

    def __init__(self, api_key: str, max_retries: int = 1):
        self.api_key = api_key
        self.max_retries = max_retries

    def _call(self, step: str, fn, *args, **params):
        if not self.api_key:
            raise UpstreamError("Stripe is not configured", step=step)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        try:
            return retrying(fn, *args, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe {step} failed: {e}")
            raise UpstreamError(f"Stripe {step} failed", step=step, cause=e)

    # Customers

    def create_customer(self, email: Optional[str], name: Optional[str], phone: Optional[str] = None,
                        description: Optional[str] = None):
        params = {"email": email, "name": name, "phone": phone, "description": description}
        return self._call("create_customer", stripe.Customer.create, **{k: v for k, v in params.items() if v})

    def retrieve_customer(self, customer_id: str, expand: Optional[List[str]] = None):
        return self._call("retrieve_customer", stripe.Customer.retrieve, customer_id, expand=expand or [])

    def set_default_payment_method(self, customer_id: str, payment_method_id: str):
        return self._call(
            "set_default_payment_method",
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    # Payment methods

    def create_setup_intent(self, customer_id: str):
        return self._call("create_setup_intent", stripe.SetupIntent.create,
                          customer=customer_id, payment_method_types=["card"])

    def attach_payment_method(self, payment_method_id: str, customer_id: str):
        return self._call("attach_payment_method", stripe.PaymentMethod.attach,
                          payment_method_id, customer=customer_id)

    # Invoices

    def create_invoice(self, customer_id: str, charge_automatically: bool, days_until_due: int,
                       idempotency_key: Optional[str] = None):
        params: Dict[str, Any] = {"customer": customer_id}
        if charge_automatically:
            params.update(collection_method="charge_automatically", auto_advance=True)
        else:
            params.update(collection_method="send_invoice", days_until_due=days_until_due)
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return self._call("create_invoice", stripe.Invoice.create, **params)

    def create_invoice_item(self, customer_id: str, invoice_id: str, amount_cents: int, currency: str,
                            description: Optional[str], idempotency_key: Optional[str] = None):
        params: Dict[str, Any] = {}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return self._call("create_invoice_item", stripe.InvoiceItem.create,
                          customer=customer_id, invoice=invoice_id, amount=amount_cents,
                          currency=currency, description=description, **params)

    def finalize_invoice(self, invoice_id: str):
        return self._call("finalize_invoice", stripe.Invoice.finalize_invoice, invoice_id)

    def list_paid_invoices(self, customer_id: str, limit: int = 1):
        return self._call("list_invoices", stripe.Invoice.list, customer=customer_id, status="paid", limit=limit)

    # Subscriptions

    def create_subscription(self, customer_id: str, price_id: str):
        return self._call("create_subscription", stripe.Subscription.create,
                          customer=customer_id, items=[{"price": price_id}],
                          expand=["latest_invoice.payment_intent"])

    def list_active_subscriptions(self, customer_id: str, limit: int = 1):
        return self._call("list_subscriptions", stripe.Subscription.list,
                          customer=customer_id, status="active", limit=limit)

    def cancel_subscription(self, subscription_id: str):
        return self._call("cancel_subscription", stripe.Subscription.cancel, subscription_id)

    # Connect & payouts

    def create_connect_account(self, email: str):
        return self._call("create_connect_account", stripe.Account.create,
                          type="express", country="US", email=email,
                          capabilities={"card_payments": {"requested": True}, "transfers": {"requested": True}})

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str):
        return self._call("create_account_link", stripe.AccountLink.create,
                          account=account_id, refresh_url=refresh_url, return_url=return_url,
                          type="account_onboarding")

    def create_payout(self, account_id: str, amount_cents: int, currency: str, idempotency_key: Optional[str] = None):
        params: Dict[str, Any] = {}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return self._call("create_payout", stripe.Payout.create,
                          amount=amount_cents, currency=currency, stripe_account=account_id, **params)

    def list_payouts(self, account_id: str, limit: int = 10):
        return self._call("list_payouts", stripe.Payout.list, limit=limit, stripe_account=account_id)

    # Refunds

    def create_refund(self, charge_id: str, idempotency_key: str):
        return self._call("create_refund", stripe.Refund.create,
                          charge=charge_id, idempotency_key=idempotency_key)
