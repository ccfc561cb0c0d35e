"""Process-wide collaborators, built once at startup and passed explicitly"""
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings
from app.services.stripe_service import StripeGateway, configure_stripe


@dataclass
class AppContext:
    settings: Settings
    stripe: StripeGateway
    session_factory: sessionmaker

    @property
    def webhook_secret(self) -> str:
        return self.settings.STRIPE_WEBHOOK_SECRET

    @property
    def webhook_tolerance(self) -> int:
        return self.settings.STRIPE_WEBHOOK_TOLERANCE


def build_context(settings: Settings, session_factory: sessionmaker) -> AppContext:
    """Create the application context (no network access)"""
    configure_stripe(settings.STRIPE_TIMEOUT_SECONDS)
    return AppContext(
        settings=settings,
        stripe=StripeGateway(settings.STRIPE_SECRET_KEY, max_retries=settings.STRIPE_MAX_RETRIES),
        session_factory=session_factory,
    )


def get_context(request: Request) -> AppContext:
    """Dependency: the AppContext attached to the running application"""
    return request.app.state.context
