"""Middleware configuration for FastAPI application"""
import logging

import redis
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.security import SESSION_COOKIE, check_rate_limit, get_client_identifier, log_api_access

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

# Stripe paces its own redeliveries; probes must always answer
RATE_LIMIT_EXEMPT_PATHS = {"/api/webhooks/stripe", "/metrics", "/health"}


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ])
    return allowed_origins


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


async def security_middleware(request: Request, call_next):
    """Middleware for rate limiting and API access logging"""
    session_id = request.cookies.get(SESSION_COOKIE)
    status_code = 500
    error = None

    try:
        path = request.url.path
        if path not in RATE_LIMIT_EXEMPT_PATHS and request.method != "OPTIONS":
            identifier = get_client_identifier(request, session_id)
            is_state_changing = request.method in ["POST", "PATCH", "DELETE", "PUT"]
            try:
                allowed = check_rate_limit(identifier, strict=is_state_changing)
            except redis.RedisError as e:
                security_logger.warning(f"Rate limiter unavailable, allowing request: {e}")
                allowed = True
            if not allowed:
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                return Response(
                    content='{"error": "Rate limit exceeded. Please try again later."}',
                    status_code=429,
                    media_type="application/json"
                )

        response = await call_next(request)
        status_code = response.status_code
        return response

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, session_id, status_code, error)
