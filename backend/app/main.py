"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.context import build_context
from app.core.errors import InvoicingError, global_exception_handler, invoicing_error_handler
from app.core.middleware import security_middleware, setup_cors_middleware
from app.core.otel import initialize_otel, instrument_fastapi, instrument_sqlalchemy, setup_otel_logging
from app.db.redis import get_redis_client
from app.db.session import SessionLocal, engine, init_db

# Import routers
from app.api import admin, auth, customers, vendor, webhooks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel(settings):
        if setup_otel_logging(settings):
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        # Webhooks fall back to the guard table; sessions are unavailable until Redis returns
        logger.error(f"Redis connection failed: {e}")

    instrument_sqlalchemy(engine)

    cleanup = None
    if settings.BACKGROUND_TASKS_ENABLED:
        from app.tasks.cleanup import cleanup_task
        cleanup = asyncio.create_task(
            cleanup_task(app.state.context.session_factory, settings.PROCESSED_EVENT_RETENTION_DAYS)
        )
        logger.info("Cleanup task started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if cleanup:
        cleanup.cancel()


# Create FastAPI app
app = FastAPI(
    title="Invoicing Backend",
    description="Vendor invoicing with Stripe event reconciliation",
    version="1.0.0",
    lifespan=lifespan
)
app.state.context = build_context(settings, SessionLocal)

instrument_fastapi(app)
setup_cors_middleware(app)
app.middleware("http")(security_middleware)

app.add_exception_handler(InvoicingError, invoicing_error_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(webhooks.router)
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(vendor.router)
app.include_router(customers.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
