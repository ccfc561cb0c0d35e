"""Background cleanup task for pruning the processed-event guard table"""
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.core.metrics import cleanup_runs_counter
from app.services.idempotency_service import purge_expired

cleanup_logger = logging.getLogger("cleanup")

CLEANUP_INTERVAL_SECONDS = 6 * 3600


def run_cleanup(session_factory: sessionmaker, retention_days: int) -> int:
    """One pruning pass. Returns the number of guard rows removed."""
    db = session_factory()
    try:
        removed = purge_expired(db, retention_days)
        cleanup_runs_counter.labels(status="success").inc()
        return removed
    except SQLAlchemyError as e:
        db.rollback()
        cleanup_runs_counter.labels(status="error").inc()
        cleanup_logger.error(f"Processed-event cleanup failed: {e}")
        return 0
    finally:
        db.close()


async def cleanup_task(session_factory: sessionmaker, retention_days: int):
    """Background task that prunes processed Stripe events past the retention window

    Runs every 6 hours. The window (default 45 days) outlives Stripe's 3-day
    redelivery horizon and its 30-day event retention.
    """
    while True:
        try:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            removed = await asyncio.to_thread(run_cleanup, session_factory, retention_days)
            cleanup_logger.info(f"Cleanup pass complete, {removed} processed event(s) removed")
        except asyncio.CancelledError:
            cleanup_logger.info("Cleanup task cancelled")
            raise
        except Exception as e:
            cleanup_logger.error(f"Error in cleanup task: {e}", exc_info=True)
            cleanup_runs_counter.labels(status="error").inc()
