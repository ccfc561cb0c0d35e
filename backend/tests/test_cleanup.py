"""Processed-event retention tests"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.models import StripeEvent
from app.services.idempotency_service import has_processed, purge_expired
from app.tasks.cleanup import run_cleanup
from conftest import TestSessionLocal


def _guard_row(db_session, event_id, days_old):
    db_session.add(StripeEvent(
        stripe_event_id=event_id,
        event_type="payout.paid",
        object_id="po_1",
        outcome="applied",
        payload={"id": event_id},
        processed_at=datetime.now(timezone.utc) - timedelta(days=days_old),
    ))
    db_session.commit()


@pytest.mark.high
class TestPurgeExpired:
    """Guard rows outlive the redelivery window, then are pruned"""

    def test_only_rows_past_retention_are_removed(self, db_session):
        _guard_row(db_session, "evt_old", days_old=60)
        _guard_row(db_session, "evt_recent", days_old=2)

        removed = purge_expired(db_session, retention_days=45)

        assert removed == 1
        assert not has_processed(db_session, "evt_old")
        assert has_processed(db_session, "evt_recent")

    def test_nothing_to_remove(self, db_session):
        _guard_row(db_session, "evt_recent", days_old=1)
        assert purge_expired(db_session, retention_days=45) == 0


@pytest.mark.high
class TestRunCleanup:
    """One pass of the background task"""

    def test_run_uses_its_own_session(self, db_session):
        _guard_row(db_session, "evt_old", days_old=90)

        assert run_cleanup(TestSessionLocal, retention_days=45) == 1
        assert db_session.query(StripeEvent).count() == 0

    def test_database_error_is_contained(self, db_session):
        with patch("app.tasks.cleanup.purge_expired",
                   side_effect=OperationalError("DELETE", {}, Exception("database is locked"))):
            assert run_cleanup(TestSessionLocal, retention_days=45) == 0
