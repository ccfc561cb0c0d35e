"""Dispute auto-refund tests"""
import logging

import pytest
import stripe

from app.models import ActivityLog, StripeEvent
from app.schemas.webhooks import WebhookEvent
from app.services.fraud_service import DisputeState, prepare_dispute_refund
from conftest import make_event


def dispute_event(charge="ch_1", dispute_id="dp_1", event_id="evt_dispute_1"):
    return make_event(
        "charge.dispute.created",
        {"id": dispute_id, "object": "dispute", "charge": charge, "amount": 5000, "reason": "fraudulent"},
        event_id=event_id,
    )


def _ledger(db_session, event_type):
    return db_session.query(ActivityLog).filter(ActivityLog.event_type == event_type).all()


@pytest.mark.critical
class TestDisputeRefund:
    """charge.dispute.created triggers exactly one refund attempt"""

    def test_successful_refund_is_audited_once(self, post_webhook, db_session, mock_stripe):
        response = post_webhook(dispute_event())

        assert response.status_code == 200
        assert response.json()["status"] == DisputeState.AUTO_REFUNDED.value
        refund = mock_stripe["Refund.create"]
        refund.assert_called_once()
        assert refund.call_args.kwargs["charge"] == "ch_1"
        assert refund.call_args.kwargs["idempotency_key"] == "dispute-refund-dp_1"

        entries = _ledger(db_session, "fraud_warning_refund")
        assert len(entries) == 1
        assert entries[0].related_id == "ch_1"
        assert _ledger(db_session, "fraud_warning_refund_failed") == []

    def test_redelivery_makes_no_second_refund(self, post_webhook, db_session, mock_stripe):
        event = dispute_event()
        post_webhook(event)
        response = post_webhook(event)

        assert response.json()["status"] == "already_processed"
        mock_stripe["Refund.create"].assert_called_once()
        assert len(_ledger(db_session, "fraud_warning_refund")) == 1

    def test_failed_refund_is_acknowledged_and_audited(self, post_webhook, db_session, mock_stripe, caplog):
        mock_stripe["Refund.create"].side_effect = stripe.InvalidRequestError(
            "No such charge: 'ch_1'", param="charge", code="resource_missing"
        )

        with caplog.at_level(logging.WARNING, logger="alerts"):
            response = post_webhook(dispute_event())

        assert response.status_code == 200
        assert response.json()["status"] == DisputeState.REFUND_FAILED.value
        mock_stripe["Refund.create"].assert_called_once()
        entries = _ledger(db_session, "fraud_warning_refund_failed")
        assert len(entries) == 1
        assert entries[0].severity == "error"
        assert "No such charge" in entries[0].description
        assert _ledger(db_session, "fraud_warning_refund") == []
        assert db_session.query(StripeEvent).one().outcome == DisputeState.REFUND_FAILED.value
        assert any("ADMIN NOTIFICATION" in r.getMessage() for r in caplog.records if r.name == "alerts")

    def test_already_refunded_charge_counts_as_refunded(self, post_webhook, db_session, mock_stripe):
        mock_stripe["Refund.create"].side_effect = stripe.InvalidRequestError(
            "Charge ch_1 has already been refunded.", param="charge", code="charge_already_refunded"
        )

        response = post_webhook(dispute_event())

        assert response.json()["status"] == DisputeState.AUTO_REFUNDED.value
        assert len(_ledger(db_session, "fraud_warning_refund")) == 1


@pytest.mark.high
class TestRefundTransport:
    """Refund call timeout/retry budget"""

    def test_transport_failure_is_retried_once_with_same_key(self, app_context, mock_stripe):
        mock_stripe["Refund.create"].side_effect = [
            stripe.APIConnectionError("Read timed out"),
            {"id": "re_retry", "status": "succeeded"},
        ]
        event = WebhookEvent.model_validate(dispute_event())

        resolution = prepare_dispute_refund(event, app_context)

        assert resolution.state == DisputeState.AUTO_REFUNDED
        assert resolution.refund_id == "re_retry"
        calls = mock_stripe["Refund.create"].call_args_list
        assert len(calls) == 2
        assert calls[0].kwargs["idempotency_key"] == calls[1].kwargs["idempotency_key"]

    def test_persistent_transport_failure_becomes_refund_failed(self, app_context, mock_stripe):
        mock_stripe["Refund.create"].side_effect = stripe.APIConnectionError("Read timed out")
        event = WebhookEvent.model_validate(dispute_event())

        resolution = prepare_dispute_refund(event, app_context)

        assert resolution.state == DisputeState.REFUND_FAILED
        assert mock_stripe["Refund.create"].call_count == 2
        assert "timed out" in resolution.reason

    def test_dispute_without_charge_is_refund_failed(self, app_context, mock_stripe):
        event = WebhookEvent.model_validate(dispute_event(charge=None))

        resolution = prepare_dispute_refund(event, app_context)

        assert resolution.state == DisputeState.REFUND_FAILED
        mock_stripe["Refund.create"].assert_not_called()
