"""Stripe webhook route"""
import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.context import AppContext, get_context
from app.db.session import get_db
from app.services.webhook_service import IN_PROGRESS, process_stripe_webhook

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context)
):
    """Handle Stripe webhook events

    The body must reach signature verification as raw bytes. A bad signature
    yields 400 and a delivery that lost the per-event lock yields 409 so Stripe
    retries it; every other outcome is acknowledged with 200.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    ack = await run_in_threadpool(process_stripe_webhook, payload, sig_header, db, ctx)
    if ack["status"] == IN_PROGRESS:
        response.status_code = 409
    return ack
