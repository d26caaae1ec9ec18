"""
Stripe webhook endpoint.

The signature is verified against the raw body before anything is parsed.
Processing failures return 500 so that Stripe retries the delivery.
"""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.database.session import get_db_session
from src.services.billing_service import BillingServiceError
from src.services.stripe_webhook_service import (
    StripeWebhookProcessor,
    WebhookSignatureError,
    construct_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def handle_stripe_webhook(request: Request, db: Session = Depends(get_db_session)):
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature")

    try:
        event = construct_event(body, signature)
    except WebhookSignatureError as e:
        logger.warning("Stripe webhook signature rejected", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}")

    try:
        processor = StripeWebhookProcessor(db, correlation_id=getattr(request.state, "correlation_id", None))
        processor.process_event(event)
    except (stripe.StripeError, SQLAlchemyError, BillingServiceError) as e:
        db.rollback()
        logger.error("Failed to process Stripe webhook", extra={
            "event_type": event.get("type"),
            "event_id": event.get("id"),
            "error": str(e),
        })
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook handler failed")

    return {"received": True}
