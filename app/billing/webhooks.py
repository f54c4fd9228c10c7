"""
Stripe webhook handler for billing events.

The webhook only verifies and enqueues; the billing-events worker applies
the change so Stripe gets a fast 200 and failures retry through the queue.
"""

import logging

import stripe
from fastapi import APIRouter, Header, HTTPException, Request

from app.billing.schemas import SubscriptionChangedJob
from app.billing.services.stripe_service import stripe_service
from app.services.sqs.client import QueueTopic, sqs_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing/webhooks", tags=["webhooks"])

SUBSCRIPTION_EVENT_TYPES = {
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


@router.post("/stripe")
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
):
    """
    Handle Stripe webhook events.

    Events handled:
    - customer.subscription.updated
    - customer.subscription.deleted

    For local testing, use:
    stripe listen --forward-to localhost:8000/api/v1/billing/webhooks/stripe
    """
    payload = await request.body()

    if not stripe_signature:
        logger.warning("Stripe webhook received without signature")
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    try:
        event = stripe_service.construct_webhook_event(payload, stripe_signature)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid Stripe webhook signature: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError as e:
        logger.error(f"Webhook configuration error: {e}")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    event_type = event["type"]
    logger.info(f"Received Stripe webhook: {event_type}")

    if event_type not in SUBSCRIPTION_EVENT_TYPES:
        logger.debug(f"Unhandled Stripe event type: {event_type}")
        return {"status": "ignored", "event_type": event_type}

    job = SubscriptionChangedJob.from_stripe_event(event)
    published = await sqs_client.publish(
        QueueTopic.BILLING_EVENTS,
        job.model_dump(),
        dedup_key=job.event_id,
        group_key=job.customer_id or job.subscription_id,
    )
    if not published:
        # Stripe retries non-2xx responses
        raise HTTPException(status_code=503, detail="Failed to enqueue billing event")

    return {"status": "queued", "event_type": event_type}
