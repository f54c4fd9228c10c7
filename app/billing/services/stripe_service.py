"""
Stripe API service.
Wraps the Stripe SDK for customer and subscription creation, billing portal
links, and webhook verification.
"""

import logging
from typing import Optional

import stripe
from stripe import Customer
from stripe import Subscription as StripeSubscription

from app.core.config import settings

logger = logging.getLogger(__name__)


class StripeService:
    """Handles all Stripe API interactions."""

    def __init__(self):
        """Initialize Stripe with the secret key from settings."""
        if settings.STRIPE_API_KEY:
            stripe.api_key = settings.STRIPE_API_KEY
        else:
            logger.warning(
                "STRIPE_API_KEY not configured - Stripe operations will fail"
            )

    @property
    def configured(self) -> bool:
        return bool(settings.STRIPE_API_KEY)

    async def create_customer(
        self,
        organization_id: str,
        name: Optional[str],
        email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Customer:
        """
        Create a Stripe customer for an organization.

        Args:
            organization_id: The internal organization ID
            name: Slack workspace name
            email: Installer email, when Slack shared it
            idempotency_key: Makes a redelivered job reuse the first customer

        Returns:
            stripe.Customer object
        """
        try:
            customer = stripe.Customer.create(
                name=name,
                email=email,
                metadata={"organization_id": organization_id},
                idempotency_key=idempotency_key,
            )
            logger.info(
                f"Created Stripe customer {customer.id} for organization {organization_id}"
            )
            return customer
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        idempotency_key: Optional[str] = None,
    ) -> StripeSubscription:
        """
        Start a subscription (the free plan on install).

        Args:
            customer_id: Stripe customer ID
            price_id: Stripe price ID for the subscription
            idempotency_key: Makes a redelivered job reuse the first subscription

        Returns:
            stripe.Subscription object
        """
        try:
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                idempotency_key=idempotency_key,
            )
            logger.info(
                f"Created Stripe subscription {subscription.id} for customer {customer_id}"
            )
            return subscription
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe subscription: {e}")
            raise

    async def create_billing_portal_url(
        self,
        customer_id: str,
        return_url: str,
        subscription_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Create a Customer Portal session, jumping straight to the plan change
        flow when a subscription is known.

        Returns:
            Portal URL, or None if Stripe refused (callers fall back to plain text)
        """
        params = {"customer": customer_id, "return_url": return_url}
        if subscription_id:
            params["flow_data"] = {
                "type": "subscription_update",
                "subscription_update": {"subscription": subscription_id},
            }
        try:
            session = stripe.billing_portal.Session.create(**params)
            return session.url
        except stripe.StripeError as e:
            logger.warning(f"Failed to create billing portal session: {e}")
            return None

    def construct_webhook_event(
        self,
        payload: bytes,
        signature: str,
    ) -> stripe.Event:
        """
        Verify and construct a webhook event from Stripe.

        Args:
            payload: Raw request body bytes
            signature: Stripe-Signature header value

        Returns:
            stripe.Event object

        Raises:
            stripe.SignatureVerificationError: If signature is invalid
        """
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise ValueError("STRIPE_WEBHOOK_SECRET not configured")

        return stripe.Webhook.construct_event(
            payload,
            signature,
            settings.STRIPE_WEBHOOK_SECRET,
        )


# Singleton instance
stripe_service = StripeService()
