"""
Subscription service.

Keeps each organization's Stripe subscription snapshot current and applies
the plan's channel limit to its channels.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.schemas import SubscriptionChangedJob
from app.billing.services.limit_service import limit_service
from app.billing.services.stripe_service import stripe_service
from app.core.config import settings
from app.models import Organization, SlackConnection, as_utc

logger = logging.getLogger(__name__)


def _from_unix(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SubscriptionService:
    async def get_organization_for_subscription(
        self, db: AsyncSession, job: SubscriptionChangedJob
    ) -> Optional[Organization]:
        conditions = [Organization.stripe_subscription_id == job.subscription_id]
        if job.customer_id:
            conditions.append(Organization.stripe_customer_id == job.customer_id)
        result = await db.execute(select(Organization).where(or_(*conditions)))
        organizations = result.scalars().all()
        if not organizations:
            return None
        # Prefer the exact subscription match over a customer match
        for organization in organizations:
            if organization.stripe_subscription_id == job.subscription_id:
                return organization
        return organizations[0]

    async def handle_subscription_changed(
        self, db: AsyncSession, job: SubscriptionChangedJob
    ) -> bool:
        """
        Apply a customer.subscription.updated/deleted event.

        Events older than the stored snapshot are ignored (Stripe does not
        guarantee delivery order).

        Returns:
            True if the snapshot was updated, False if the event was skipped
        """
        organization = await self.get_organization_for_subscription(db, job)
        if not organization:
            logger.warning(
                f"No organization found for Stripe subscription {job.subscription_id}"
            )
            return False

        event_time = _from_unix(job.created)
        if (
            organization.subscription_updated_at
            and as_utc(organization.subscription_updated_at) > event_time
        ):
            logger.warning(
                f"Out of date subscription event {job.event_id} for organization {organization.id}"
            )
            return False

        previous_product = organization.stripe_product_id

        organization.stripe_subscription_id = job.subscription_id
        if job.product_id:
            organization.stripe_product_id = job.product_id
        organization.subscription_period_start = _from_unix(job.current_period_start)
        organization.subscription_period_end = _from_unix(job.current_period_end)
        organization.subscription_canceled_at = _from_unix(job.canceled_at)
        organization.subscription_updated_at = event_time

        changed = await limit_service.rebalance_channels(
            db, organization.id, organization.stripe_product_id
        )
        await db.commit()

        logger.info(
            f"Subscription {job.subscription_id} for organization {organization.id}: "
            f"product {previous_product} -> {organization.stripe_product_id}, "
            f"{len(changed)} channel(s) rebalanced"
        )
        return True

    async def handle_connection_created(
        self,
        db: AsyncSession,
        organization: Organization,
        connection: SlackConnection,
        idempotency_key: str,
    ) -> None:
        """
        Create the Stripe customer and free subscription for a new install.

        Stripe idempotency keys derived from the job make a redelivery reuse
        the objects created by the first attempt.
        """
        if not stripe_service.configured:
            logger.warning(
                f"Stripe not configured, skipping customer creation for {organization.id}"
            )
            return

        if not organization.stripe_customer_id:
            customer = await stripe_service.create_customer(
                organization.id,
                name=connection.name,
                idempotency_key=f"{idempotency_key}:customer",
            )
            organization.stripe_customer_id = customer.id
            await db.commit()

        if not organization.stripe_subscription_id and settings.STRIPE_DEFAULT_PRICE_ID:
            subscription = await stripe_service.create_subscription(
                organization.stripe_customer_id,
                settings.STRIPE_DEFAULT_PRICE_ID,
                idempotency_key=f"{idempotency_key}:subscription",
            )
            organization.stripe_subscription_id = subscription.id
            await db.commit()


# Singleton instance
subscription_service = SubscriptionService()
