"""
Plan limits for billing.

Each Stripe product maps to a maximum number of synced channels. Channels
joined beyond the limit (or while the subscription has lapsed) are parked
as PENDING_UPGRADE and ignored by the sync engine.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models import Channel, ChannelStatus, Organization, as_utc


def channel_limit_for_product(product_id: Optional[str]) -> int:
    """Channels allowed by a Stripe product; unknown or missing products allow none."""
    if not product_id:
        return 0
    return settings.STRIPE_PRODUCT_CHANNEL_LIMITS.get(product_id, 0)


def is_subscription_active(
    organization: Organization, now: Optional[datetime] = None
) -> bool:
    """
    True while the current period (plus a grace buffer) has not ended.

    An organization without a period end yet (subscription still being
    created) is treated as active.
    """
    if not organization.subscription_period_end:
        return True
    buffer = timedelta(hours=settings.SUBSCRIPTION_EXPIRATION_BUFFER_HOURS)
    current = now or datetime.now(timezone.utc)
    return as_utc(organization.subscription_period_end) + buffer >= current


def is_channel_eligible(channel: Optional[Channel]) -> bool:
    return bool(
        channel
        and channel.is_member
        and channel.status != ChannelStatus.PENDING_UPGRADE
    )


class LimitService:
    """Channel limit checks and rebalancing for an organization."""

    async def count_member_channels(
        self, db: AsyncSession, organization_id: str
    ) -> int:
        result = await db.execute(
            select(func.count(Channel.id)).where(
                Channel.organization_id == organization_id,
                Channel.is_member.is_(True),
            )
        )
        return result.scalar() or 0

    async def can_join_channel(
        self,
        db: AsyncSession,
        organization: Organization,
        slack_channel_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Whether one more channel fits in the plan.

        A channel that is already an active member does not count twice.
        """
        if not is_subscription_active(organization, now):
            return False

        result = await db.execute(
            select(Channel).where(
                Channel.organization_id == organization.id,
                Channel.slack_channel_id == slack_channel_id,
            )
        )
        existing = result.scalar_one_or_none()
        if existing and is_channel_eligible(existing):
            return True

        used = await self.count_member_channels(db, organization.id)
        return used + 1 <= channel_limit_for_product(organization.stripe_product_id)

    async def rebalance_channels(
        self, db: AsyncSession, organization_id: str, product_id: Optional[str]
    ) -> List[Channel]:
        """
        Activate the oldest member channels up to the plan limit and park the rest.

        Returns:
            Channels whose status changed (caller commits)
        """
        limit = channel_limit_for_product(product_id)
        result = await db.execute(
            select(Channel)
            .where(
                Channel.organization_id == organization_id,
                Channel.is_member.is_(True),
            )
            .order_by(Channel.created_at.asc(), Channel.id.asc())
        )
        changed = []
        for index, channel in enumerate(result.scalars().all()):
            target = None if index < limit else ChannelStatus.PENDING_UPGRADE
            if channel.status != target:
                channel.status = target
                channel.updated_at = datetime.now(timezone.utc)
                changed.append(channel)
        return changed


limit_service = LimitService()
