"""
Unit tests for billing subscription_service.py.
Tests out-of-order Stripe events, snapshot updates and channel rebalancing.
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from app.billing.schemas import SubscriptionChangedJob
from app.billing.services.subscription_service import SubscriptionService
from app.models import Channel, ChannelStatus, Organization, as_utc

STARTER_PRODUCT = "prod_Q5BHZhwI2uNlsF"  # 3 channels
FREE_PRODUCT = "prod_Q5BHjL3CLeZGhd"  # 1 channel
EVENT_TIME = 1_717_000_000


def changed_job(created=EVENT_TIME, product_id=FREE_PRODUCT, **overrides):
    data = {
        "event_id": f"evt_{created}",
        "event_type": "customer.subscription.updated",
        "created": created,
        "subscription_id": "sub_1",
        "customer_id": "cus_1",
        "product_id": product_id,
        "current_period_start": created,
        "current_period_end": created + 30 * 86400,
    }
    data.update(overrides)
    return SubscriptionChangedJob(**data)


async def add_channels(test_db, organization, count, status=None):
    base = datetime.now(timezone.utc)
    for index in range(count):
        test_db.add(
            Channel(
                id=str(uuid.uuid4()),
                organization_id=organization.id,
                slack_channel_id=f"C{index:04d}",
                is_member=True,
                name=f"channel-{index}",
                status=status,
                created_at=base + timedelta(minutes=index),
            )
        )
    await test_db.commit()


async def channel_statuses(test_db, organization):
    result = await test_db.execute(
        select(Channel)
        .where(Channel.organization_id == organization.id)
        .order_by(Channel.slack_channel_id)
    )
    return [channel.status for channel in result.scalars().all()]


class TestHandleSubscriptionChanged:
    @pytest.mark.asyncio
    async def test_downgrade_parks_newest_channels(self, test_db, organization):
        organization.stripe_subscription_id = "sub_1"
        organization.stripe_product_id = STARTER_PRODUCT
        await test_db.commit()
        await add_channels(test_db, organization, 3)

        applied = await SubscriptionService().handle_subscription_changed(test_db, changed_job())

        assert applied is True
        assert organization.stripe_product_id == FREE_PRODUCT
        assert await channel_statuses(test_db, organization) == [
            None,
            ChannelStatus.PENDING_UPGRADE,
            ChannelStatus.PENDING_UPGRADE,
        ]

    @pytest.mark.asyncio
    async def test_upgrade_reactivates_channels(self, test_db, organization):
        organization.stripe_subscription_id = "sub_1"
        await test_db.commit()
        await add_channels(
            test_db, organization, 2, status=ChannelStatus.PENDING_UPGRADE
        )

        await SubscriptionService().handle_subscription_changed(
            test_db, changed_job(product_id=STARTER_PRODUCT)
        )

        assert await channel_statuses(test_db, organization) == [None, None]

    @pytest.mark.asyncio
    async def test_stale_event_is_ignored(self, test_db, organization):
        organization.stripe_subscription_id = "sub_1"
        organization.stripe_product_id = STARTER_PRODUCT
        organization.subscription_updated_at = datetime.fromtimestamp(
            EVENT_TIME + 60, tz=timezone.utc
        )
        await test_db.commit()

        applied = await SubscriptionService().handle_subscription_changed(test_db, changed_job())

        assert applied is False
        assert organization.stripe_product_id == STARTER_PRODUCT

    @pytest.mark.asyncio
    async def test_matches_by_customer(self, test_db, organization):
        organization.stripe_customer_id = "cus_1"
        await test_db.commit()

        applied = await SubscriptionService().handle_subscription_changed(test_db, changed_job())

        assert applied is True
        assert organization.stripe_subscription_id == "sub_1"
        assert as_utc(organization.subscription_period_end) == datetime.fromtimestamp(
            EVENT_TIME + 30 * 86400, tz=timezone.utc
        )

    @pytest.mark.asyncio
    async def test_unknown_subscription(self, test_db, organization):
        assert (
            await SubscriptionService().handle_subscription_changed(
                test_db, changed_job(subscription_id="sub_other", customer_id="cus_other")
            )
            is False
        )


class TestHandleConnectionCreated:
    @pytest.mark.asyncio
    async def test_skips_when_stripe_not_configured(self, mock_db):
        organization = MagicMock(spec=Organization)
        with patch(
            "app.billing.services.subscription_service.stripe_service"
        ) as stripe_service:
            stripe_service.configured = False
            await SubscriptionService().handle_connection_created(
                mock_db, organization, MagicMock(), idempotency_key="conn-1"
            )
        stripe_service.create_customer.assert_not_called()

    @pytest.mark.asyncio
    async def test_creates_customer_and_subscription_once(self, mock_db):
        organization = Organization(id="org-1", name="Acme")
        connection = MagicMock()
        connection.name = "Acme"

        with patch(
            "app.billing.services.subscription_service.stripe_service"
        ) as stripe_service, patch(
            "app.billing.services.subscription_service.settings"
        ) as settings:
            stripe_service.configured = True
            stripe_service.create_customer = AsyncMock(return_value=MagicMock(id="cus_9"))
            stripe_service.create_subscription = AsyncMock(return_value=MagicMock(id="sub_9"))
            settings.STRIPE_DEFAULT_PRICE_ID = "price_free"

            service = SubscriptionService()
            await service.handle_connection_created(
                mock_db, organization, connection, idempotency_key="conn-1"
            )
            # Redelivery: both objects already recorded
            await service.handle_connection_created(
                mock_db, organization, connection, idempotency_key="conn-1"
            )

        assert organization.stripe_customer_id == "cus_9"
        assert organization.stripe_subscription_id == "sub_9"
        stripe_service.create_customer.assert_awaited_once()
        assert stripe_service.create_customer.await_args.kwargs["idempotency_key"] == "conn-1:customer"
        stripe_service.create_subscription.assert_awaited_once_with(
            "cus_9", "price_free", idempotency_key="conn-1:subscription"
        )
