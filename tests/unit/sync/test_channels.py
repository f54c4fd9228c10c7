"""
Unit tests for channel membership bookkeeping.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.models import Channel, ChannelStatus, ChannelType
from app.slack.events import (
    ChannelIdChangedEvent,
    ChannelLifecycleEvent,
    ChannelRenameEvent,
    MemberJoinedChannelEvent,
)
from app.slack.schemas import QueueEnvelope
from app.slack.views import CHANNEL_LIMIT_TEXT, ZENDESK_MISSING_TEXT
from app.sync.channels import ChannelLifecycleSync, channel_type_from_info
from app.sync.errors import DownstreamError

STARTER_PRODUCT = "prod_Q5BHZhwI2uNlsF"  # 3 channels


@pytest.fixture
def slack():
    client = AsyncMock()
    client.conversations_info.return_value = {
        "id": "C0100",
        "name": "help-desk",
        "is_channel": True,
        "is_ext_shared": True,
    }
    return client


@pytest_asyncio.fixture
async def sync(token_processor, session_factory, slack):
    channel_sync = ChannelLifecycleSync(token_processor, session_factory)
    channel_sync.slack_connections.slack_client = MagicMock(return_value=slack)
    return channel_sync


def joined(user="UBOT", inviter="U1", channel="C0100"):
    raw = {"type": "member_joined_channel", "user": user, "channel": channel, "inviter": inviter}
    return QueueEnvelope(event_body={"event": raw}), MemberJoinedChannelEvent.model_validate(raw)


async def stored_channel(session_factory, slack_channel_id):
    async with session_factory() as db:
        result = await db.execute(
            select(Channel).where(Channel.slack_channel_id == slack_channel_id)
        )
        return result.scalar_one_or_none()


class TestMemberJoined:
    @pytest.mark.asyncio
    async def test_registers_channel_within_plan(
        self, sync, slack, slack_connection, zendesk_connection, organization, test_db, session_factory
    ):
        organization.stripe_product_id = STARTER_PRODUCT
        await test_db.commit()

        await sync.handle_member_joined(*joined(), slack_connection)

        channel = await stored_channel(session_factory, "C0100")
        assert channel.is_member is True
        assert channel.name == "help-desk"
        assert channel.type == ChannelType.PUBLIC
        assert channel.is_shared is True
        assert channel.status is None
        slack.post_ephemeral.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_over_limit_parks_channel_and_tells_inviter(
        self, sync, slack, slack_connection, zendesk_connection, session_factory
    ):
        # No product on the organization: the plan allows no channels
        await sync.handle_member_joined(*joined(), slack_connection)

        channel = await stored_channel(session_factory, "C0100")
        assert channel.status == ChannelStatus.PENDING_UPGRADE
        slack.post_ephemeral.assert_awaited_once_with("C0100", "U1", CHANNEL_LIMIT_TEXT)

    @pytest.mark.asyncio
    async def test_missing_zendesk_hint(
        self, sync, slack, slack_connection, organization, test_db
    ):
        organization.stripe_product_id = STARTER_PRODUCT
        await test_db.commit()

        await sync.handle_member_joined(*joined(), slack_connection)

        slack.post_ephemeral.assert_awaited_once_with("C0100", "U1", ZENDESK_MISSING_TEXT)

    @pytest.mark.asyncio
    async def test_hint_failure_is_not_fatal(
        self, sync, slack, slack_connection, session_factory
    ):
        slack.post_ephemeral.side_effect = DownstreamError("not_in_channel", retryable=False)

        await sync.handle_member_joined(*joined(), slack_connection)

        assert await stored_channel(session_factory, "C0100") is not None

    @pytest.mark.asyncio
    async def test_other_members_are_ignored(self, sync, slack, slack_connection, session_factory):
        await sync.handle_member_joined(*joined(user="U7"), slack_connection)

        slack.conversations_info.assert_not_awaited()
        assert await stored_channel(session_factory, "C0100") is None

    @pytest.mark.asyncio
    async def test_rejoin_reuses_row(
        self, sync, slack, slack_connection, zendesk_connection, channel, organization, test_db, session_factory
    ):
        organization.stripe_product_id = STARTER_PRODUCT
        channel.is_member = False
        await test_db.commit()

        await sync.handle_member_joined(*joined(channel="C0001"), slack_connection)

        stored = await stored_channel(session_factory, "C0001")
        assert stored.id == channel.id
        assert stored.is_member is True


class TestLifecycleEvents:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["channel_left", "channel_archive", "channel_deleted"])
    async def test_membership_lost(self, sync, slack_connection, channel, session_factory, event_type):
        raw = {"type": event_type, "channel": "C0001"}
        await sync.handle_membership_lost(
            QueueEnvelope(event_body={"event": raw}),
            ChannelLifecycleEvent.model_validate(raw),
            slack_connection,
        )

        assert (await stored_channel(session_factory, "C0001")).is_member is False

    @pytest.mark.asyncio
    async def test_unarchive(self, sync, slack_connection, channel, test_db, session_factory):
        channel.is_member = False
        await test_db.commit()

        raw = {"type": "channel_unarchive", "channel": "C0001"}
        await sync.handle_unarchive(
            QueueEnvelope(event_body={"event": raw}),
            ChannelLifecycleEvent.model_validate(raw),
            slack_connection,
        )

        assert (await stored_channel(session_factory, "C0001")).is_member is True

    @pytest.mark.asyncio
    async def test_rename(self, sync, slack_connection, channel, session_factory):
        raw = {"type": "channel_rename", "channel": {"id": "C0001", "name": "customers"}}
        await sync.handle_rename(
            QueueEnvelope(event_body={"event": raw}),
            ChannelRenameEvent.model_validate(raw),
            slack_connection,
        )

        assert (await stored_channel(session_factory, "C0001")).name == "customers"

    @pytest.mark.asyncio
    async def test_id_changed(self, sync, slack_connection, channel, session_factory):
        raw = {"type": "channel_id_changed", "old_channel_id": "C0001", "new_channel_id": "C0002"}
        await sync.handle_id_changed(
            QueueEnvelope(event_body={"event": raw}),
            ChannelIdChangedEvent.model_validate(raw),
            slack_connection,
        )

        assert await stored_channel(session_factory, "C0001") is None
        assert (await stored_channel(session_factory, "C0002")).id == channel.id

    @pytest.mark.asyncio
    async def test_unknown_channel_is_a_no_op(self, sync, slack_connection, session_factory):
        raw = {"type": "channel_left", "channel": "C9999"}
        await sync.handle_membership_lost(
            QueueEnvelope(event_body={"event": raw}),
            ChannelLifecycleEvent.model_validate(raw),
            slack_connection,
        )

        assert await stored_channel(session_factory, "C9999") is None


@pytest.mark.parametrize(
    "info,expected",
    [
        ({"is_channel": True}, ChannelType.PUBLIC),
        ({"is_private": True}, ChannelType.PRIVATE),
        ({"is_im": True}, ChannelType.DM),
        ({"is_mpim": True}, ChannelType.GROUP_DM),
        ({}, None),
    ],
)
def test_channel_type_from_info(info, expected):
    assert channel_type_from_info(info) == expected
