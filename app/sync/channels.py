"""
Channel membership bookkeeping driven by Slack lifecycle events.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.services.limit_service import limit_service
from app.billing.services.stripe_service import stripe_service
from app.core.database import AsyncSessionLocal
from app.models import (
    Channel,
    ChannelStatus,
    ChannelType,
    ConnectionStatus,
    Organization,
    SlackConnection,
)
from app.services.slack.client import SlackClient
from app.slack.events import (
    ChannelIdChangedEvent,
    ChannelLifecycleEvent,
    ChannelRenameEvent,
    EventHandler,
    MemberJoinedChannelEvent,
    SlackEventKind,
)
from app.slack.schemas import QueueEnvelope
from app.slack.service import SlackConnectionService
from app.slack.views import ZENDESK_MISSING_TEXT, channel_limit_text
from app.sync.errors import DownstreamError
from app.utils.token_processor import TokenProcessor
from app.zendesk.service import ZendeskConnectionService

logger = logging.getLogger(__name__)


def channel_type_from_info(info: Dict[str, Any]) -> Optional[ChannelType]:
    if info.get("is_channel"):
        return ChannelType.PUBLIC
    if info.get("is_private"):
        return ChannelType.PRIVATE
    if info.get("is_im"):
        return ChannelType.DM
    if info.get("is_mpim"):
        return ChannelType.GROUP_DM
    logger.warning(f"Unknown channel type for {info.get('id')}")
    return None


class ChannelLifecycleSync:
    """Handlers for the channel kinds of Slack events."""

    def __init__(self, token_processor: TokenProcessor, session_factory=None):
        self.slack_connections = SlackConnectionService(token_processor)
        self.zendesk_connections = ZendeskConnectionService(token_processor)
        self.session_factory = session_factory or AsyncSessionLocal

    def handlers(self) -> Dict[SlackEventKind, EventHandler]:
        return {
            SlackEventKind.MEMBER_JOINED_CHANNEL: self.handle_member_joined,
            SlackEventKind.CHANNEL_LEFT: self.handle_membership_lost,
            SlackEventKind.CHANNEL_ARCHIVE: self.handle_membership_lost,
            SlackEventKind.CHANNEL_DELETED: self.handle_membership_lost,
            SlackEventKind.CHANNEL_UNARCHIVE: self.handle_unarchive,
            SlackEventKind.CHANNEL_RENAME: self.handle_rename,
            SlackEventKind.CHANNEL_ID_CHANGED: self.handle_id_changed,
        }

    async def handle_member_joined(
        self,
        envelope: QueueEnvelope,
        event: MemberJoinedChannelEvent,
        connection: SlackConnection,
    ) -> None:
        """
        Register a channel the bot was invited to.

        Channels over the plan limit (or joined while the subscription has
        lapsed) are stored as PENDING_UPGRADE and the inviter is told how to
        upgrade.
        """
        if event.user != connection.bot_user_id:
            logger.debug(f"Ignoring member_joined_channel for user {event.user}")
            return

        slack = self.slack_connections.slack_client(connection)
        info = await slack.conversations_info(event.channel)

        async with self.session_factory() as db:
            organization = await db.get(Organization, connection.organization_id)
            fits = await limit_service.can_join_channel(db, organization, event.channel)
            status = None if fits else ChannelStatus.PENDING_UPGRADE

            result = await db.execute(
                select(Channel).where(
                    Channel.organization_id == connection.organization_id,
                    Channel.slack_channel_id == event.channel,
                )
            )
            channel = result.scalar_one_or_none()
            if channel is None:
                channel = Channel(
                    id=str(uuid.uuid4()),
                    organization_id=connection.organization_id,
                    slack_channel_id=event.channel,
                )
                db.add(channel)
            else:
                channel.updated_at = datetime.now(timezone.utc)

            channel.type = channel_type_from_info(info)
            channel.is_member = True
            channel.name = info.get("name")
            channel.is_shared = bool(
                info.get("is_ext_shared") or info.get("is_pending_ext_shared")
            )
            channel.status = status
            await db.commit()
            logger.info(
                f"Joined channel {event.channel} for organization "
                f"{connection.organization_id} (status {status.value if status else 'active'})"
            )

            zendesk_connection = await self.zendesk_connections.get_for_organization(
                db, connection.organization_id
            )

        if status == ChannelStatus.PENDING_UPGRADE and event.inviter:
            await self._post_upgrade_hint(slack, organization, connection, event)

        if not zendesk_connection or zendesk_connection.status != ConnectionStatus.ACTIVE:
            await self._post_hint(
                slack, event.channel, event.inviter or event.user, ZENDESK_MISSING_TEXT
            )

    async def handle_membership_lost(
        self,
        envelope: QueueEnvelope,
        event: ChannelLifecycleEvent,
        connection: SlackConnection,
    ) -> None:
        async with self.session_factory() as db:
            await self._update_channel(db, connection, event.channel, is_member=False)
        logger.info(f"Channel {event.channel} no longer synced ({event.type})")

    async def handle_unarchive(
        self,
        envelope: QueueEnvelope,
        event: ChannelLifecycleEvent,
        connection: SlackConnection,
    ) -> None:
        async with self.session_factory() as db:
            await self._update_channel(db, connection, event.channel, is_member=True)
        logger.info(f"Channel {event.channel} unarchived")

    async def handle_rename(
        self,
        envelope: QueueEnvelope,
        event: ChannelRenameEvent,
        connection: SlackConnection,
    ) -> None:
        async with self.session_factory() as db:
            await self._update_channel(
                db, connection, event.channel.id, name=event.channel.name
            )

    async def handle_id_changed(
        self,
        envelope: QueueEnvelope,
        event: ChannelIdChangedEvent,
        connection: SlackConnection,
    ) -> None:
        async with self.session_factory() as db:
            await self._update_channel(
                db,
                connection,
                event.old_channel_id,
                slack_channel_id=event.new_channel_id,
            )
        logger.info(
            f"Channel id changed from {event.old_channel_id} to {event.new_channel_id}"
        )

    async def _update_channel(
        self,
        db: AsyncSession,
        connection: SlackConnection,
        current_slack_channel_id: str,
        **values: Any,
    ) -> None:
        result = await db.execute(
            update(Channel)
            .where(
                Channel.organization_id == connection.organization_id,
                Channel.slack_channel_id == current_slack_channel_id,
            )
            .values(updated_at=datetime.now(timezone.utc), **values)
        )
        if result.rowcount == 0:
            logger.info(
                f"Channel {current_slack_channel_id} is not registered, nothing to update"
            )
        await db.commit()

    async def _post_upgrade_hint(
        self,
        slack: SlackClient,
        organization: Organization,
        connection: SlackConnection,
        event: MemberJoinedChannelEvent,
    ) -> None:
        portal_url = None
        if stripe_service.configured and organization.stripe_customer_id:
            portal_url = await stripe_service.create_billing_portal_url(
                organization.stripe_customer_id,
                return_url=f"https://{connection.domain}.slack.com",
                subscription_id=organization.stripe_subscription_id,
            )
        await self._post_hint(
            slack, event.channel, event.inviter, channel_limit_text(portal_url)
        )

    async def _post_hint(
        self, slack: SlackClient, channel: str, user: str, text: str
    ) -> None:
        try:
            await slack.post_ephemeral(channel, user, text)
        except DownstreamError as e:
            # Hints are best effort; the channel row is already stored
            logger.warning(f"Failed to post ephemeral message in {channel}: {e}")
