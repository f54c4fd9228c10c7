"""
App Home tab and the modals opened from it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.services.limit_service import (
    channel_limit_for_product,
    is_subscription_active,
    limit_service,
)
from app.billing.services.stripe_service import stripe_service
from app.models import Channel, Organization, SlackConnection
from app.slack import views
from app.slack.service import SlackConnectionService
from app.sync.errors import SyncError
from app.utils.token_processor import TokenProcessor
from app.zendesk.service import ZendeskConnectionService

logger = logging.getLogger(__name__)


def modal_errors(errors: Dict[str, str]) -> Dict[str, Any]:
    """view_submission response that keeps the modal open with field errors"""
    return {"response_action": "errors", "errors": errors}


class SlackHomeService:
    def __init__(self, token_processor: TokenProcessor):
        self.slack_connections = SlackConnectionService(token_processor)
        self.zendesk_connections = ZendeskConnectionService(token_processor)

    async def publish_home(
        self, db: AsyncSession, connection: SlackConnection, user_id: str
    ) -> None:
        organization = await db.get(Organization, connection.organization_id)
        result = await db.execute(
            select(Channel)
            .where(
                Channel.organization_id == connection.organization_id,
                Channel.is_member.is_(True),
            )
            .order_by(Channel.created_at.asc())
        )
        channels = result.scalars().all()
        zendesk_connection = await self.zendesk_connections.get_for_organization(
            db, connection.organization_id
        )

        view = views.build_home_view(
            channels, zendesk_connection, is_subscription_active(organization)
        )
        slack = self.slack_connections.slack_client(connection)
        await slack.publish_view(user_id, view)
        logger.info(f"Published home tab for user {user_id} ({len(channels)} channels)")

    async def open_zendesk_modal(
        self, db: AsyncSession, connection: SlackConnection, trigger_id: str
    ) -> None:
        zendesk_connection = await self.zendesk_connections.get_for_organization(
            db, connection.organization_id
        )
        slack = self.slack_connections.slack_client(connection)
        await slack.open_view(trigger_id, views.build_zendesk_modal(zendesk_connection))

    async def open_channel_modal(
        self,
        db: AsyncSession,
        connection: SlackConnection,
        trigger_id: str,
        slack_channel_id: str,
    ) -> None:
        channel = await self._get_channel(db, connection, slack_channel_id)
        if channel is None:
            logger.warning(f"Edit requested for unknown channel {slack_channel_id}")
            return
        slack = self.slack_connections.slack_client(connection)
        await slack.open_view(trigger_id, views.build_channel_modal(channel))

    async def open_account_modal(
        self, db: AsyncSession, connection: SlackConnection, trigger_id: str
    ) -> None:
        organization = await db.get(Organization, connection.organization_id)
        portal_url = None
        if stripe_service.configured and organization.stripe_customer_id:
            portal_url = await stripe_service.create_billing_portal_url(
                organization.stripe_customer_id,
                return_url=f"https://{connection.domain}.slack.com",
                subscription_id=organization.stripe_subscription_id,
            )
        used = await limit_service.count_member_channels(db, organization.id)
        view = views.build_account_modal(
            portal_url, channel_limit_for_product(organization.stripe_product_id), used
        )
        slack = self.slack_connections.slack_client(connection)
        await slack.open_view(trigger_id, view)

    async def save_zendesk_settings(
        self,
        db: AsyncSession,
        connection: SlackConnection,
        state: Dict[str, Any],
        user_id: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        """
        Handle the Zendesk modal submission.

        Returns:
            A modal error response, or None when the credentials were saved
        """
        domain = views.state_value(state, views.ZENDESK_DOMAIN_ACTION)
        email = views.state_value(state, views.ZENDESK_EMAIL_ACTION)
        api_key = views.state_value(state, views.ZENDESK_API_KEY_ACTION)

        try:
            await self.zendesk_connections.save_credentials(
                db, connection.organization_id, domain, email, api_key
            )
        except SyncError as e:
            logger.warning(
                f"Zendesk credentials rejected for organization {connection.organization_id}: {e}"
            )
            return modal_errors(
                {
                    "zendesk_api_key": "Could not connect to Zendesk with these "
                    "credentials. Check the values and try again."
                }
            )

        if user_id:
            await self._refresh_home(db, connection, user_id)
        return None

    async def save_channel_settings(
        self,
        db: AsyncSession,
        connection: SlackConnection,
        slack_channel_id: str,
        state: Dict[str, Any],
        user_id: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        errors = {}
        try:
            owner = views.parse_owner_email(
                views.state_value(state, views.EDIT_CHANNEL_OWNER_ACTION)
            )
        except ValueError:
            owner = None
            errors["channel_owner"] = "Please provide a valid email address or leave blank."

        tags = views.parse_tags(views.state_value(state, views.EDIT_CHANNEL_TAGS_ACTION))
        if tags is None:
            errors["channel_tags"] = (
                "Please provide a comma-separated list of tags without spaces or "
                "special characters, or leave blank."
            )

        if errors:
            return modal_errors(errors)

        channel = await self._get_channel(db, connection, slack_channel_id)
        if channel is None:
            logger.warning(f"Settings submitted for unknown channel {slack_channel_id}")
            return None

        channel.default_assignee_email = owner
        channel.tags = tags
        channel.updated_at = datetime.now(timezone.utc)
        await db.commit()
        logger.info(f"Updated settings for channel {slack_channel_id}")

        if user_id:
            await self._refresh_home(db, connection, user_id)
        return None

    async def _refresh_home(
        self, db: AsyncSession, connection: SlackConnection, user_id: str
    ) -> None:
        try:
            await self.publish_home(db, connection, user_id)
        except SyncError as e:
            logger.warning(f"Failed to refresh home tab for {user_id}: {e}")

    async def _get_channel(
        self, db: AsyncSession, connection: SlackConnection, slack_channel_id: str
    ) -> Optional[Channel]:
        result = await db.execute(
            select(Channel).where(
                Channel.organization_id == connection.organization_id,
                Channel.slack_channel_id == slack_channel_id,
            )
        )
        return result.scalar_one_or_none()
