"""
Dashboard view of an organization's Slack and Zendesk connections.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.services.limit_service import (
    channel_limit_for_product,
    is_subscription_active,
    limit_service,
)
from app.models import Organization
from app.slack.schemas import SlackConnectionPublic
from app.slack.service import SlackConnectionService
from app.utils.token_processor import TokenProcessor
from app.zendesk.schemas import ZendeskConnectionPublic, ZendeskCredentialsUpdate
from app.zendesk.service import ZendeskConnectionService

from .schemas import OrganizationConnectionsResponse

logger = logging.getLogger(__name__)


class ConnectionsService:
    def __init__(self, db: AsyncSession, token_processor: TokenProcessor):
        self.db = db
        self.slack_connections = SlackConnectionService(token_processor)
        self.zendesk_connections = ZendeskConnectionService(token_processor)

    async def get_connections(
        self, organization_id: str
    ) -> Optional[OrganizationConnectionsResponse]:
        """Returns None when the organization does not exist."""
        organization = await self.db.get(Organization, organization_id)
        if organization is None:
            return None

        slack = await self.slack_connections.get_for_organization(
            self.db, organization_id
        )
        zendesk = await self.zendesk_connections.get_for_organization(
            self.db, organization_id
        )
        return OrganizationConnectionsResponse(
            organization_id=organization_id,
            subscription_active=is_subscription_active(organization),
            channel_limit=channel_limit_for_product(organization.stripe_product_id),
            channels_used=await limit_service.count_member_channels(
                self.db, organization_id
            ),
            slack=SlackConnectionPublic.model_validate(slack) if slack else None,
            zendesk=ZendeskConnectionPublic.model_validate(zendesk) if zendesk else None,
        )

    async def update_zendesk(
        self, organization_id: str, update: ZendeskCredentialsUpdate
    ) -> Optional[ZendeskConnectionPublic]:
        """
        Verify and store new Zendesk credentials for the organization.

        Returns:
            The saved connection, or None when the organization does not exist

        Raises:
            SyncError: Zendesk rejected the credentials or failed mid-setup
        """
        organization = await self.db.get(Organization, organization_id)
        if organization is None:
            return None

        connection = await self.zendesk_connections.save_credentials(
            self.db,
            organization_id,
            update.zendesk_domain,
            update.zendesk_email,
            update.zendesk_api_key,
        )
        return ZendeskConnectionPublic.model_validate(connection)
