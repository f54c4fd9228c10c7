import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ConnectionStatus, Organization, SlackConnection
from app.services.slack.client import SlackClient
from app.slack.schemas import ConnectionDetails, SlackOAuthResponse
from app.sync.errors import ConfigurationError, PayloadValidationError
from app.utils.token_processor import DecryptionError, TokenProcessor

logger = logging.getLogger(__name__)

# Message subtypes the sync engine knows how to relay
ELIGIBLE_MESSAGE_SUBTYPES = {None, "message_replied", "message_changed", "message_deleted"}


def is_message_eligible(event: Dict[str, Any], bot_user_id: Optional[str]) -> bool:
    """
    Whether a `message` event should be queued for syncing.

    Messages written by the bot itself (including the relayed Zendesk replies)
    are dropped so they never loop back into Zendesk.
    """
    if event.get("type") != "message":
        return False

    author = event.get("user") or (event.get("message") or {}).get("user")
    if bot_user_id and author == bot_user_id:
        logger.info("Ignoring message from the bot user")
        return False

    subtype = event.get("subtype")
    if subtype not in ELIGIBLE_MESSAGE_SUBTYPES:
        logger.info(f"Ignoring message subtype: {subtype}")
        return False
    return True


class SlackConnectionService:
    """
    Slack installations: lookup, OAuth upsert and per-connection API clients.

    The token processor is injected so bot tokens are only decrypted where a
    client is actually built.
    """

    def __init__(self, token_processor: TokenProcessor):
        self.token_processor = token_processor

    async def get_by_app_id(
        self, db: AsyncSession, app_id: Optional[str]
    ) -> Optional[SlackConnection]:
        if not app_id:
            return None
        result = await db.execute(
            select(SlackConnection).where(SlackConnection.app_id == app_id)
        )
        return result.scalar_one_or_none()

    async def get_for_job(
        self, db: AsyncSession, details: ConnectionDetails
    ) -> Optional[SlackConnection]:
        """Load the connection a queued job refers to, scoped by its organization."""
        result = await db.execute(
            select(SlackConnection).where(
                SlackConnection.id == details.slack_connection_id,
                SlackConnection.organization_id == details.organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_for_organization(
        self, db: AsyncSession, organization_id: str
    ) -> Optional[SlackConnection]:
        result = await db.execute(
            select(SlackConnection).where(
                SlackConnection.organization_id == organization_id
            )
        )
        return result.scalar_one_or_none()

    def slack_client(self, connection: SlackConnection) -> SlackClient:
        """
        Build an API client with the connection's decrypted bot token.

        Raises:
            ConfigurationError: The stored token cannot be decrypted
        """
        try:
            token = self.token_processor.decrypt(connection.encrypted_token)
        except DecryptionError as e:
            raise ConfigurationError(
                "Slack bot token could not be decrypted",
                {
                    "organization_id": connection.organization_id,
                    "slack_connection_id": connection.id,
                },
            ) from e
        return SlackClient(token=token)

    @staticmethod
    def connection_details(connection: SlackConnection) -> ConnectionDetails:
        return ConnectionDetails(
            organization_id=connection.organization_id,
            slack_connection_id=connection.id,
            app_id=connection.app_id,
            bot_user_id=connection.bot_user_id,
        )

    async def store_installation(
        self,
        db: AsyncSession,
        oauth: SlackOAuthResponse,
        team: Dict[str, Any],
        organization_id: Optional[str] = None,
    ) -> Tuple[SlackConnection, bool]:
        """
        Create or refresh the Slack connection after a successful OAuth exchange.

        A reinstall for a known team updates the existing row (and reactivates
        it). A first install creates the organization too unless the OAuth
        state was bound to one.

        Returns:
            (connection, created): created is True only for a brand new connection
        """
        encrypted_token = self.token_processor.encrypt(oauth.access_token)
        icon = team.get("icon") or {}
        now = datetime.now(timezone.utc)

        result = await db.execute(
            select(SlackConnection).where(SlackConnection.slack_team_id == oauth.team.id)
        )
        existing = result.scalar_one_or_none()

        if existing:
            connection = existing
            created = False
            connection.updated_at = now
            logger.info(f"Updated Slack connection for team {oauth.team.id}")
        else:
            organization = None
            if organization_id:
                organization = await db.get(Organization, organization_id)
                if organization is None:
                    raise PayloadValidationError(
                        "Organization bound to OAuth state no longer exists",
                        {"organization_id": organization_id},
                    )
                owned = await self.get_for_organization(db, organization_id)
                if owned is not None:
                    raise PayloadValidationError(
                        "Organization already has a Slack connection",
                        {"organization_id": organization_id},
                    )
            else:
                organization = Organization(
                    id=str(uuid.uuid4()), name=team.get("name") or oauth.team.name
                )
                db.add(organization)

            connection = SlackConnection(
                id=str(uuid.uuid4()),
                organization_id=organization.id,
                slack_team_id=oauth.team.id,
            )
            db.add(connection)
            created = True
            logger.info(f"Created Slack connection for team {oauth.team.id}")

        connection.app_id = oauth.app_id
        connection.encrypted_token = encrypted_token
        connection.bot_user_id = oauth.bot_user_id
        connection.authed_user_id = (oauth.authed_user or {}).get("id")
        connection.name = team.get("name") or oauth.team.name
        connection.domain = team.get("domain")
        connection.email_domain = team.get("email_domain")
        connection.icon_url = icon.get("image_132")
        connection.status = ConnectionStatus.ACTIVE

        await db.commit()
        await db.refresh(connection)
        return connection, created
