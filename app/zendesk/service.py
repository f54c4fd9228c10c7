"""
Zendesk connection management and the Zendesk -> Slack relay.
"""

import enum
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.models import (
    Conversation,
    ConnectionStatus,
    Message,
    MessagePlatform,
    ZendeskConnection,
)
from app.security.zendesk_auth import (
    authenticate_zendesk_request,
    generate_webhook_token,
    hash_webhook_token,
)
from app.services.zendesk.client import ZendeskClient
from app.slack.service import SlackConnectionService
from app.sync.errors import (
    AuthenticationError,
    ConfigurationError,
    DownstreamError,
    PayloadValidationError,
    SyncError,
)
from app.sync.formatters import strip_signature, zendesk_to_slack_markdown
from app.utils.token_processor import DecryptionError, TokenProcessor
from app.zendesk.schemas import ZendeskTicketEvent

logger = logging.getLogger(__name__)

ZENDESK_DOMAIN_PATTERN = re.compile(r"^(?:https?://)?([^.]+)\.zendesk\.com$")

# Value the configuration modal pre-fills instead of the stored API key
HIDDEN_API_KEY = "<hidden>"

# Slack errors that will never succeed on retry; the agent is told instead
UNDELIVERABLE_SLACK_ERRORS = {
    "channel_not_found",
    "is_archived",
    "msg_too_long",
    "cannot_reply_to_message",
    "not_in_channel",
}

UNDELIVERED_WARNING_HTML = (
    "<p><strong>Zensync:</strong> this reply could not be delivered to Slack "
    "({error}). Check that the Slack channel still exists and that Zensync "
    "is a member.</p>"
)


def normalize_zendesk_domain(raw: str) -> str:
    """Accept `acme`, `acme.zendesk.com` or `https://acme.zendesk.com` and return `acme`."""
    value = re.sub(r"\s", "", raw or "").lower().rstrip("/")
    match = ZENDESK_DOMAIN_PATTERN.match(value)
    return match.group(1) if match else value


class RelayOutcome(str, enum.Enum):
    RELAYED = "relayed"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    UNDELIVERED = "undelivered"
    NOT_FOUND = "not_found"


class ZendeskConnectionService:
    def __init__(self, token_processor: TokenProcessor):
        self.token_processor = token_processor

    async def get_for_organization(
        self, db: AsyncSession, organization_id: str
    ) -> Optional[ZendeskConnection]:
        result = await db.execute(
            select(ZendeskConnection).where(
                ZendeskConnection.organization_id == organization_id
            )
        )
        return result.scalar_one_or_none()

    def client(self, connection: ZendeskConnection) -> ZendeskClient:
        """
        Raises:
            ConfigurationError: The stored API key cannot be decrypted
        """
        try:
            api_key = self.token_processor.decrypt(connection.encrypted_api_key)
        except DecryptionError as e:
            raise ConfigurationError(
                "Zendesk API key could not be decrypted",
                {"organization_id": connection.organization_id},
            ) from e
        return ZendeskClient(connection.zendesk_domain, connection.zendesk_email, api_key)

    async def get_active_client(
        self, db: AsyncSession, organization_id: str
    ) -> Tuple[ZendeskConnection, ZendeskClient]:
        """
        Raises:
            ConfigurationError: No active Zendesk connection for the organization
        """
        connection = await self.get_for_organization(db, organization_id)
        if not connection or connection.status != ConnectionStatus.ACTIVE:
            raise ConfigurationError(
                "No active Zendesk credentials", {"organization_id": organization_id}
            )
        return connection, self.client(connection)

    async def save_credentials(
        self,
        db: AsyncSession,
        organization_id: str,
        domain: str,
        email: str,
        api_key: str,
    ) -> ZendeskConnection:
        """
        Test Zendesk credentials, wire up the webhook and trigger, then store them.

        Nothing is persisted unless every Zendesk call succeeds.

        Raises:
            ConfigurationError: Credentials rejected or ROOT_URL not configured
            DownstreamError: Zendesk failed while creating the webhook or trigger
        """
        if not settings.ROOT_URL:
            raise ConfigurationError("ROOT_URL not configured")

        zendesk_domain = normalize_zendesk_domain(domain)
        zendesk_email = re.sub(r"\s", "", email or "").lower()
        zendesk_key = re.sub(r"\s", "", api_key or "")

        existing = await self.get_for_organization(db, organization_id)
        if zendesk_key == HIDDEN_API_KEY and existing:
            zendesk_key = self.token_processor.decrypt(existing.encrypted_api_key)

        if not (zendesk_domain and zendesk_email and zendesk_key):
            raise PayloadValidationError(
                "Zendesk domain, email and API key are required",
                {"organization_id": organization_id},
            )

        client = ZendeskClient(zendesk_domain, zendesk_email, zendesk_key)
        await client.get_current_user()

        webhook_token = generate_webhook_token()
        webhook_id = await client.create_webhook(
            f"{settings.ROOT_URL.rstrip('/')}{settings.API_V1_PREFIX}/zendesk/events",
            webhook_token,
        )
        trigger_id = await client.create_trigger(
            webhook_id, settings.ZENDESK_INTEGRATION_NAMESPACE
        )

        connection = existing or ZendeskConnection(
            id=str(uuid.uuid4()), organization_id=organization_id
        )
        connection.zendesk_domain = zendesk_domain
        connection.zendesk_email = zendesk_email
        connection.encrypted_api_key = self.token_processor.encrypt(zendesk_key)
        connection.zendesk_webhook_id = webhook_id
        connection.zendesk_trigger_id = trigger_id
        connection.webhook_token_hash = hash_webhook_token(webhook_token)
        connection.status = ConnectionStatus.ACTIVE
        if existing:
            connection.updated_at = datetime.now(timezone.utc)
        else:
            db.add(connection)

        await db.commit()
        await db.refresh(connection)
        logger.info(
            f"Saved Zendesk credentials for organization {organization_id} "
            f"(domain {zendesk_domain}, webhook {webhook_id}, trigger {trigger_id})"
        )
        return connection


class ZendeskEventService:
    """Relays public agent comments from Zendesk back into the Slack thread."""

    def __init__(self, token_processor: TokenProcessor):
        self.slack_connections = SlackConnectionService(token_processor)
        self.zendesk_connections = ZendeskConnectionService(token_processor)

    async def handle_ticket_event(
        self,
        db: AsyncSession,
        event: ZendeskTicketEvent,
        authorization: Optional[str],
    ) -> RelayOutcome:
        """
        Raises:
            PayloadValidationError: last_updated_at missing
            AuthenticationError: Bad bearer token, or the ticket belongs to another organization
            ConfigurationError: The organization has no usable Slack connection
            DownstreamError: Slack failed with a retryable error
        """
        namespace = settings.ZENDESK_INTEGRATION_NAMESPACE
        if (event.current_user_external_id or "").startswith(namespace):
            logger.info("Update made by Zensync, skipping")
            return RelayOutcome.SKIPPED

        if not event.last_updated_at:
            raise PayloadValidationError(
                "Missing last_updated_at", {"zendesk_ticket_id": event.ticket_id}
            )

        # Zendesk timestamps have minute precision; a reply in the ticket's
        # first minute is indistinguishable from the creation itself
        if event.last_updated_at == event.created_at:
            logger.info("Ticket event is not an update, skipping")
            return RelayOutcome.SKIPPED

        zendesk_connection = await authenticate_zendesk_request(db, authorization)
        organization_id = zendesk_connection.organization_id

        conversation = None
        if event.external_id:
            result = await db.execute(
                select(Conversation)
                .options(selectinload(Conversation.channel))
                .where(Conversation.id == event.external_id)
            )
            conversation = result.scalar_one_or_none()

        if not conversation:
            logger.warning(f"No conversation found for external id {event.external_id}")
            return RelayOutcome.NOT_FOUND

        if (
            not conversation.channel
            or conversation.channel.organization_id != organization_id
        ):
            logger.warning(
                f"Conversation {conversation.id} does not belong to organization {organization_id}"
            )
            raise AuthenticationError(
                "Ticket does not belong to this connection",
                {"organization_id": organization_id, "conversation_id": conversation.id},
            )

        platform_message_id = f"{event.ticket_id}:{event.last_updated_at}"
        result = await db.execute(
            select(Message.id).where(
                Message.conversation_id == conversation.id,
                Message.platform == MessagePlatform.ZENDESK,
                Message.platform_message_id == platform_message_id,
            )
        )
        if result.scalar_one_or_none():
            logger.info(f"Zendesk update {platform_message_id} already relayed")
            return RelayOutcome.DUPLICATE

        slack_connection = await self.slack_connections.get_for_organization(
            db, organization_id
        )
        if not slack_connection or slack_connection.status != ConnectionStatus.ACTIVE:
            raise ConfigurationError(
                "No active Slack connection", {"organization_id": organization_id}
            )
        slack = self.slack_connections.slack_client(slack_connection)

        username, icon_url = event.current_user_name or None, None
        if event.current_user_email:
            try:
                slack_user = await slack.lookup_user_by_email(event.current_user_email)
            except SyncError as e:
                logger.warning(f"Slack user lookup failed: {e}")
                slack_user = None
            if slack_user:
                profile = slack_user.get("profile") or {}
                username = (
                    profile.get("display_name") or profile.get("real_name") or username
                )
                icon_url = profile.get("image_192")

        text = zendesk_to_slack_markdown(
            strip_signature(event.message, event.current_user_signature)
        )
        links = [
            f"<{attachment.url}|{attachment.filename or 'attachment'}>"
            for attachment in event.attachments
            if attachment.url
        ]
        if links:
            text = "\n".join([text, *links]) if text else "\n".join(links)

        outcome = RelayOutcome.RELAYED
        try:
            await slack.post_message(
                conversation.channel.slack_channel_id,
                text,
                thread_ts=conversation.slack_parent_message_id,
                username=username,
                icon_url=icon_url,
            )
        except DownstreamError as e:
            if e.error_code not in UNDELIVERABLE_SLACK_ERRORS:
                raise
            logger.warning(
                f"Reply for ticket {event.ticket_id} undeliverable to Slack: {e.error_code}"
            )
            _, zendesk = await self.zendesk_connections.get_active_client(
                db, organization_id
            )
            await zendesk.update_ticket(
                conversation.zendesk_ticket_id,
                {
                    "comment": {
                        "html_body": UNDELIVERED_WARNING_HTML.format(error=e.error_code),
                        "public": False,
                    }
                },
                idempotency_key=f"undelivered:{platform_message_id}",
            )
            outcome = RelayOutcome.UNDELIVERED

        db.add(
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation.id,
                platform=MessagePlatform.ZENDESK,
                platform_message_id=platform_message_id,
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info(f"Zendesk update {platform_message_id} relayed concurrently")
            return RelayOutcome.DUPLICATE

        logger.info(
            f"Relayed Zendesk ticket {event.ticket_id} update to Slack ({outcome.value})"
        )
        return outcome
