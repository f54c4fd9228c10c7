"""
Conversation mapping engine: Slack messages -> Zendesk tickets and comments.

A Slack thread root opens a ticket (one Conversation row) and every reply in
the thread becomes a comment on it. Root messages posted by the same author
shortly after their previous one are folded into the open ticket instead of
opening a new one.

Every relayed Slack message leaves a Message row behind; seeing that row again
turns a redelivered job into a no-op. Zendesk requests carry an
Idempotency-Key derived from the channel and message so a crash between the
Zendesk call and the database commit does not create duplicates either.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.services.limit_service import is_channel_eligible
from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.logging_config import bind_sync_context
from app.models import (
    Channel,
    Conversation,
    Message,
    MessagePlatform,
    SlackConnection,
)
from app.services.slack.client import SlackClient
from app.services.zendesk.client import ZendeskClient
from app.slack.events import (
    FileShareEvent,
    MessageChangedEvent,
    MessageDeletedEvent,
    MessageEvent,
    SlackEventKind,
    EventHandler,
)
from app.slack.schemas import QueueEnvelope
from app.slack.service import SlackConnectionService
from app.sync.errors import MappingError, ZendeskTicketClosedError
from app.sync.formatters import attachment_links_html, html_permalink, message_html
from app.utils.token_processor import TokenProcessor
from app.zendesk.service import ZendeskConnectionService

logger = logging.getLogger(__name__)

# Namespace for conversation ids: the same Slack root always maps to the same
# id, so a retried ticket creation reuses the ticket's external_id
CONVERSATION_NAMESPACE = uuid.UUID("6f1c2a0e-5d8b-4c1e-9a57-2f0f3e7b9d41")

EDITED_PREFIX_HTML = "<strong>(Edited)</strong><br><br>"
DELETED_PREFIX_HTML = "<strong>(Deleted)</strong><br><br>"
SUBJECT_PREVIEW_LENGTH = 69


def conversation_id_for(channel_id: str, ts: str) -> str:
    return str(uuid.uuid5(CONVERSATION_NAMESPACE, f"{channel_id}:{ts}"))


def seconds_between(earlier_ts: str, later_ts: str) -> float:
    """Slack ts values are "<unix seconds>.<sequence>" strings"""
    return float(later_ts) - float(earlier_ts)


def profile_image_url(image_url: Optional[str]) -> Optional[str]:
    """
    Slack profile images can be gravatar URLs carrying the Slack-hosted
    fallback in the `d` parameter; prefer the Slack one.
    """
    if not image_url:
        return None
    gravatar_url, _, slack_url = image_url.partition("&d=")
    if slack_url:
        return unquote(slack_url)
    return gravatar_url


class ConversationSyncEngine:
    """Handlers for the message kinds of Slack events."""

    def __init__(self, token_processor: TokenProcessor, session_factory=None):
        self.slack_connections = SlackConnectionService(token_processor)
        self.zendesk_connections = ZendeskConnectionService(token_processor)
        self.session_factory = session_factory or AsyncSessionLocal

    def handlers(self) -> Dict[SlackEventKind, EventHandler]:
        return {
            SlackEventKind.MESSAGE: self.handle_message,
            SlackEventKind.FILE_SHARE: self.handle_file_share,
            SlackEventKind.MESSAGE_CHANGED: self.handle_message_changed,
            SlackEventKind.MESSAGE_DELETED: self.handle_message_deleted,
        }

    # ---------- handlers ----------

    async def handle_message(
        self, envelope: QueueEnvelope, event: MessageEvent, connection: SlackConnection
    ) -> None:
        async with self.session_factory() as db:
            await self._relay(db, connection, event, platform_message_id=event.ts)

    async def handle_file_share(
        self,
        envelope: QueueEnvelope,
        event: FileShareEvent,
        connection: SlackConnection,
    ) -> None:
        tokens = envelope.file_upload_tokens or []
        extra_html = ""
        if not tokens:
            logger.warning("File share without upload tokens, linking files instead")
            extra_html = attachment_links_html(f.model_dump() for f in event.files)

        async with self.session_factory() as db:
            await self._relay(
                db,
                connection,
                event,
                platform_message_id=event.ts,
                upload_tokens=tokens,
                extra_html=extra_html,
            )

    async def handle_message_changed(
        self,
        envelope: QueueEnvelope,
        event: MessageChangedEvent,
        connection: SlackConnection,
    ) -> None:
        if not event.text_changed():
            logger.info("Message edit did not change the text, ignoring")
            return

        message = event.as_message()
        async with self.session_factory() as db:
            await self._relay(
                db,
                connection,
                message,
                platform_message_id=f"{message.ts}:edited:{event.event_ts or ''}",
                prefix_html=EDITED_PREFIX_HTML,
                thread_parent=message.parent_message_id or message.ts,
            )

    async def handle_message_deleted(
        self,
        envelope: QueueEnvelope,
        event: MessageDeletedEvent,
        connection: SlackConnection,
    ) -> None:
        message = event.as_message()
        if message is None:
            logger.warning("Message deletion without previous_message, ignoring")
            return

        is_root = message.parent_message_id is None
        async with self.session_factory() as db:
            await self._relay(
                db,
                connection,
                message,
                platform_message_id=f"{message.ts}:deleted",
                prefix_html=DELETED_PREFIX_HTML,
                thread_parent=message.parent_message_id or message.ts,
                public=False,
                status="closed" if is_root else None,
            )

    # ---------- relay ----------

    async def _relay(
        self,
        db: AsyncSession,
        connection: SlackConnection,
        message: MessageEvent,
        *,
        platform_message_id: str,
        prefix_html: str = "",
        extra_html: str = "",
        upload_tokens: Optional[List[str]] = None,
        thread_parent: Optional[str] = None,
        public: bool = True,
        status: Optional[str] = None,
    ) -> None:
        context = {
            "organization_id": connection.organization_id,
            "slack_channel_id": message.channel,
            "slack_ts": message.ts,
        }

        channel = await self._get_channel(db, connection.organization_id, message.channel)
        if channel is None:
            raise MappingError("Channel is not registered", context)
        if not is_channel_eligible(channel):
            logger.info(f"Channel {message.channel} is not eligible for syncing, skipping")
            return

        if await self._already_relayed(db, channel.id, platform_message_id):
            logger.info(f"Slack message {platform_message_id} already relayed")
            return

        if not message.user:
            logger.warning(f"Slack message {message.ts} has no author, skipping")
            return

        _, zendesk = await self.zendesk_connections.get_active_client(
            db, connection.organization_id
        )
        slack = self.slack_connections.slack_client(connection)
        author_id = await self._upsert_zendesk_user(slack, zendesk, message)

        html_body = (
            prefix_html
            + message_html(message.text)
            + extra_html
            + html_permalink(connection.domain, message.channel, message.ts)
        )
        comment: Dict[str, Any] = {
            "html_body": html_body,
            "public": public,
            "author_id": author_id,
        }
        if upload_tokens:
            comment["uploads"] = upload_tokens

        relay = _Relay(
            db=db,
            zendesk=zendesk,
            channel=channel,
            message=message,
            platform_message_id=platform_message_id,
            comment=comment,
            author_id=author_id,
            status=status,
            context=context,
        )

        parent_ts = message.parent_message_id or thread_parent
        if parent_ts:
            conversation = await self._find_conversation(db, channel.id, parent_ts)
            if conversation is None:
                raise MappingError("No conversation for thread reply", context)
            await relay.append(conversation)
            return

        conversation = await self._find_same_sender_conversation(db, channel, message)
        if conversation is not None:
            logger.info(
                f"Appending root message to conversation {conversation.id} (same sender)"
            )
            await relay.append(conversation)
            return

        await relay.create()

    # ---------- lookups ----------

    async def _get_channel(
        self, db: AsyncSession, organization_id: str, slack_channel_id: str
    ) -> Optional[Channel]:
        result = await db.execute(
            select(Channel).where(
                Channel.organization_id == organization_id,
                Channel.slack_channel_id == slack_channel_id,
            )
        )
        return result.scalar_one_or_none()

    async def _already_relayed(
        self, db: AsyncSession, channel_id: str, platform_message_id: str
    ) -> bool:
        result = await db.execute(
            select(Message.id)
            .join(Conversation, Message.conversation_id == Conversation.id)
            .where(
                Conversation.channel_id == channel_id,
                Message.platform == MessagePlatform.SLACK,
                Message.platform_message_id == platform_message_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _find_conversation(
        self, db: AsyncSession, channel_id: str, parent_ts: str
    ) -> Optional[Conversation]:
        """
        Conversation for a thread parent: the root of its own ticket, or a
        root that was folded into an earlier ticket by the same-sender window.
        """
        result = await db.execute(
            select(Conversation).where(
                Conversation.channel_id == channel_id,
                Conversation.slack_parent_message_id == parent_ts,
            )
        )
        conversation = result.scalar_one_or_none()
        if conversation is not None:
            return conversation

        result = await db.execute(
            select(Conversation)
            .join(Message, Message.conversation_id == Conversation.id)
            .where(
                Conversation.channel_id == channel_id,
                Message.platform == MessagePlatform.SLACK,
                Message.platform_message_id == parent_ts,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _find_same_sender_conversation(
        self, db: AsyncSession, channel: Channel, message: MessageEvent
    ) -> Optional[Conversation]:
        result = await db.execute(
            select(Conversation)
            .where(
                Conversation.channel_id == channel.id,
                Conversation.slack_author_user_id == message.user,
                Conversation.is_open.is_(True),
            )
            .order_by(Conversation.created_at.desc())
            .limit(1)
        )
        conversation = result.scalar_one_or_none()
        if conversation is None:
            return None

        elapsed = seconds_between(conversation.latest_slack_message_id, message.ts)
        window = settings.SAME_SENDER_WINDOW_MINUTES * 60
        if 0 <= elapsed <= window:
            return conversation
        return None

    async def _upsert_zendesk_user(
        self, slack: SlackClient, zendesk: ZendeskClient, message: MessageEvent
    ) -> int:
        profile = await slack.users_profile_get(message.user)
        username = profile.get("display_name") or profile.get("real_name")
        name = f"{username} (via Slack)" if username else "Unknown Slack user"
        namespace = settings.ZENDESK_INTEGRATION_NAMESPACE
        return await zendesk.create_or_update_user(
            external_id=f"{namespace}-{message.channel}:{message.user}",
            name=name,
            remote_photo_url=profile_image_url(profile.get("image_72")),
        )


class _Relay:
    """One Slack message on its way into a ticket."""

    def __init__(
        self,
        *,
        db: AsyncSession,
        zendesk: ZendeskClient,
        channel: Channel,
        message: MessageEvent,
        platform_message_id: str,
        comment: Dict[str, Any],
        author_id: int,
        status: Optional[str],
        context: Dict[str, Any],
    ):
        self.db = db
        self.zendesk = zendesk
        self.channel = channel
        self.message = message
        self.platform_message_id = platform_message_id
        self.comment = comment
        self.author_id = author_id
        self.status = status
        self.context = context

    @property
    def idempotency_key(self) -> str:
        return f"{self.channel.slack_channel_id}{self.platform_message_id}"

    async def append(self, conversation: Conversation) -> None:
        bind_sync_context(zendesk_ticket_id=conversation.zendesk_ticket_id)
        ticket: Dict[str, Any] = {"comment": self.comment}
        if self.status:
            ticket["status"] = self.status

        try:
            await self.zendesk.update_ticket(
                conversation.zendesk_ticket_id,
                ticket,
                idempotency_key=self.idempotency_key,
            )
        except ZendeskTicketClosedError:
            if not self.comment["public"]:
                logger.info(
                    f"Ticket {conversation.zendesk_ticket_id} is closed, dropping private comment"
                )
            else:
                await self._follow_up(conversation)
                return

        if self.status == "closed":
            conversation.is_open = False
        self._touch(conversation)
        self._record(conversation)
        await self.db.commit()
        logger.info(
            f"Added comment to ticket {conversation.zendesk_ticket_id} "
            f"for Slack message {self.platform_message_id}"
        )

    async def create(self) -> None:
        conversation_id = conversation_id_for(
            self.channel.slack_channel_id, self.message.ts
        )
        ticket = await self.zendesk.create_ticket(
            self._ticket_payload(conversation_id),
            idempotency_key=self.idempotency_key,
        )
        ticket_id = str(ticket["id"])
        channel_pk = self.channel.id
        bind_sync_context(zendesk_ticket_id=ticket_id)

        conversation = Conversation(
            id=conversation_id,
            channel_id=channel_pk,
            zendesk_ticket_id=ticket_id,
            slack_parent_message_id=self.message.ts,
            slack_author_user_id=self.message.user,
            latest_slack_message_id=self.message.ts,
            is_open=True,
        )
        self.db.add(conversation)
        self._touch(conversation)
        self._record(conversation)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another delivery of the same root won the insert. Rollback
            # expires the channel, which append() reads again
            await self.db.rollback()
            await self.db.refresh(self.channel)
            logger.info(f"Conversation for {self.message.ts} created concurrently")
            result = await self.db.execute(
                select(Conversation).where(
                    Conversation.channel_id == channel_pk,
                    Conversation.slack_parent_message_id == self.message.ts,
                )
            )
            winner = result.scalar_one_or_none()
            if winner is None:
                raise MappingError("Conversation insert conflicted", self.context)
            if await self._recorded(winner):
                return
            await self.append(winner)
            return

        logger.info(
            f"Created ticket {ticket_id} for Slack message {self.message.ts} "
            f"(conversation {conversation_id})"
        )

    async def _follow_up(self, conversation: Conversation) -> None:
        """The ticket was closed or deleted: open a follow-up and repoint the conversation."""
        source_ticket_id = conversation.zendesk_ticket_id
        ticket = await self.zendesk.create_ticket(
            self._ticket_payload(conversation.id, follow_up_of=source_ticket_id),
            idempotency_key=f"{self.idempotency_key}:followup",
        )
        conversation.zendesk_ticket_id = str(ticket["id"])
        conversation.is_open = True
        self._touch(conversation)
        self._record(conversation)
        await self.db.commit()
        logger.info(
            f"Ticket {source_ticket_id} closed, created follow-up {conversation.zendesk_ticket_id}"
        )

    def _ticket_payload(
        self, conversation_id: str, follow_up_of: Optional[str] = None
    ) -> Dict[str, Any]:
        text = self.message.text or ""
        ticket: Dict[str, Any] = {
            "subject": f"{self.channel.name}: {text[:SUBJECT_PREVIEW_LENGTH]}...",
            "comment": self.comment,
            "requester_id": self.author_id,
            "external_id": conversation_id,
            "tags": [settings.ZENDESK_INTEGRATION_NAMESPACE, *(self.channel.tags or [])],
        }
        if self.channel.default_assignee_email:
            ticket["assignee_email"] = self.channel.default_assignee_email
        if follow_up_of:
            ticket["via_followup_source_id"] = follow_up_of
        return ticket

    async def _recorded(self, conversation: Conversation) -> bool:
        result = await self.db.execute(
            select(Message.id).where(
                Message.conversation_id == conversation.id,
                Message.platform == MessagePlatform.SLACK,
                Message.platform_message_id == self.platform_message_id,
            )
        )
        return result.scalar_one_or_none() is not None

    def _record(self, conversation: Conversation) -> None:
        self.db.add(
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation.id,
                platform=MessagePlatform.SLACK,
                platform_message_id=self.platform_message_id,
            )
        )

    def _touch(self, conversation: Conversation) -> None:
        now = datetime.now(timezone.utc)
        if seconds_between(conversation.latest_slack_message_id, self.message.ts) > 0:
            conversation.latest_slack_message_id = self.message.ts
        conversation.updated_at = now
        self.channel.latest_activity_at = now
