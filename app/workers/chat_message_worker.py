"""
ChatMessageWorker - Relays queued Slack events (messages and channel lifecycle).
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.database import AsyncSessionLocal
from app.core.logging_config import bind_sync_context
from app.core.sentry import set_sentry_context
from app.models import ConnectionStatus, SlackConnection
from app.services.sqs.client import QueueTopic, SQSClient
from app.slack.events import SlackEventDispatcher
from app.slack.schemas import QueueEnvelope
from app.slack.service import SlackConnectionService
from app.sync.channels import ChannelLifecycleSync
from app.sync.engine import ConversationSyncEngine
from app.sync.errors import HandlerResult, PayloadValidationError
from app.utils.token_processor import TokenProcessor
from app.workers.base_worker import BaseWorker

logger = logging.getLogger(__name__)


async def load_job_connection(
    envelope: QueueEnvelope,
    connections: SlackConnectionService,
    session_factory,
) -> Optional[SlackConnection]:
    """Connection a job was queued for; None when it is gone or revoked."""
    async with session_factory() as db:
        connection = await connections.get_for_job(db, envelope.connection_details)
    if connection is None or connection.status == ConnectionStatus.REVOKED:
        return None
    return connection


class ChatMessageWorker(BaseWorker):
    def __init__(
        self,
        token_processor: TokenProcessor,
        session_factory=None,
        queue: Optional[SQSClient] = None,
    ):
        super().__init__("chat_message", QueueTopic.CHAT_MESSAGE_EVENTS, queue=queue)
        self.session_factory = session_factory or AsyncSessionLocal
        self.connections = SlackConnectionService(token_processor)

        engine = ConversationSyncEngine(token_processor, self.session_factory)
        channels = ChannelLifecycleSync(token_processor, self.session_factory)
        self.dispatcher = SlackEventDispatcher({**engine.handlers(), **channels.handlers()})

    async def process_message(self, message_body: Dict[str, Any]) -> HandlerResult:
        """
        Expected message_body format (QueueEnvelope):
        {
            "event_body": {...Slack event callback...},
            "connection_details": {"organization_id", "slack_connection_id", "app_id", "bot_user_id"},
            "idempotency_key": "Ev123",
            "file_upload_tokens": ["..."]  # only for republished file shares
        }
        """
        try:
            envelope = QueueEnvelope.model_validate(message_body)
        except ValidationError as e:
            logger.error(f"Invalid chat message envelope: {e.error_count()} error(s)")
            return HandlerResult.DEAD_LETTER

        if envelope.connection_details is None:
            # Retried, then dead-lettered once the retry budget runs out
            logger.error("Chat message job without connection details")
            return HandlerResult.RETRY

        details = envelope.connection_details
        set_sentry_context(organization_id=details.organization_id)
        bind_sync_context(
            organization_id=details.organization_id,
            slack_channel_id=envelope.slack_channel_id,
        )

        connection = await load_job_connection(
            envelope, self.connections, self.session_factory
        )
        if connection is None:
            logger.warning(
                f"Slack connection {details.slack_connection_id} is gone or revoked, dropping job"
            )
            return HandlerResult.ACK

        try:
            kind = await self.dispatcher.dispatch(envelope, connection)
        except PayloadValidationError as e:
            logger.warning(f"Dropping malformed Slack event: {e}")
            return HandlerResult.ACK

        logger.info(
            f"Handled {kind.value} event for organization {details.organization_id}"
        )
        return HandlerResult.ACK
