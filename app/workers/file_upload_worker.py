"""
FileUploadWorker - Moves Slack file shares into Zendesk uploads.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.database import AsyncSessionLocal
from app.core.logging_config import bind_sync_context
from app.core.sentry import set_sentry_context
from app.services.sqs.client import QueueTopic, SQSClient
from app.slack.schemas import QueueEnvelope
from app.slack.service import SlackConnectionService
from app.sync.errors import HandlerResult
from app.sync.files import FileUploadRelay
from app.utils.token_processor import TokenProcessor
from app.workers.base_worker import BaseWorker
from app.workers.chat_message_worker import load_job_connection

logger = logging.getLogger(__name__)


class FileUploadWorker(BaseWorker):
    def __init__(
        self,
        token_processor: TokenProcessor,
        session_factory=None,
        queue: Optional[SQSClient] = None,
    ):
        super().__init__("file_upload", QueueTopic.FILE_UPLOAD_JOBS, queue=queue)
        self.session_factory = session_factory or AsyncSessionLocal
        self.connections = SlackConnectionService(token_processor)
        self.relay = FileUploadRelay(
            token_processor, self.session_factory, queue=self.queue
        )

    async def process_message(self, message_body: Dict[str, Any]) -> HandlerResult:
        try:
            envelope = QueueEnvelope.model_validate(message_body)
        except ValidationError as e:
            logger.error(f"Invalid file upload envelope: {e.error_count()} error(s)")
            return HandlerResult.DEAD_LETTER

        if envelope.connection_details is None:
            logger.error("File upload job without connection details")
            return HandlerResult.RETRY

        set_sentry_context(organization_id=envelope.connection_details.organization_id)
        bind_sync_context(
            organization_id=envelope.connection_details.organization_id,
            slack_channel_id=envelope.slack_channel_id,
        )

        connection = await load_job_connection(
            envelope, self.connections, self.session_factory
        )
        if connection is None:
            logger.warning("Slack connection is gone or revoked, dropping file upload")
            return HandlerResult.ACK

        await self.relay.process(envelope, connection)
        return HandlerResult.ACK
