"""
File upload step for Slack file shares.

Files are streamed from Slack into Zendesk uploads, then the original event
is republished to chat-message-events carrying the upload tokens so the
sync engine can attach them to the ticket comment.
"""

import logging
from typing import List, Optional

from app.core.database import AsyncSessionLocal
from app.models import SlackConnection
from app.services.slack.client import SlackClient
from app.services.sqs.client import QueueTopic, SQSClient, sqs_client
from app.services.zendesk.client import ZendeskClient
from app.slack.events import SlackFile
from app.slack.schemas import QueueEnvelope
from app.slack.service import SlackConnectionService
from app.sync.errors import DownstreamError
from app.utils.token_processor import TokenProcessor
from app.zendesk.service import ZendeskConnectionService

logger = logging.getLogger(__name__)

# Slack sends this placeholder for files in channels the bot can't read yet
CHECK_FILE_INFO = "check_file_info"


class FileUploadRelay:
    def __init__(
        self,
        token_processor: TokenProcessor,
        session_factory=None,
        queue: Optional[SQSClient] = None,
    ):
        self.slack_connections = SlackConnectionService(token_processor)
        self.zendesk_connections = ZendeskConnectionService(token_processor)
        self.session_factory = session_factory or AsyncSessionLocal
        self.queue = queue or sqs_client

    async def process(
        self, envelope: QueueEnvelope, connection: SlackConnection
    ) -> List[str]:
        """
        Upload every file of the event and hand the event back to the chat queue.

        Returns:
            Zendesk upload tokens, in file order

        Raises:
            ConfigurationError: No active Zendesk connection
            DownstreamError: A download, upload or the republish failed
        """
        async with self.session_factory() as db:
            _, zendesk = await self.zendesk_connections.get_active_client(
                db, connection.organization_id
            )
        slack = self.slack_connections.slack_client(connection)

        files = [
            SlackFile.model_validate(raw) for raw in envelope.event.get("files") or []
        ]
        tokens = []
        for file in files:
            token = await self._upload(slack, zendesk, file)
            if token:
                tokens.append(token)

        logger.info(
            f"Uploaded {len(tokens)} of {len(files)} file(s) for organization "
            f"{connection.organization_id}"
        )

        republished = envelope.model_copy(update={"file_upload_tokens": tokens})
        published = await self.queue.publish(
            QueueTopic.CHAT_MESSAGE_EVENTS,
            republished.model_dump(),
            dedup_key=envelope.idempotency_key,
            group_key=envelope.group_key,
        )
        if not published:
            raise DownstreamError(
                "Failed to republish file share to chat-message-events",
                {"organization_id": connection.organization_id},
            )
        return tokens

    async def _upload(
        self, slack: SlackClient, zendesk: ZendeskClient, file: SlackFile
    ) -> Optional[str]:
        if file.file_access == CHECK_FILE_INFO and file.id:
            file = SlackFile.model_validate(await slack.files_info(file.id))

        if not file.url_private:
            logger.warning(f"Slack file {file.id} has no download URL, skipping")
            return None

        return await zendesk.upload_file(
            file.name or file.title or file.id or "file",
            slack.stream_file(file.url_private),
            file.mimetype,
        )
