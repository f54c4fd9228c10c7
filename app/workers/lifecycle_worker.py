"""
ConnectionLifecycleWorker - Provisions billing for new installs and revokes uninstalled ones.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.logging_config import bind_sync_context
from app.core.sentry import set_sentry_context
from app.services.sqs.client import QueueTopic, SQSClient
from app.slack.schemas import LifecycleJob
from app.sync.errors import HandlerResult
from app.sync.lifecycle import ConnectionLifecycleProcessor
from app.workers.base_worker import BaseWorker

logger = logging.getLogger(__name__)


class ConnectionLifecycleWorker(BaseWorker):
    def __init__(self, session_factory=None, queue: Optional[SQSClient] = None):
        super().__init__(
            "connection_lifecycle", QueueTopic.CONNECTION_LIFECYCLE_EVENTS, queue=queue
        )
        self.processor = ConnectionLifecycleProcessor(session_factory)

    async def process_message(self, message_body: Dict[str, Any]) -> HandlerResult:
        try:
            job = LifecycleJob.model_validate(message_body)
        except ValidationError as e:
            logger.error(f"Invalid lifecycle job: {e.error_count()} error(s)")
            return HandlerResult.DEAD_LETTER

        set_sentry_context(organization_id=job.connection_details.organization_id)
        bind_sync_context(organization_id=job.connection_details.organization_id)
        await self.processor.process(job)
        return HandlerResult.ACK
