"""
DeadLetterWorker - Logs and drains messages that ran out of retries.
"""

import logging
from typing import Any, Dict, Optional

from app.services.sqs.client import QueueTopic, SQSClient
from app.sync.errors import HandlerResult
from app.workers.base_worker import BaseWorker

logger = logging.getLogger(__name__)


class DeadLetterWorker(BaseWorker):
    def __init__(self, queue: Optional[SQSClient] = None):
        super().__init__("dead_letter", QueueTopic.DEAD_LETTER, queue=queue)

    async def process_message(self, message_body: Dict[str, Any]) -> HandlerResult:
        body = message_body.get("body")
        details = {}
        if isinstance(body, dict):
            details = body.get("connection_details") or {}

        logger.error(
            f"Dead-lettered message from {message_body.get('topic')} after "
            f"{message_body.get('receive_count')} attempt(s): {message_body.get('error')} "
            f"(organization_id={details.get('organization_id')}, "
            f"idempotency_key={body.get('idempotency_key') if isinstance(body, dict) else None})"
        )
        return HandlerResult.ACK
