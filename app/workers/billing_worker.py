"""
BillingWorker - Applies Stripe subscription changes queued by the webhook.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.billing.schemas import SubscriptionChangedJob
from app.billing.services.subscription_service import subscription_service
from app.core.database import AsyncSessionLocal
from app.services.sqs.client import QueueTopic, SQSClient
from app.sync.errors import HandlerResult
from app.workers.base_worker import BaseWorker

logger = logging.getLogger(__name__)


class BillingWorker(BaseWorker):
    def __init__(self, session_factory=None, queue: Optional[SQSClient] = None):
        super().__init__("billing", QueueTopic.BILLING_EVENTS, queue=queue)
        self.session_factory = session_factory or AsyncSessionLocal

    async def process_message(self, message_body: Dict[str, Any]) -> HandlerResult:
        try:
            job = SubscriptionChangedJob.model_validate(message_body)
        except ValidationError as e:
            logger.error(f"Invalid billing job: {e.error_count()} error(s)")
            return HandlerResult.DEAD_LETTER

        async with self.session_factory() as db:
            await subscription_service.handle_subscription_changed(db, job)
        return HandlerResult.ACK
