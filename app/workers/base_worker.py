import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from app.core.config import settings
from app.core.logging_config import bind_sync_context, clear_job_id, set_job_id
from app.core.sentry import clear_sentry_context, set_sentry_context
from app.services.sqs.client import QueueTopic, SQSClient, max_retries_for, sqs_client
from app.sync.errors import HandlerResult, SyncError

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    def __init__(
        self,
        worker_name: str,
        topic: QueueTopic,
        queue: Optional[SQSClient] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[int] = None,
    ):
        """
        Initialize the worker for one queue topic in a stopped state.

        Parameters:
            worker_name (str): Identifier for the worker instance; used in logging.
            topic (QueueTopic): Queue this worker consumes.
            queue (SQSClient): Queue adapter, defaults to the shared client.
            max_retries (int): Redeliveries allowed after the first attempt.
            retry_delay_seconds (int): Delay before a retried message is redelivered.
        """
        self.worker_name = worker_name
        self.topic = topic
        self.queue = queue or sqs_client
        self.max_retries = (
            max_retries if max_retries is not None else max_retries_for(topic)
        )
        self.retry_delay_seconds = (
            retry_delay_seconds
            if retry_delay_seconds is not None
            else settings.QUEUE_RETRY_DELAY_SECONDS
        )
        self.running = False
        self.worker_task = None

    async def start(self):
        """
        Start the worker's background polling loop.

        If the worker is already running, no action is taken.
        """
        if self.running:
            logger.warning(f"Worker {self.worker_name} is already running")
            return

        self.running = True
        self.worker_task = asyncio.create_task(self._run_worker())
        logger.info(f"Worker {self.worker_name} started on {self.topic.value}")

    async def stop(self):
        """
        Stop the worker loop and cancel its background task.
        """
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except asyncio.CancelledError:
                pass

        logger.info(f"Worker {self.worker_name} stopped")

    async def _run_worker(self):
        """
        Continuously poll the topic's queue one message at a time and settle each delivery.

        The loop exits immediately on cancellation and, on any other unexpected error, logs the exception and pauses for 5 seconds before polling again.
        """
        while self.running:
            try:
                messages = await self.queue.receive_messages(
                    self.topic, max_messages=1, wait_time=20
                )

                for message in messages:
                    if not self.running:
                        break
                    await self.handle_delivery(message)

            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception(f"Worker {self.worker_name} encountered error")
                await asyncio.sleep(5)

    async def handle_delivery(self, message: Dict[str, Any]) -> HandlerResult:
        """
        Run one SQS delivery through process_message and settle it.

        - ACK: delete the message.
        - RETRY: make it visible again after retry_delay_seconds, unless the
          receive count already used up the retry budget, then dead-letter.
        - DEAD_LETTER: copy to the dead-letter topic and delete.

        Returns:
            HandlerResult: The settlement that was applied.
        """
        receipt_handle = message["ReceiptHandle"]
        receive_count = int(message.get("ReceiveCount", 1))
        job_id = message.get("MessageId", "-")
        set_job_id(job_id)
        set_sentry_context(job_id=job_id, topic=self.topic.value)

        try:
            parsed_body = message.get("ParsedBody")
            if parsed_body is None:
                logger.error(
                    f"Worker {self.worker_name} received unparseable body, dead-lettering"
                )
                result = HandlerResult.DEAD_LETTER
                error = "unparseable body"
            else:
                try:
                    result = await self.process_message(parsed_body)
                    error = None
                except Exception as exc:
                    result = HandlerResult.from_exception(exc)
                    error = str(exc)
                    if isinstance(exc, SyncError):
                        bind_sync_context(**exc.context)
                    logger.exception(
                        f"Worker {self.worker_name} failed to process message "
                        f"(attempt {receive_count}, outcome {result.value})"
                    )

            if result == HandlerResult.RETRY and receive_count > self.max_retries:
                logger.error(
                    f"Worker {self.worker_name} exhausted {self.max_retries} retries"
                )
                result = HandlerResult.DEAD_LETTER

            if result == HandlerResult.ACK:
                await self.queue.delete_message(self.topic, receipt_handle)
                logger.debug(
                    f"Worker {self.worker_name} processed message successfully"
                )
            elif result == HandlerResult.RETRY:
                await self.queue.change_message_visibility(
                    self.topic, receipt_handle, self.retry_delay_seconds
                )
            else:
                await self._dead_letter(message, error, receive_count)

            return result
        finally:
            clear_job_id()
            clear_sentry_context()

    async def _dead_letter(
        self, message: Dict[str, Any], error: Optional[str], receive_count: int
    ) -> None:
        if self.topic == QueueTopic.DEAD_LETTER:
            # Nowhere further to route; drop after logging
            logger.error(f"Dropping dead-letter message: {message.get('Body')}")
            await self.queue.delete_message(self.topic, message["ReceiptHandle"])
            return

        published = await self.queue.publish(
            QueueTopic.DEAD_LETTER,
            {
                "topic": self.topic.value,
                "body": message.get("ParsedBody") or message.get("Body"),
                "error": error,
                "receive_count": receive_count,
            },
            dedup_key=message.get("MessageId"),
            group_key=message.get("MessageId"),
        )
        if published:
            await self.queue.delete_message(self.topic, message["ReceiptHandle"])
        else:
            # Leave it in flight; SQS redrive policy or the next receive handles it
            logger.error(
                f"Worker {self.worker_name} could not publish to dead-letter topic"
            )

    @abstractmethod
    async def process_message(self, message_body: Dict[str, Any]) -> HandlerResult:
        """
        Handle a single parsed SQS message.

        Implementations return a HandlerResult. Raised exceptions are mapped
        through HandlerResult.from_exception.
        """
        pass
