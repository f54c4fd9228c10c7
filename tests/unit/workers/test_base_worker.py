"""
Unit tests for BaseWorker delivery settlement (ack / retry / dead-letter).
"""

from unittest.mock import AsyncMock

import pytest

from app.services.sqs.client import QueueTopic
from app.sync.errors import (
    ConfigurationError,
    HandlerResult,
    PayloadValidationError,
)
from app.workers.base_worker import BaseWorker


class StubWorker(BaseWorker):
    def __init__(self, queue, outcome, max_retries=3):
        super().__init__(
            "stub",
            QueueTopic.CHAT_MESSAGE_EVENTS,
            queue=queue,
            max_retries=max_retries,
            retry_delay_seconds=5,
        )
        self.outcome = outcome

    async def process_message(self, message_body):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def queue():
    mock_queue = AsyncMock()
    mock_queue.publish.return_value = True
    return mock_queue


def delivery(receive_count=1, body=None):
    return {
        "MessageId": "m-1",
        "ReceiptHandle": "rh-1",
        "ReceiveCount": receive_count,
        "Body": "{}",
        "ParsedBody": {"hello": "world"} if body is None else body,
    }


class TestHandleDelivery:
    @pytest.mark.asyncio
    async def test_ack_deletes(self, queue):
        worker = StubWorker(queue, HandlerResult.ACK)

        result = await worker.handle_delivery(delivery())

        assert result == HandlerResult.ACK
        queue.delete_message.assert_awaited_once_with(QueueTopic.CHAT_MESSAGE_EVENTS, "rh-1")
        queue.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retryable_error_is_redelivered_after_delay(self, queue):
        worker = StubWorker(queue, ConfigurationError("no zendesk"))

        result = await worker.handle_delivery(delivery(receive_count=1))

        assert result == HandlerResult.RETRY
        queue.change_message_visibility.assert_awaited_once_with(
            QueueTopic.CHAT_MESSAGE_EVENTS, "rh-1", 5
        )
        queue.delete_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted_dead_letters(self, queue):
        worker = StubWorker(queue, ConfigurationError("no zendesk"), max_retries=3)

        result = await worker.handle_delivery(delivery(receive_count=4))

        assert result == HandlerResult.DEAD_LETTER
        topic, body = queue.publish.await_args.args
        assert topic == QueueTopic.DEAD_LETTER
        assert body["topic"] == "chat-message-events"
        assert body["body"] == {"hello": "world"}
        assert body["receive_count"] == 4
        assert "no zendesk" in body["error"]
        assert queue.publish.await_args.kwargs["dedup_key"] == "m-1"
        queue.delete_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_last_allowed_attempt_still_retries(self, queue):
        worker = StubWorker(queue, HandlerResult.RETRY, max_retries=3)

        result = await worker.handle_delivery(delivery(receive_count=3))

        assert result == HandlerResult.RETRY

    @pytest.mark.asyncio
    async def test_non_retryable_error_dead_letters_immediately(self, queue):
        worker = StubWorker(queue, PayloadValidationError("bad payload"))

        result = await worker.handle_delivery(delivery(receive_count=1))

        assert result == HandlerResult.DEAD_LETTER
        assert queue.publish.await_args.args[0] == QueueTopic.DEAD_LETTER

    @pytest.mark.asyncio
    async def test_unparseable_body_dead_letters(self, queue):
        worker = StubWorker(queue, HandlerResult.ACK)
        message = delivery()
        message["ParsedBody"] = None

        result = await worker.handle_delivery(message)

        assert result == HandlerResult.DEAD_LETTER

    @pytest.mark.asyncio
    async def test_failed_dead_letter_publish_keeps_message(self, queue):
        queue.publish.return_value = False
        worker = StubWorker(queue, HandlerResult.DEAD_LETTER)

        await worker.handle_delivery(delivery())

        queue.delete_message.assert_not_awaited()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, queue):
        queue.receive_messages.return_value = []
        worker = StubWorker(queue, HandlerResult.ACK)

        await worker.start()
        assert worker.running
        await worker.stop()

        assert not worker.running
