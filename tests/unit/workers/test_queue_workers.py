"""
Unit tests for the file upload, lifecycle, billing and dead-letter workers.
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.sync.errors import HandlerResult
from app.workers.billing_worker import BillingWorker
from app.workers.dead_letter_worker import DeadLetterWorker
from app.workers.file_upload_worker import FileUploadWorker
from app.workers.lifecycle_worker import ConnectionLifecycleWorker


def connection_details(slack_connection):
    return {
        "organization_id": slack_connection.organization_id,
        "slack_connection_id": slack_connection.id,
        "app_id": slack_connection.app_id,
        "bot_user_id": slack_connection.bot_user_id,
    }


class TestFileUploadWorker:
    @pytest.fixture
    def worker(self, token_processor, session_factory):
        file_worker = FileUploadWorker(token_processor, session_factory, queue=AsyncMock())
        file_worker.relay.process = AsyncMock(return_value=["tok"])
        return file_worker

    @pytest.mark.asyncio
    async def test_relays_files(self, worker, slack_connection):
        body = {
            "event_body": {"event": {"type": "message", "subtype": "file_share"}},
            "connection_details": connection_details(slack_connection),
        }

        assert await worker.process_message(body) == HandlerResult.ACK
        envelope, connection = worker.relay.process.await_args.args
        assert connection.id == slack_connection.id

    @pytest.mark.asyncio
    async def test_missing_details_retries(self, worker):
        result = await worker.process_message({"event_body": {"event": {}}})

        assert result == HandlerResult.RETRY
        worker.relay.process.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_body_dead_letters(self, worker):
        assert await worker.process_message({"event_body": "nope"}) == HandlerResult.DEAD_LETTER


class TestConnectionLifecycleWorker:
    @pytest.mark.asyncio
    async def test_processes_job(self, session_factory, slack_connection):
        worker = ConnectionLifecycleWorker(session_factory, queue=AsyncMock())
        worker.processor.process = AsyncMock()

        result = await worker.process_message(
            {"kind": "app_uninstalled", "connection_details": connection_details(slack_connection)}
        )

        assert result == HandlerResult.ACK
        assert worker.processor.process.await_args.args[0].kind == "app_uninstalled"

    @pytest.mark.asyncio
    async def test_invalid_job_dead_letters(self, session_factory):
        worker = ConnectionLifecycleWorker(session_factory, queue=AsyncMock())

        assert await worker.process_message({"kind": "app_uninstalled"}) == HandlerResult.DEAD_LETTER


class TestBillingWorker:
    @pytest.mark.asyncio
    async def test_applies_subscription_change(self, session_factory):
        worker = BillingWorker(session_factory, queue=AsyncMock())

        with patch(
            "app.workers.billing_worker.subscription_service.handle_subscription_changed",
            new=AsyncMock(return_value=True),
        ) as handle:
            result = await worker.process_message(
                {
                    "event_id": "evt_1",
                    "event_type": "customer.subscription.updated",
                    "created": 1_717_000_000,
                    "subscription_id": "sub_1",
                }
            )

        assert result == HandlerResult.ACK
        assert handle.await_args.args[1].subscription_id == "sub_1"

    @pytest.mark.asyncio
    async def test_invalid_job_dead_letters(self, session_factory):
        worker = BillingWorker(session_factory, queue=AsyncMock())

        assert await worker.process_message({"event_id": "evt_1"}) == HandlerResult.DEAD_LETTER


@pytest.mark.asyncio
async def test_dead_letter_worker_always_acks():
    worker = DeadLetterWorker(queue=AsyncMock())

    assert (
        await worker.process_message(
            {"topic": "chat-message-events", "body": {"idempotency_key": "Ev1"}, "error": "boom"}
        )
        == HandlerResult.ACK
    )
    assert await worker.process_message({"body": "raw text"}) == HandlerResult.ACK
