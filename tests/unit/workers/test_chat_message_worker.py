"""
Unit tests for ChatMessageWorker envelope handling.
"""

from unittest.mock import AsyncMock

import pytest

from app.core.logging_config import clear_job_id, organization_id_var, slack_channel_id_var
from app.models import ConnectionStatus
from app.slack.events import SlackEventKind
from app.sync.errors import HandlerResult, PayloadValidationError
from app.workers.chat_message_worker import ChatMessageWorker


def envelope_body(slack_connection, event=None):
    return {
        "event_body": {
            "type": "event_callback",
            "event_id": "Ev1",
            "event": event or {"type": "channel_left", "channel": "C0001"},
        },
        "connection_details": {
            "organization_id": slack_connection.organization_id,
            "slack_connection_id": slack_connection.id,
            "app_id": slack_connection.app_id,
            "bot_user_id": slack_connection.bot_user_id,
        },
        "idempotency_key": "Ev1",
    }


@pytest.fixture
def worker(token_processor, session_factory):
    return ChatMessageWorker(token_processor, session_factory, queue=AsyncMock())


class TestChatMessageWorker:
    def test_dispatcher_covers_every_kind(self, worker):
        registered = set(worker.dispatcher.handlers)
        assert registered == {k for k in SlackEventKind if k != SlackEventKind.UNKNOWN}

    @pytest.mark.asyncio
    async def test_dispatches_event(self, worker, slack_connection):
        worker.dispatcher.dispatch = AsyncMock(return_value=SlackEventKind.CHANNEL_LEFT)

        result = await worker.process_message(envelope_body(slack_connection))

        assert result == HandlerResult.ACK
        envelope, connection = worker.dispatcher.dispatch.await_args.args
        assert envelope.idempotency_key == "Ev1"
        assert connection.id == slack_connection.id
        assert organization_id_var.get() == slack_connection.organization_id
        assert slack_channel_id_var.get() == "C0001"
        clear_job_id()

    @pytest.mark.asyncio
    async def test_invalid_envelope_dead_letters(self, worker):
        assert await worker.process_message({"nope": True}) == HandlerResult.DEAD_LETTER

    @pytest.mark.asyncio
    async def test_missing_connection_details_retries(self, worker):
        result = await worker.process_message({"event_body": {"event": {"type": "message"}}})
        assert result == HandlerResult.RETRY

    @pytest.mark.asyncio
    async def test_revoked_connection_is_dropped(self, worker, slack_connection, test_db):
        slack_connection.status = ConnectionStatus.REVOKED
        await test_db.commit()
        worker.dispatcher.dispatch = AsyncMock()

        result = await worker.process_message(envelope_body(slack_connection))

        assert result == HandlerResult.ACK
        worker.dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_event_is_acked(self, worker, slack_connection):
        worker.dispatcher.dispatch = AsyncMock(side_effect=PayloadValidationError("bad"))

        result = await worker.process_message(envelope_body(slack_connection))

        assert result == HandlerResult.ACK

    @pytest.mark.asyncio
    async def test_channel_left_marks_channel(self, worker, slack_connection, channel, session_factory):
        from app.models import Channel

        result = await worker.process_message(envelope_body(slack_connection))

        assert result == HandlerResult.ACK
        async with session_factory() as db:
            stored = await db.get(Channel, channel.id)
            assert stored.is_member is False
