"""
Unit tests for the Slack -> Zendesk file upload step.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.sqs.client import QueueTopic
from app.slack.schemas import QueueEnvelope
from app.sync.errors import ConfigurationError, DownstreamError
from app.sync.files import FileUploadRelay


def file_share_envelope(files):
    return QueueEnvelope(
        event_body={
            "event_id": "Ev9",
            "event": {
                "type": "message",
                "subtype": "file_share",
                "channel": "C0001",
                "user": "U1",
                "ts": "1700000000.000100",
                "files": files,
            },
        },
        idempotency_key="Ev9",
    )


@pytest.fixture
def slack():
    client = MagicMock()
    client.stream_file = MagicMock(side_effect=lambda url: f"stream:{url}")
    client.files_info = AsyncMock(
        return_value={"id": "F2", "name": "late.pdf", "url_private": "https://files/F2"}
    )
    return client


@pytest.fixture
def zendesk():
    client = AsyncMock()
    client.upload_file.side_effect = ["tok-1", "tok-2"]
    return client


@pytest.fixture
def queue():
    q = AsyncMock()
    q.publish.return_value = True
    return q


@pytest.fixture
def relay(token_processor, session_factory, slack, zendesk, queue, zendesk_connection):
    file_relay = FileUploadRelay(token_processor, session_factory, queue=queue)
    file_relay.zendesk_connections.get_active_client = AsyncMock(
        return_value=(zendesk_connection, zendesk)
    )
    file_relay.slack_connections.slack_client = MagicMock(return_value=slack)
    return file_relay


class TestFileUploadRelay:
    @pytest.mark.asyncio
    async def test_uploads_and_republishes(self, relay, zendesk, queue, slack_connection):
        envelope = file_share_envelope(
            [
                {"id": "F1", "name": "shot.png", "mimetype": "image/png", "url_private": "https://files/F1"},
                {"id": "F2", "file_access": "check_file_info"},
            ]
        )

        tokens = await relay.process(envelope, slack_connection)

        assert tokens == ["tok-1", "tok-2"]
        first, second = zendesk.upload_file.await_args_list
        assert first.args == ("shot.png", "stream:https://files/F1", "image/png")
        assert second.args[0] == "late.pdf"

        topic, body = queue.publish.await_args.args
        assert topic == QueueTopic.CHAT_MESSAGE_EVENTS
        assert body["file_upload_tokens"] == ["tok-1", "tok-2"]
        assert queue.publish.await_args.kwargs["dedup_key"] == "Ev9"

    @pytest.mark.asyncio
    async def test_file_without_url_is_skipped(self, relay, zendesk, slack_connection):
        tokens = await relay.process(file_share_envelope([{"id": "F1"}]), slack_connection)

        assert tokens == []
        zendesk.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_republish_failure_raises(self, relay, queue, slack_connection):
        queue.publish.return_value = False

        with pytest.raises(DownstreamError):
            await relay.process(file_share_envelope([]), slack_connection)

    @pytest.mark.asyncio
    async def test_missing_zendesk_connection(self, relay, slack_connection):
        relay.zendesk_connections.get_active_client.side_effect = ConfigurationError(
            "No active Zendesk credentials"
        )

        with pytest.raises(ConfigurationError):
            await relay.process(file_share_envelope([]), slack_connection)
