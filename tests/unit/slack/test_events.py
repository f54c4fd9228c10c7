"""
Unit tests for Slack event classification, parsing and dispatch.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.slack.events import (
    ChannelIdChangedEvent,
    FileShareEvent,
    MessageChangedEvent,
    MessageDeletedEvent,
    MessageEvent,
    SlackEventDispatcher,
    SlackEventKind,
    classify,
    parse_event,
)
from app.slack.schemas import QueueEnvelope
from app.sync.errors import PayloadValidationError


class TestClassify:
    @pytest.mark.parametrize(
        "event,expected",
        [
            ({"type": "message"}, SlackEventKind.MESSAGE),
            ({"type": "message", "subtype": "file_share"}, SlackEventKind.FILE_SHARE),
            ({"type": "message", "subtype": "message_changed"}, SlackEventKind.MESSAGE_CHANGED),
            ({"type": "message", "subtype": "message_deleted"}, SlackEventKind.MESSAGE_DELETED),
            ({"type": "member_joined_channel"}, SlackEventKind.MEMBER_JOINED_CHANNEL),
            ({"type": "channel_left"}, SlackEventKind.CHANNEL_LEFT),
            ({"type": "channel_archive"}, SlackEventKind.CHANNEL_ARCHIVE),
            ({"type": "channel_deleted"}, SlackEventKind.CHANNEL_DELETED),
            ({"type": "channel_unarchive"}, SlackEventKind.CHANNEL_UNARCHIVE),
            ({"type": "channel_rename"}, SlackEventKind.CHANNEL_RENAME),
            ({"type": "channel_id_changed"}, SlackEventKind.CHANNEL_ID_CHANGED),
        ],
    )
    def test_known_kinds(self, event, expected):
        assert classify(event) == expected

    def test_subtype_without_kind_falls_back_to_type(self):
        assert classify({"type": "message", "subtype": "thread_broadcast"}) == SlackEventKind.MESSAGE

    def test_unknown(self):
        assert classify({"type": "reaction_added"}) == SlackEventKind.UNKNOWN
        assert classify({}) == SlackEventKind.UNKNOWN
        assert classify({"type": "unknown"}) == SlackEventKind.UNKNOWN


class TestParseEvent:
    def test_message_reply_parent(self):
        kind, event = parse_event(
            {"type": "message", "channel": "C1", "user": "U1", "ts": "2.0", "thread_ts": "1.0"}
        )
        assert kind == SlackEventKind.MESSAGE
        assert isinstance(event, MessageEvent)
        assert event.parent_message_id == "1.0"

    def test_thread_root_has_no_parent(self):
        _, event = parse_event(
            {"type": "message", "channel": "C1", "user": "U1", "ts": "1.0", "thread_ts": "1.0"}
        )
        assert event.parent_message_id is None

    def test_file_share(self):
        _, event = parse_event(
            {
                "type": "message",
                "subtype": "file_share",
                "channel": "C1",
                "user": "U1",
                "ts": "1.0",
                "files": [{"id": "F1", "name": "log.txt", "url_private": "https://files/x"}],
            }
        )
        assert isinstance(event, FileShareEvent)
        assert event.files[0].id == "F1"

    def test_message_changed(self):
        _, event = parse_event(
            {
                "type": "message",
                "subtype": "message_changed",
                "channel": "C1",
                "event_ts": "3.0",
                "message": {"user": "U1", "ts": "1.0", "text": "new"},
                "previous_message": {"user": "U1", "ts": "1.0", "text": "old"},
            }
        )
        assert isinstance(event, MessageChangedEvent)
        assert event.text_changed()
        assert event.as_message().channel == "C1"

    def test_message_changed_without_text_change(self):
        _, event = parse_event(
            {
                "type": "message",
                "subtype": "message_changed",
                "channel": "C1",
                "message": {"user": "U1", "ts": "1.0", "text": "same"},
                "previous_message": {"user": "U1", "ts": "1.0", "text": "same"},
            }
        )
        assert not event.text_changed()

    def test_message_deleted_without_previous(self):
        _, event = parse_event(
            {"type": "message", "subtype": "message_deleted", "channel": "C1", "deleted_ts": "1.0"}
        )
        assert isinstance(event, MessageDeletedEvent)
        assert event.as_message() is None

    def test_channel_id_changed(self):
        _, event = parse_event(
            {"type": "channel_id_changed", "old_channel_id": "C1", "new_channel_id": "C2"}
        )
        assert isinstance(event, ChannelIdChangedEvent)

    def test_malformed_known_kind(self):
        with pytest.raises(PayloadValidationError):
            parse_event({"type": "message", "user": "U1"})  # no channel, no ts


def _all_handlers():
    return {
        kind: AsyncMock() for kind in SlackEventKind if kind != SlackEventKind.UNKNOWN
    }


class TestSlackEventDispatcher:
    def test_requires_every_kind(self):
        handlers = _all_handlers()
        del handlers[SlackEventKind.CHANNEL_RENAME]
        with pytest.raises(ValueError, match="channel_rename"):
            SlackEventDispatcher(handlers)

    @pytest.mark.asyncio
    async def test_routes_to_handler(self):
        handlers = _all_handlers()
        dispatcher = SlackEventDispatcher(handlers)
        envelope = QueueEnvelope(
            event_body={"event": {"type": "channel_left", "channel": "C1"}}
        )
        connection = MagicMock()

        kind = await dispatcher.dispatch(envelope, connection)

        assert kind == SlackEventKind.CHANNEL_LEFT
        handlers[SlackEventKind.CHANNEL_LEFT].assert_awaited_once()
        args = handlers[SlackEventKind.CHANNEL_LEFT].await_args.args
        assert args[0] is envelope
        assert args[1].channel == "C1"
        assert args[2] is connection

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self):
        handlers = _all_handlers()
        dispatcher = SlackEventDispatcher(handlers)
        envelope = QueueEnvelope(event_body={"event": {"type": "reaction_added"}})

        kind = await dispatcher.dispatch(envelope, MagicMock())

        assert kind == SlackEventKind.UNKNOWN
        for handler in handlers.values():
            handler.assert_not_awaited()
