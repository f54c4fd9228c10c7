"""
Slack event classification and dispatch.

Inbound `event` objects are classified into a closed set of kinds, parsed
into a typed envelope for that kind, and handed to the handler registered
for it. The handler table must cover every kind except UNKNOWN; a missing
entry fails at construction, not when the first such event arrives.
"""

import enum
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.models import SlackConnection
from app.slack.schemas import QueueEnvelope
from app.sync.errors import PayloadValidationError

logger = logging.getLogger(__name__)


class SlackEventKind(str, enum.Enum):
    MEMBER_JOINED_CHANNEL = "member_joined_channel"
    CHANNEL_LEFT = "channel_left"
    CHANNEL_ARCHIVE = "channel_archive"
    CHANNEL_DELETED = "channel_deleted"
    CHANNEL_UNARCHIVE = "channel_unarchive"
    CHANNEL_RENAME = "channel_rename"
    CHANNEL_ID_CHANGED = "channel_id_changed"
    MESSAGE = "message"
    FILE_SHARE = "file_share"
    MESSAGE_CHANGED = "message_changed"
    MESSAGE_DELETED = "message_deleted"
    UNKNOWN = "unknown"


LIFECYCLE_KINDS = frozenset(
    {
        SlackEventKind.MEMBER_JOINED_CHANNEL,
        SlackEventKind.CHANNEL_LEFT,
        SlackEventKind.CHANNEL_ARCHIVE,
        SlackEventKind.CHANNEL_DELETED,
        SlackEventKind.CHANNEL_UNARCHIVE,
        SlackEventKind.CHANNEL_RENAME,
        SlackEventKind.CHANNEL_ID_CHANGED,
    }
)

_KINDS_BY_NAME = {
    kind.value: kind for kind in SlackEventKind if kind != SlackEventKind.UNKNOWN
}


def classify(event: Dict[str, Any]) -> SlackEventKind:
    """
    Map a raw Slack event to its kind.

    The subtype wins over the type: a `message` with subtype `file_share` is
    FILE_SHARE, not MESSAGE. Subtypes without their own kind (message_replied,
    thread_broadcast, ...) fall back to the type.
    """
    subtype = event.get("subtype")
    if subtype and subtype in _KINDS_BY_NAME:
        return _KINDS_BY_NAME[subtype]
    event_type = event.get("type")
    if event_type and event_type in _KINDS_BY_NAME:
        return _KINDS_BY_NAME[event_type]
    return SlackEventKind.UNKNOWN


# ---------- envelopes ----------


class _SlackEvent(BaseModel):
    model_config = ConfigDict(extra="allow")


class SlackFile(_SlackEvent):
    id: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    mimetype: Optional[str] = None
    url_private: Optional[str] = None
    permalink: Optional[str] = None
    file_access: Optional[str] = None


class InnerMessage(_SlackEvent):
    """Message body nested in message_changed / message_deleted events"""

    type: str = "message"
    subtype: Optional[str] = None
    user: Optional[str] = None
    bot_id: Optional[str] = None
    ts: str
    thread_ts: Optional[str] = None
    text: Optional[str] = ""
    files: List[SlackFile] = Field(default_factory=list)


class MessageEvent(InnerMessage):
    channel: str
    event_ts: Optional[str] = None

    @property
    def parent_message_id(self) -> Optional[str]:
        return get_parent_message_id(self)


class FileShareEvent(MessageEvent):
    subtype: Optional[str] = "file_share"


class MessageChangedEvent(_SlackEvent):
    type: str = "message"
    subtype: str = "message_changed"
    channel: str
    event_ts: Optional[str] = None
    message: InnerMessage
    previous_message: Optional[InnerMessage] = None

    def text_changed(self) -> bool:
        previous = self.previous_message.text if self.previous_message else None
        return self.message.text != previous

    def as_message(self) -> MessageEvent:
        return MessageEvent.model_validate(
            {
                **self.message.model_dump(),
                "channel": self.channel,
                "event_ts": self.event_ts,
            }
        )


class MessageDeletedEvent(_SlackEvent):
    type: str = "message"
    subtype: str = "message_deleted"
    channel: str
    deleted_ts: Optional[str] = None
    event_ts: Optional[str] = None
    previous_message: Optional[InnerMessage] = None

    def as_message(self) -> Optional[MessageEvent]:
        if not self.previous_message:
            return None
        return MessageEvent.model_validate(
            {
                **self.previous_message.model_dump(),
                "channel": self.channel,
                "event_ts": self.event_ts,
            }
        )


class MemberJoinedChannelEvent(_SlackEvent):
    type: str = "member_joined_channel"
    user: str
    channel: str
    channel_type: Optional[str] = None
    inviter: Optional[str] = None


class ChannelLifecycleEvent(_SlackEvent):
    """channel_left, channel_archive, channel_unarchive, channel_deleted"""

    type: str
    channel: str
    user: Optional[str] = None


class ChannelRef(_SlackEvent):
    id: str
    name: Optional[str] = None


class ChannelRenameEvent(_SlackEvent):
    type: str = "channel_rename"
    channel: ChannelRef


class ChannelIdChangedEvent(_SlackEvent):
    type: str = "channel_id_changed"
    old_channel_id: str
    new_channel_id: str


class UnknownEvent(_SlackEvent):
    type: Optional[str] = None
    subtype: Optional[str] = None


ENVELOPES: Dict[SlackEventKind, Type[BaseModel]] = {
    SlackEventKind.MEMBER_JOINED_CHANNEL: MemberJoinedChannelEvent,
    SlackEventKind.CHANNEL_LEFT: ChannelLifecycleEvent,
    SlackEventKind.CHANNEL_ARCHIVE: ChannelLifecycleEvent,
    SlackEventKind.CHANNEL_DELETED: ChannelLifecycleEvent,
    SlackEventKind.CHANNEL_UNARCHIVE: ChannelLifecycleEvent,
    SlackEventKind.CHANNEL_RENAME: ChannelRenameEvent,
    SlackEventKind.CHANNEL_ID_CHANGED: ChannelIdChangedEvent,
    SlackEventKind.MESSAGE: MessageEvent,
    SlackEventKind.FILE_SHARE: FileShareEvent,
    SlackEventKind.MESSAGE_CHANGED: MessageChangedEvent,
    SlackEventKind.MESSAGE_DELETED: MessageDeletedEvent,
    SlackEventKind.UNKNOWN: UnknownEvent,
}


def get_parent_message_id(message: InnerMessage) -> Optional[str]:
    """Thread root ts for a reply, None for a root message"""
    if message.thread_ts and message.thread_ts != message.ts:
        return message.thread_ts
    return None


def parse_event(raw: Dict[str, Any]) -> Tuple[SlackEventKind, BaseModel]:
    """
    Classify and validate a raw Slack event.

    Raises:
        PayloadValidationError: The event claims a known kind but does not fit its envelope
    """
    kind = classify(raw)
    try:
        return kind, ENVELOPES[kind].model_validate(raw)
    except ValidationError as e:
        raise PayloadValidationError(
            f"Malformed {kind.value} event: {e.error_count()} validation error(s)",
            {"event_type": raw.get("type"), "event_subtype": raw.get("subtype")},
        ) from e


# ---------- dispatch ----------

EventHandler = Callable[[QueueEnvelope, Any, SlackConnection], Awaitable[None]]


class SlackEventDispatcher:
    """Routes a queued Slack event to the handler registered for its kind."""

    def __init__(self, handlers: Dict[SlackEventKind, EventHandler]):
        missing = [
            kind.value
            for kind in SlackEventKind
            if kind != SlackEventKind.UNKNOWN and kind not in handlers
        ]
        if missing:
            raise ValueError(f"No handler registered for: {', '.join(missing)}")
        self.handlers = dict(handlers)

    async def dispatch(
        self, envelope: QueueEnvelope, connection: SlackConnection
    ) -> SlackEventKind:
        kind, event = parse_event(envelope.event)

        if kind == SlackEventKind.UNKNOWN:
            logger.info(
                f"Ignoring unknown Slack event type={envelope.event.get('type')} "
                f"subtype={envelope.event.get('subtype')}"
            )
            return kind

        logger.debug(f"Dispatching {kind.value} for app {connection.app_id}")
        await self.handlers[kind](envelope, event, connection)
        return kind
