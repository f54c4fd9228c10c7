"""
Unified database models for the application.
All SQLAlchemy models are defined here.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Enum,
    Index,
    UniqueConstraint,
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Enums
class ConnectionStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    INACTIVE = "INACTIVE"


class ChannelType(enum.Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    DM = "DM"
    GROUP_DM = "GROUP_DM"


class ChannelStatus(enum.Enum):
    """Channel is joined but over the plan's channel limit"""

    PENDING_UPGRADE = "PENDING_UPGRADE"


class MessagePlatform(enum.Enum):
    SLACK = "SLACK"
    ZENDESK = "ZENDESK"


class Organization(Base):
    """
    Tenant root. Owns at most one Slack and one Zendesk connection.

    The subscription columns are a snapshot of the Stripe subscription,
    kept current by the billing-events worker.
    """

    __tablename__ = "organizations"

    id = Column(String, primary_key=True)  # UUID
    name = Column(String, nullable=True)
    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True)
    stripe_product_id = Column(String, nullable=True)
    subscription_period_start = Column(DateTime(timezone=True), nullable=True)
    subscription_period_end = Column(DateTime(timezone=True), nullable=True)
    subscription_canceled_at = Column(DateTime(timezone=True), nullable=True)
    subscription_updated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    slack_connection = relationship(
        "SlackConnection",
        back_populates="organization",
        uselist=False,
        cascade="all, delete-orphan",
    )
    zendesk_connection = relationship(
        "ZendeskConnection",
        back_populates="organization",
        uselist=False,
        cascade="all, delete-orphan",
    )
    channels = relationship(
        "Channel", back_populates="organization", cascade="all, delete-orphan"
    )
    oauth_states = relationship(
        "OAuthState", back_populates="organization", cascade="all, delete-orphan"
    )


class SlackConnection(Base):
    """
    Slack bot installation for an organization.

    Never hard-deleted: uninstall flips status to REVOKED so the audit trail
    (channels, conversations) survives.
    """

    __tablename__ = "slack_connections"

    id = Column(String, primary_key=True)  # UUID
    organization_id = Column(
        String,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    slack_team_id = Column(String, unique=True, nullable=False)  # e.g. T123456
    app_id = Column(String, unique=True, nullable=False)  # e.g. A123456
    encrypted_token = Column(String, nullable=False)  # AES-GCM blob of xoxb-...
    bot_user_id = Column(String, nullable=False)
    authed_user_id = Column(String, nullable=True)
    name = Column(String, nullable=True)
    domain = Column(String, nullable=True)  # <domain>.slack.com
    email_domain = Column(String, nullable=True)
    icon_url = Column(String, nullable=True)
    status = Column(
        Enum(ConnectionStatus), nullable=False, default=ConnectionStatus.ACTIVE
    )
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    organization = relationship("Organization", back_populates="slack_connection")


class ZendeskConnection(Base):
    """
    Zendesk API credentials for an organization.

    webhook_token_hash is the sha256 of the bearer token Zendesk sends on
    every webhook call; the raw token is never stored.
    """

    __tablename__ = "zendesk_connections"

    id = Column(String, primary_key=True)  # UUID
    organization_id = Column(
        String,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    zendesk_domain = Column(String, nullable=False)  # subdomain only, e.g. acme
    zendesk_email = Column(String, nullable=False)
    encrypted_api_key = Column(String, nullable=False)
    zendesk_webhook_id = Column(String, nullable=True)
    zendesk_trigger_id = Column(String, nullable=True)
    webhook_token_hash = Column(String(64), unique=True, nullable=True, index=True)
    status = Column(
        Enum(ConnectionStatus), nullable=False, default=ConnectionStatus.ACTIVE
    )
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    organization = relationship("Organization", back_populates="zendesk_connection")


class Channel(Base):
    """Slack channel the bot has been invited to (or was, see is_member)"""

    __tablename__ = "channels"

    id = Column(String, primary_key=True)  # UUID
    organization_id = Column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    slack_channel_id = Column(String, nullable=False)  # e.g. C123456
    type = Column(Enum(ChannelType), nullable=True)
    is_member = Column(Boolean, nullable=False, default=False)
    name = Column(String, nullable=True)
    is_shared = Column(Boolean, nullable=False, default=False)
    status = Column(Enum(ChannelStatus), nullable=True)
    default_assignee_email = Column(String, nullable=True)
    tags = Column(JSON, nullable=True)
    latest_activity_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    organization = relationship("Organization", back_populates="channels")
    conversations = relationship(
        "Conversation", back_populates="channel", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "slack_channel_id",
            name="uq_channels_organization_slack_channel",
        ),
        Index("idx_channels_organization_is_member", "organization_id", "is_member"),
    )


class Conversation(Base):
    """
    Link between a Slack thread root and a Zendesk ticket.

    Both natural keys are unique per channel: one ticket per thread and one
    thread per ticket. The id doubles as the ticket's external_id.
    """

    __tablename__ = "conversations"

    id = Column(String, primary_key=True)  # UUID
    channel_id = Column(
        String, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    zendesk_ticket_id = Column(String, nullable=False)
    slack_parent_message_id = Column(String, nullable=False)  # Slack ts of the root
    slack_author_user_id = Column(String, nullable=False)
    latest_slack_message_id = Column(String, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    channel = relationship("Channel", back_populates="conversations")
    messages = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "channel_id",
            "zendesk_ticket_id",
            name="uq_conversations_channel_zendesk_ticket",
        ),
        UniqueConstraint(
            "channel_id",
            "slack_parent_message_id",
            name="uq_conversations_channel_slack_parent",
        ),
        Index(
            "idx_conversations_channel_author", "channel_id", "slack_author_user_id"
        ),
    )


class Message(Base):
    """One relayed physical message; the unique triple makes replays no-ops"""

    __tablename__ = "messages"

    id = Column(String, primary_key=True)  # UUID
    conversation_id = Column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    platform = Column(Enum(MessagePlatform), nullable=False)
    platform_message_id = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        UniqueConstraint(
            "conversation_id",
            "platform",
            "platform_message_id",
            name="uq_messages_conversation_platform_message",
        ),
    )


class OAuthState(Base):
    """Single-use OAuth state token, valid for OAUTH_STATE_TTL_SECONDS"""

    __tablename__ = "oauth_states"

    id = Column(String, primary_key=True)  # random token
    organization_id = Column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    organization = relationship("Organization", back_populates="oauth_states")
