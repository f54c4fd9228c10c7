"""Initial Zensync schema

Revision ID: z001_initial
Revises:
Create Date: 2026-10-12 09:14:03.512207

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "z001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


connection_status = sa.Enum("ACTIVE", "REVOKED", "INACTIVE", name="connectionstatus")
channel_type = sa.Enum("PUBLIC", "PRIVATE", "DM", "GROUP_DM", name="channeltype")
channel_status = sa.Enum("PENDING_UPGRADE", name="channelstatus")
message_platform = sa.Enum("SLACK", "ZENDESK", name="messageplatform")


def upgrade() -> None:
    """Create organizations, connections, channels, conversations, messages and oauth_states."""
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("stripe_product_id", sa.String(), nullable=True),
        sa.Column("subscription_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_subscription_id"),
    )

    op.create_table(
        "slack_connections",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("slack_team_id", sa.String(), nullable=False),
        sa.Column("app_id", sa.String(), nullable=False),
        sa.Column("encrypted_token", sa.String(), nullable=False),
        sa.Column("bot_user_id", sa.String(), nullable=False),
        sa.Column("authed_user_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("domain", sa.String(), nullable=True),
        sa.Column("email_domain", sa.String(), nullable=True),
        sa.Column("icon_url", sa.String(), nullable=True),
        sa.Column("status", connection_status, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id"),
        sa.UniqueConstraint("slack_team_id"),
        sa.UniqueConstraint("app_id"),
    )

    op.create_table(
        "zendesk_connections",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("zendesk_domain", sa.String(), nullable=False),
        sa.Column("zendesk_email", sa.String(), nullable=False),
        sa.Column("encrypted_api_key", sa.String(), nullable=False),
        sa.Column("zendesk_webhook_id", sa.String(), nullable=True),
        sa.Column("zendesk_trigger_id", sa.String(), nullable=True),
        sa.Column("webhook_token_hash", sa.String(length=64), nullable=True),
        sa.Column("status", connection_status, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id"),
    )
    op.create_index(
        "ix_zendesk_connections_webhook_token_hash",
        "zendesk_connections",
        ["webhook_token_hash"],
        unique=True,
    )

    op.create_table(
        "channels",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("slack_channel_id", sa.String(), nullable=False),
        sa.Column("type", channel_type, nullable=True),
        sa.Column("is_member", sa.Boolean(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("is_shared", sa.Boolean(), nullable=False),
        sa.Column("status", channel_status, nullable=True),
        sa.Column("default_assignee_email", sa.String(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("latest_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "organization_id",
            "slack_channel_id",
            name="uq_channels_organization_slack_channel",
        ),
    )
    op.create_index(
        "idx_channels_organization_is_member",
        "channels",
        ["organization_id", "is_member"],
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=False),
        sa.Column("zendesk_ticket_id", sa.String(), nullable=False),
        sa.Column("slack_parent_message_id", sa.String(), nullable=False),
        sa.Column("slack_author_user_id", sa.String(), nullable=False),
        sa.Column("latest_slack_message_id", sa.String(), nullable=False),
        sa.Column("is_open", sa.Boolean(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "channel_id",
            "zendesk_ticket_id",
            name="uq_conversations_channel_zendesk_ticket",
        ),
        sa.UniqueConstraint(
            "channel_id",
            "slack_parent_message_id",
            name="uq_conversations_channel_slack_parent",
        ),
    )
    op.create_index(
        "idx_conversations_channel_author",
        "conversations",
        ["channel_id", "slack_author_user_id"],
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("conversation_id", sa.String(), nullable=False),
        sa.Column("platform", message_platform, nullable=False),
        sa.Column("platform_message_id", sa.String(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.ForeignKeyConstraint(
            ["conversation_id"], ["conversations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "conversation_id",
            "platform",
            "platform_message_id",
            name="uq_messages_conversation_platform_message",
        ),
    )

    op.create_table(
        "oauth_states",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    """Drop every Zensync table and enum type."""
    op.drop_table("oauth_states")
    op.drop_table("messages")
    op.drop_index("idx_conversations_channel_author", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("idx_channels_organization_is_member", table_name="channels")
    op.drop_table("channels")
    op.drop_index(
        "ix_zendesk_connections_webhook_token_hash", table_name="zendesk_connections"
    )
    op.drop_table("zendesk_connections")
    op.drop_table("slack_connections")
    op.drop_table("organizations")

    bind = op.get_bind()
    for enum_type in (message_platform, channel_status, channel_type, connection_status):
        enum_type.drop(bind, checkfirst=True)
