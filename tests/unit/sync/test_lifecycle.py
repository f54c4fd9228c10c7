"""
Unit tests for connection lifecycle jobs.
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.models import Channel, ConnectionStatus, SlackConnection
from app.slack.schemas import ConnectionDetails, LifecycleJob
from app.sync.errors import PayloadValidationError
from app.sync.lifecycle import ConnectionLifecycleProcessor


def job(slack_connection, kind):
    return LifecycleJob(
        kind=kind,
        connection_details=ConnectionDetails(
            organization_id=slack_connection.organization_id,
            slack_connection_id=slack_connection.id,
            app_id=slack_connection.app_id,
            bot_user_id=slack_connection.bot_user_id,
        ),
        idempotency_key="Ev1",
    )


class TestConnectionLifecycleProcessor:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", ["app_uninstalled", "tokens_revoked"])
    async def test_uninstall_revokes_and_keeps_rows(
        self, session_factory, slack_connection, channel, kind
    ):
        processor = ConnectionLifecycleProcessor(session_factory)

        await processor.process(job(slack_connection, kind))

        async with session_factory() as db:
            connection = await db.get(SlackConnection, slack_connection.id)
            stored_channel = await db.get(Channel, channel.id)
        assert connection.status == ConnectionStatus.REVOKED
        assert stored_channel is not None
        assert stored_channel.is_member is False

    @pytest.mark.asyncio
    async def test_connection_created_provisions_billing(self, session_factory, slack_connection):
        processor = ConnectionLifecycleProcessor(session_factory)

        with patch(
            "app.sync.lifecycle.subscription_service.handle_connection_created",
            new=AsyncMock(),
        ) as provision:
            await processor.process(job(slack_connection, "connection_created"))

        provision.assert_awaited_once()
        assert provision.await_args.kwargs["idempotency_key"] == "Ev1"

    @pytest.mark.asyncio
    async def test_unknown_kind(self, session_factory, slack_connection):
        processor = ConnectionLifecycleProcessor(session_factory)

        with pytest.raises(PayloadValidationError):
            await processor.process(job(slack_connection, "something_else"))
