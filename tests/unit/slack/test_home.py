"""
Unit tests for the App Home service and its modal submissions.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.slack import views
from app.slack.home import SlackHomeService
from app.sync.errors import ConfigurationError


def modal_state(**values):
    blocks = {}
    for action_id, value in values.items():
        blocks[f"block-{action_id}"] = {action_id: {"type": "plain_text_input", "value": value}}
    return {"values": blocks}


@pytest.fixture
def slack():
    return AsyncMock()


@pytest.fixture
def home(token_processor, slack):
    service = SlackHomeService(token_processor)
    service.slack_connections.slack_client = MagicMock(return_value=slack)
    return service


class TestPublishHome:
    @pytest.mark.asyncio
    async def test_lists_member_channels(self, home, slack, test_db, slack_connection, channel):
        await home.publish_home(test_db, slack_connection, "U1")

        user_id, view = slack.publish_view.await_args.args
        assert user_id == "U1"
        assert view["type"] == "home"
        assert "C0001" in str(view)


class TestSaveChannelSettings:
    @pytest.mark.asyncio
    async def test_saves_owner_and_tags(self, home, slack, test_db, slack_connection, channel):
        state = modal_state(
            **{
                views.EDIT_CHANNEL_OWNER_ACTION: "Owner@Acme.com",
                views.EDIT_CHANNEL_TAGS_ACTION: "vip,billing",
            }
        )

        errors = await home.save_channel_settings(test_db, slack_connection, "C0001", state, "U1")

        assert errors is None
        assert channel.tags == ["vip", "billing"]
        assert channel.default_assignee_email is not None
        slack.publish_view.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_values_keep_modal_open(self, home, test_db, slack_connection, channel):
        state = modal_state(
            **{
                views.EDIT_CHANNEL_OWNER_ACTION: "not-an-email",
                views.EDIT_CHANNEL_TAGS_ACTION: "has space",
            }
        )

        errors = await home.save_channel_settings(test_db, slack_connection, "C0001", state, None)

        assert errors["response_action"] == "errors"
        assert set(errors["errors"]) == {"channel_owner", "channel_tags"}
        assert channel.tags is None


class TestSaveZendeskSettings:
    @pytest.mark.asyncio
    async def test_rejected_credentials(self, home, test_db, slack_connection):
        home.zendesk_connections.save_credentials = AsyncMock(
            side_effect=ConfigurationError("Zendesk rejected credentials")
        )
        state = modal_state(
            **{
                views.ZENDESK_DOMAIN_ACTION: "acme",
                views.ZENDESK_EMAIL_ACTION: "agent@acme.com",
                views.ZENDESK_API_KEY_ACTION: "bad",
            }
        )

        errors = await home.save_zendesk_settings(test_db, slack_connection, state, "U1")

        assert "zendesk_api_key" in errors["errors"]

    @pytest.mark.asyncio
    async def test_saved_credentials_refresh_home(self, home, slack, test_db, slack_connection):
        home.zendesk_connections.save_credentials = AsyncMock()
        state = modal_state(**{views.ZENDESK_DOMAIN_ACTION: "acme"})

        assert await home.save_zendesk_settings(test_db, slack_connection, state, "U1") is None
        assert home.zendesk_connections.save_credentials.await_args.args[2] == "acme"
        slack.publish_view.assert_awaited_once()
