"""
Unit tests for Slack message eligibility and installation storage.
"""

import uuid

import pytest
from sqlalchemy import select

from app.models import ConnectionStatus, Organization, SlackConnection
from app.slack.schemas import SlackOAuthResponse
from app.slack.service import SlackConnectionService, is_message_eligible
from app.sync.errors import ConfigurationError, PayloadValidationError


class TestIsMessageEligible:
    def test_plain_message(self):
        assert is_message_eligible({"type": "message", "user": "U1"}, "UBOT")

    def test_thread_reply_subtype(self):
        assert is_message_eligible(
            {"type": "message", "subtype": "message_replied", "user": "U1"}, "UBOT"
        )

    def test_bot_messages_are_dropped(self):
        assert not is_message_eligible({"type": "message", "user": "UBOT"}, "UBOT")
        assert not is_message_eligible(
            {"type": "message", "subtype": "message_changed", "message": {"user": "UBOT"}},
            "UBOT",
        )

    def test_other_subtypes_are_dropped(self):
        assert not is_message_eligible(
            {"type": "message", "subtype": "channel_join", "user": "U1"}, "UBOT"
        )
        assert not is_message_eligible(
            {"type": "message", "subtype": "bot_message", "bot_id": "B1"}, "UBOT"
        )

    def test_non_message(self):
        assert not is_message_eligible({"type": "channel_left"}, "UBOT")


def oauth_response(team_id="T0009", app_id="A0009"):
    return SlackOAuthResponse.model_validate(
        {
            "ok": True,
            "access_token": "xoxb-new",
            "bot_user_id": "UBOT9",
            "app_id": app_id,
            "team": {"id": team_id, "name": "Globex"},
            "authed_user": {"id": "UADMIN9"},
        }
    )


TEAM = {"name": "Globex", "domain": "globex", "icon": {"image_132": "https://img/132.png"}}


class TestStoreInstallation:
    @pytest.mark.asyncio
    async def test_first_install_creates_organization(self, test_db, token_processor):
        service = SlackConnectionService(token_processor)

        connection, created = await service.store_installation(test_db, oauth_response(), TEAM)

        assert created is True
        assert connection.domain == "globex"
        assert connection.icon_url == "https://img/132.png"
        assert token_processor.decrypt(connection.encrypted_token) == "xoxb-new"
        organization = await test_db.get(Organization, connection.organization_id)
        assert organization.name == "Globex"

    @pytest.mark.asyncio
    async def test_reinstall_reactivates(self, test_db, token_processor, slack_connection):
        slack_connection.status = ConnectionStatus.REVOKED
        await test_db.commit()
        service = SlackConnectionService(token_processor)

        connection, created = await service.store_installation(
            test_db, oauth_response(team_id="T0001", app_id="A0001"), TEAM
        )

        assert created is False
        assert connection.id == slack_connection.id
        assert connection.status == ConnectionStatus.ACTIVE
        result = await test_db.execute(select(SlackConnection))
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_bound_organization(self, test_db, token_processor):
        organization = Organization(id=str(uuid.uuid4()), name="Dashboard org")
        test_db.add(organization)
        await test_db.commit()
        service = SlackConnectionService(token_processor)

        connection, _ = await service.store_installation(
            test_db, oauth_response(), TEAM, organization_id=organization.id
        )

        assert connection.organization_id == organization.id

    @pytest.mark.asyncio
    async def test_bound_organization_already_connected(
        self, test_db, token_processor, slack_connection
    ):
        service = SlackConnectionService(token_processor)

        with pytest.raises(PayloadValidationError):
            await service.store_installation(
                test_db, oauth_response(), TEAM, organization_id=slack_connection.organization_id
            )


def test_undecryptable_token(token_processor, slack_connection):
    slack_connection.encrypted_token = "garbage"
    with pytest.raises(ConfigurationError):
        SlackConnectionService(token_processor).slack_client(slack_connection)
