"""
Unit tests for Home tab and modal helpers.
"""

import pytest

from app.slack import views


class TestParseTags:
    def test_blank(self):
        assert views.parse_tags("") == []
        assert views.parse_tags("   ") == []
        assert views.parse_tags(None) == []

    def test_comma_separated(self):
        assert views.parse_tags("vip, billing ,p1") == ["vip", "billing", "p1"]

    def test_invalid(self):
        assert views.parse_tags("has space") is None
        assert views.parse_tags("vip,,billing") is None
        assert views.parse_tags("emoji-tag!") is None


class TestParseOwnerEmail:
    def test_valid(self):
        assert views.parse_owner_email(" owner@acme.com ") == "owner@acme.com"

    def test_blank_clears(self):
        assert views.parse_owner_email("") is None
        assert views.parse_owner_email(None) is None

    def test_invalid(self):
        with pytest.raises(ValueError):
            views.parse_owner_email("not-an-email")


def test_state_value():
    state = {
        "values": {
            "zendesk_domain": {views.ZENDESK_DOMAIN_ACTION: {"type": "plain_text_input", "value": "acme"}},
        }
    }
    assert views.state_value(state, views.ZENDESK_DOMAIN_ACTION) == "acme"
    assert views.state_value(state, views.ZENDESK_EMAIL_ACTION) is None
    assert views.state_value({}, views.ZENDESK_EMAIL_ACTION) is None


def test_channel_limit_text_links_portal():
    assert views.channel_limit_text(None) == views.CHANNEL_LIMIT_TEXT
    assert "<https://billing.example/p|upgrade your plan>" in views.channel_limit_text(
        "https://billing.example/p"
    )


def test_home_view_without_zendesk_offers_configuration():
    view = views.build_home_view([], None, True)
    assert view["type"] == "home"
    action_ids = [
        element.get("action_id")
        for block in view["blocks"]
        for element in block.get("elements", []) + ([block["accessory"]] if "accessory" in block else [])
    ]
    assert views.CONFIGURE_ZENDESK_ACTION in action_ids
