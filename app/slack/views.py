"""
Block Kit payloads for the Zensync app home, modals and ephemeral hints.

Builders return plain dicts ready for views.publish / views.open.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from app.models import Channel, ChannelStatus, ZendeskConnection, as_utc
from app.zendesk.service import HIDDEN_API_KEY

# Interactivity action and callback ids
CONFIGURE_ZENDESK_ACTION = "configure-zendesk"
ZENDESK_MODAL_CALLBACK = "zendesk-configuration-modal"
ZENDESK_DOMAIN_ACTION = "zendesk-domain-input"
ZENDESK_API_KEY_ACTION = "zendesk-api-key-input"
ZENDESK_EMAIL_ACTION = "zendesk-email-input"
EDIT_CHANNEL_ACTION_PREFIX = "edit-channel"
EDIT_CHANNEL_MODAL_PREFIX = "edit-channel-configuration-modal"
EDIT_CHANNEL_OWNER_ACTION = "edit-channel-owner-input"
EDIT_CHANNEL_TAGS_ACTION = "edit-channel-tags-input"
OPEN_ACCOUNT_SETTINGS_ACTION = "open-account-settings"

ZENDESK_MISSING_TEXT = (
    "Zendesk credentials are missing or inactive. Configure them in the "
    "Zensync app settings to start syncing messages."
)
CHANNEL_LIMIT_TEXT = (
    "You've reached your maximum channel limit, upgrade your plan to join this channel."
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TAGS_PATTERN = re.compile(r"^[a-zA-Z0-9_]+(,[a-zA-Z0-9_]+)*$")


def channel_limit_text(portal_url: Optional[str]) -> str:
    if not portal_url:
        return CHANNEL_LIMIT_TEXT
    return (
        f"You've reached your maximum channel limit, <{portal_url}|upgrade your plan> "
        "to join this channel."
    )


def parse_tags(raw: Optional[str]) -> Optional[List[str]]:
    """
    Comma separated tags from the channel modal.

    Returns an empty list for blank input and None when the input is invalid.
    """
    if not raw or not raw.strip():
        return []
    normalized = re.sub(r"\s*,\s*", ",", raw).strip()
    if not TAGS_PATTERN.match(normalized):
        return None
    return normalized.split(",")


def parse_owner_email(raw: Optional[str]) -> Optional[str]:
    """Blank input clears the owner; raises ValueError for a malformed address."""
    value = (raw or "").strip()
    if not value:
        return None
    if not EMAIL_PATTERN.match(value):
        raise ValueError(value)
    return value


def state_value(state: Dict[str, Any], action_id: str) -> Optional[str]:
    """Value of the input with `action_id` in a view_submission's state.values."""
    for block in (state.get("values") or {}).values():
        if action_id in block:
            return block[action_id].get("value")
    return None


def _text(text: str, kind: str = "mrkdwn") -> Dict[str, Any]:
    return {"type": kind, "text": text}


def _button(text: str, action_id: str, style: Optional[str] = None) -> Dict[str, Any]:
    button = {
        "type": "button",
        "text": _text(text, "plain_text"),
        "action_id": action_id,
    }
    if style:
        button["style"] = style
    return button


def _channel_blocks(channel: Channel) -> List[Dict[str, Any]]:
    pending = channel.status == ChannelStatus.PENDING_UPGRADE
    owner = channel.default_assignee_email or "No owner"
    tags = ", ".join(channel.tags or []) or "No tags"

    accessory = (
        _button(":warning: Upgrade", OPEN_ACCOUNT_SETTINGS_ACTION, style="danger")
        if pending
        else _button("Edit", f"{EDIT_CHANNEL_ACTION_PREFIX}:{channel.slack_channel_id}")
    )
    if pending:
        context = "Channel deactivated, upgrade plan to receive messages!"
    elif channel.latest_activity_at:
        latest = as_utc(channel.latest_activity_at)
        context = (
            f"Last message on <!date^{int(latest.timestamp())}^{{date_short_pretty}} at {{time}}|"
            f"{latest.isoformat()}>"
        )
    else:
        context = "No messages yet"

    return [
        {
            "type": "section",
            "text": _text(
                f"*<#{channel.slack_channel_id}>*\nOwner: {owner}\nTags: {tags}"
            ),
            "accessory": accessory,
        },
        {"type": "context", "elements": [_text(context)]},
    ]


def build_home_view(
    channels: Sequence[Channel],
    zendesk_connection: Optional[ZendeskConnection],
    subscription_active: bool,
) -> Dict[str, Any]:
    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": _text("Welcome to Zensync :wave:", "plain_text")},
    ]

    has_pending = any(c.status == ChannelStatus.PENDING_UPGRADE for c in channels)
    if not subscription_active or has_pending:
        reason = (
            "Your subscription has expired."
            if not subscription_active
            else "Some channels are over your plan's limit."
        )
        blocks.append(
            {
                "type": "section",
                "text": _text(f":rocket: {reason} Upgrade to keep syncing every channel."),
                "accessory": _button("Upgrade", OPEN_ACCOUNT_SETTINGS_ACTION, "primary"),
            }
        )

    if zendesk_connection:
        zendesk_text = f":white_check_mark: Connected to *{zendesk_connection.zendesk_domain}.zendesk.com*"
        zendesk_button = _button("Edit Zendesk", CONFIGURE_ZENDESK_ACTION)
    else:
        zendesk_text = "Connect Zendesk to start turning Slack threads into tickets."
        zendesk_button = _button("Connect Zendesk", CONFIGURE_ZENDESK_ACTION, "primary")
    blocks.append(
        {"type": "section", "text": _text(zendesk_text), "accessory": zendesk_button}
    )
    blocks.append({"type": "divider"})

    blocks.append(
        {
            "type": "section",
            "text": _text(f"*Connected channels ({len(channels)})*"),
        }
    )
    if not channels:
        blocks.append(
            {
                "type": "context",
                "elements": [_text("Invite @Zensync to a channel to start syncing.")],
            }
        )
    for channel in channels:
        blocks.extend(_channel_blocks(channel))

    return {"type": "home", "blocks": blocks}


def _input_block(
    block_id: str,
    action_id: str,
    label: str,
    initial_value: Optional[str] = None,
    placeholder: Optional[str] = None,
    hint: Optional[str] = None,
    optional: bool = False,
) -> Dict[str, Any]:
    element: Dict[str, Any] = {"type": "plain_text_input", "action_id": action_id}
    if initial_value:
        element["initial_value"] = initial_value
    if placeholder:
        element["placeholder"] = _text(placeholder, "plain_text")
    block: Dict[str, Any] = {
        "type": "input",
        "block_id": block_id,
        "element": element,
        "label": _text(label, "plain_text"),
        "optional": optional,
    }
    if hint:
        block["hint"] = _text(hint, "plain_text")
    return block


def build_zendesk_modal(zendesk_connection: Optional[ZendeskConnection]) -> Dict[str, Any]:
    """The API key is never sent back to Slack; a placeholder marks that one is stored."""
    return {
        "type": "modal",
        "callback_id": ZENDESK_MODAL_CALLBACK,
        "title": _text("Zendesk Connection", "plain_text"),
        "submit": _text("Update" if zendesk_connection else "Connect", "plain_text"),
        "close": _text("Cancel", "plain_text"),
        "blocks": [
            _input_block(
                "zendesk_domain",
                ZENDESK_DOMAIN_ACTION,
                "Zendesk Domain Prefix",
                initial_value=zendesk_connection.zendesk_domain if zendesk_connection else None,
                placeholder="yourcompany",
                hint='If your Zendesk domain is yourcompany.zendesk.com, enter "yourcompany".',
            ),
            _input_block(
                "zendesk_api_key",
                ZENDESK_API_KEY_ACTION,
                "Zendesk API Key",
                initial_value=HIDDEN_API_KEY if zendesk_connection else None,
                hint="The Zendesk API key your admin created.",
            ),
            _input_block(
                "zendesk_admin_email",
                ZENDESK_EMAIL_ACTION,
                "Zendesk Admin Email",
                initial_value=zendesk_connection.zendesk_email if zendesk_connection else None,
                placeholder="admin@your-domain.com",
                hint="Email address of the Zendesk admin that created the API key.",
            ),
        ],
    }


def build_channel_modal(channel: Channel) -> Dict[str, Any]:
    return {
        "type": "modal",
        "callback_id": f"{EDIT_CHANNEL_MODAL_PREFIX}:{channel.slack_channel_id}",
        "title": _text("Channel Settings", "plain_text"),
        "submit": _text("Save", "plain_text"),
        "close": _text("Cancel", "plain_text"),
        "blocks": [
            _input_block(
                "channel_owner",
                EDIT_CHANNEL_OWNER_ACTION,
                "Ticket Assignee Email",
                initial_value=channel.default_assignee_email,
                placeholder="agent@your-domain.com",
                hint="New tickets from this channel are assigned to this Zendesk agent.",
                optional=True,
            ),
            _input_block(
                "channel_tags",
                EDIT_CHANNEL_TAGS_ACTION,
                "Ticket Tags",
                initial_value=",".join(channel.tags or []) or None,
                placeholder="vip,enterprise",
                hint="Comma separated, without spaces or special characters.",
                optional=True,
            ),
        ],
    }


def build_account_modal(
    portal_url: Optional[str], channel_limit: int, channels_used: int
) -> Dict[str, Any]:
    blocks: List[Dict[str, Any]] = [
        {
            "type": "section",
            "text": _text(f"*Channels in use:* {channels_used} of {channel_limit}"),
        }
    ]
    if portal_url:
        blocks.append(
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": _text("Manage subscription", "plain_text"),
                        "url": portal_url,
                        "style": "primary",
                    }
                ],
            }
        )
    else:
        blocks.append(
            {
                "type": "context",
                "elements": [_text("Billing is not available for this workspace yet.")],
            }
        )
    return {
        "type": "modal",
        "title": _text("Account", "plain_text"),
        "close": _text("Close", "plain_text"),
        "blocks": blocks,
    }


OAUTH_SUCCESS_HTML = """<!DOCTYPE html>
<html>
  <head><title>Zensync installed</title></head>
  <body style="font-family: sans-serif; text-align: center; padding-top: 80px;">
    <h1>Zensync is installed</h1>
    <p>Invite @Zensync to a channel and connect Zendesk from the app's Home tab.</p>
    <p><a href="slack://app?team={team_id}&id={app_id}&tab=home">Open Zensync in Slack</a></p>
  </body>
</html>
"""
