from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models import ConnectionStatus


class SlackEventCallback(BaseModel):
    """
    Outer envelope Slack posts to the Events API endpoint.

    `event` stays a raw dict here; app.slack.events turns it into a typed
    envelope once the connection has been resolved.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    api_app_id: Optional[str] = None
    team_id: Optional[str] = None
    event_id: Optional[str] = None
    event_time: Optional[int] = None
    event: Dict[str, Any] = Field(default_factory=dict)
    challenge: Optional[str] = None


class ConnectionDetails(BaseModel):
    """Identifiers of the Slack connection a queued job belongs to. Never secrets."""

    organization_id: str
    slack_connection_id: str
    app_id: str
    bot_user_id: str


class QueueEnvelope(BaseModel):
    """
    Body of every chat-message-events / file-upload-jobs message.

    event_body is the full Slack event callback. file_upload_tokens is filled
    in by the file upload worker before it republishes the job.
    """

    event_body: Dict[str, Any]
    connection_details: Optional[ConnectionDetails] = None
    idempotency_key: Optional[str] = None
    file_upload_tokens: Optional[List[str]] = None

    @property
    def event(self) -> Dict[str, Any]:
        return self.event_body.get("event") or {}

    @property
    def slack_channel_id(self) -> Optional[str]:
        channel = self.event.get("channel")
        if isinstance(channel, dict):
            # channel_rename carries the whole channel object
            return channel.get("id")
        return channel

    @property
    def group_key(self) -> Optional[str]:
        """FIFO group: one Slack channel of one organization"""
        organization_id = (
            self.connection_details.organization_id if self.connection_details else None
        )
        parts = (organization_id, self.slack_channel_id)
        return ":".join(part for part in parts if part) or None


class LifecycleJob(BaseModel):
    """Body of a connection-lifecycle-events message"""

    kind: str  # connection_created | app_uninstalled | tokens_revoked
    connection_details: ConnectionDetails
    idempotency_key: Optional[str] = None


# OAuth Response Models
class SlackOAuthTeam(BaseModel):
    """Slack OAuth team information"""

    id: str
    name: Optional[str] = None


class SlackOAuthResponse(BaseModel):
    """Response from Slack OAuth token exchange (oauth.v2.access)"""

    model_config = ConfigDict(extra="ignore")

    ok: bool
    access_token: str
    token_type: str = "bot"
    scope: Optional[str] = None
    bot_user_id: str
    app_id: str
    team: SlackOAuthTeam
    enterprise: Optional[Dict[str, Any]] = None
    authed_user: Optional[Dict[str, Any]] = None


class OAuthInstallResponse(BaseModel):
    authorize_url: str
    state: str


class SlackConnectionPublic(BaseModel):
    """Public-facing connection data (without token)"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    slack_team_id: str
    app_id: str
    name: Optional[str] = None
    domain: Optional[str] = None
    status: ConnectionStatus
