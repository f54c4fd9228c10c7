from typing import Optional

from pydantic import BaseModel

from app.slack.schemas import SlackConnectionPublic
from app.zendesk.schemas import ZendeskConnectionPublic


class OrganizationConnectionsResponse(BaseModel):
    """Both sides of an organization's sync, as shown on the dashboard"""

    organization_id: str
    subscription_active: bool
    channel_limit: int
    channels_used: int
    slack: Optional[SlackConnectionPublic] = None
    zendesk: Optional[ZendeskConnectionPublic] = None
