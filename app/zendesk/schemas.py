from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models import ConnectionStatus


class ZendeskAttachment(BaseModel):
    filename: Optional[str] = None
    url: Optional[str] = None


class ZendeskTicketEvent(BaseModel):
    """
    Body rendered by the Zensync trigger for every public agent update.

    Zendesk fills the Liquid placeholders with strings, including empty
    strings for missing values.
    """

    model_config = ConfigDict(extra="allow")

    ticket_id: Optional[str] = None
    external_id: Optional[str] = None
    last_updated_at: Optional[str] = None
    created_at: Optional[str] = None
    requester_email: Optional[str] = None
    requester_external_id: Optional[str] = None
    current_user_email: Optional[str] = None
    current_user_name: Optional[str] = None
    current_user_external_id: Optional[str] = None
    current_user_signature: Optional[str] = None
    message: Optional[str] = None
    is_public: Optional[str] = None
    attachments: List[ZendeskAttachment] = Field(default_factory=list)
    via: Optional[str] = None


class ZendeskCredentialsUpdate(BaseModel):
    """Request body for PUT /organizations/{id}/connections/zendesk"""

    zendesk_domain: str
    zendesk_email: str
    zendesk_api_key: str


class ZendeskConnectionPublic(BaseModel):
    """Public-facing Zendesk connection data (never the API key)"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    zendesk_domain: str
    zendesk_email: str
    zendesk_webhook_id: Optional[str] = None
    zendesk_trigger_id: Optional[str] = None
    status: ConnectionStatus
