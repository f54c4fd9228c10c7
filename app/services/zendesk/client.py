"""
Zendesk Support API client.

Authenticates with an API token (`{email}/token:{api_key}` basic auth) and
classifies every failure into the sync error taxonomy:

- network errors, 429 and 5xx: retryable DownstreamError
- 401/403: ConfigurationError (credentials revoked or wrong)
- updates on a closed or deleted ticket: ZendeskTicketClosedError
- any other 4xx: terminal DownstreamError
"""

import json
import logging
from typing import Any, AsyncIterable, Dict, List, Optional, Union

import httpx

from app.core.config import settings
from app.sync.errors import (
    ConfigurationError,
    DownstreamError,
    ZendeskTicketClosedError,
)

logger = logging.getLogger(__name__)

WEBHOOK_NAME = "Slack-to-Zendesk Sync"
TRIGGER_TITLE = "Zensync - Slack-to-Zendesk Sync [DO NOT EDIT]"
TRIGGER_DESCRIPTION = (
    "Two-way sync between Slack and Zendesk. Contact your admin for help."
)

# Liquid template rendered by Zendesk for every matching ticket update
TRIGGER_WEBHOOK_BODY = """{
  "ticket_id": "{{ticket.id}}",
  "external_id": "{{ticket.external_id}}",
  "last_updated_at": "{{ticket.updated_at_with_timestamp}}",
  "created_at": "{{ticket.created_at_with_timestamp}}",
  "requester_email": "{{ticket.requester.email}}",
  "requester_external_id": "{{ticket.requester.external_id}}",
  "current_user_email": "{{current_user.email}}",
  "current_user_name": "{{current_user.name}}",
  "current_user_external_id": "{{current_user.external_id}}",
  "current_user_signature": "{{current_user.signature}}",
  "message": "{{ticket.latest_public_comment}}",
  "is_public": "{{ticket.latest_public_comment.is_public}}",
  "attachments": [
    {% for attachment in ticket.latest_public_comment.attachments %}
    {
      "filename": "{{attachment.filename}}",
      "url": "{{attachment.url}}"
    }{% if forloop.last == false %},{% endif %}
    {% endfor %}
  ],
  "via": "{{ticket.via}}"
}
"""


def is_closed_ticket_response(status_code: int, body: Dict[str, Any]) -> bool:
    """True when Zendesk refused a ticket update because the ticket is closed or gone."""
    error = body.get("error")
    if status_code == 404 or error == "RecordNotFound":
        return True
    if error == "RecordInvalid":
        details = (body.get("details") or {}).get("status") or []
        return any(
            "Status: closed prevents ticket update" in (d.get("description") or "")
            for d in details
        )
    return False


class ZendeskClient:
    """Per-connection Zendesk client. The API key is passed in already decrypted."""

    def __init__(
        self,
        domain: str,
        email: str,
        api_key: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.domain = domain
        self.email = email
        self.base_url = f"https://{domain}.zendesk.com/api/v2"
        self._auth = httpx.BasicAuth(f"{email}/token", api_key)
        self.timeout = timeout or settings.HTTP_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def __repr__(self) -> str:
        return f"ZendeskClient(domain={self.domain!r}, email={self.email!r})"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        content: Optional[Union[bytes, AsyncIterable[bytes]]] = None,
        headers: Optional[Dict[str, str]] = None,
        ticket_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        context = {"zendesk_domain": self.domain, "zendesk_path": path}
        if ticket_id:
            context["zendesk_ticket_id"] = ticket_id

        try:
            async with httpx.AsyncClient(
                auth=self._auth, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    url,
                    json=json_body,
                    params=params,
                    content=content,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise DownstreamError(
                f"Zendesk {method} {path} failed: {type(e).__name__}", context
            ) from e

        try:
            body = response.json() if response.content else {}
        except (ValueError, json.JSONDecodeError):
            body = {}

        if response.is_success:
            return body

        status = response.status_code
        if status == 429 or status >= 500:
            raise DownstreamError(
                f"Zendesk {method} {path} returned HTTP {status}",
                context,
                http_status=status,
            )
        if status in (401, 403):
            raise ConfigurationError(
                f"Zendesk rejected credentials (HTTP {status})", context
            )
        if ticket_id and method == "PUT" and is_closed_ticket_response(status, body):
            raise ZendeskTicketClosedError(ticket_id, context)

        logger.error(f"Zendesk {method} {path} returned {status}: {body}")
        raise DownstreamError(
            f"Zendesk {method} {path} returned HTTP {status}",
            context,
            retryable=False,
            http_status=status,
            error_code=body.get("error") if isinstance(body.get("error"), str) else None,
        )

    # ---------- users ----------

    async def get_current_user(self) -> Dict[str, Any]:
        """Fetch the authenticated user; used to test credentials before saving them."""
        body = await self._request("GET", "users/me.json")
        user = body.get("user") or {}
        # Zendesk answers users/me anonymously when the token is wrong
        if not user.get("id"):
            raise ConfigurationError(
                "Zendesk credentials did not resolve to a user",
                {"zendesk_domain": self.domain},
            )
        return user

    async def create_or_update_user(
        self,
        external_id: str,
        name: str,
        remote_photo_url: Optional[str] = None,
    ) -> int:
        user: Dict[str, Any] = {
            "name": name,
            "external_id": external_id,
            "skip_verify_email": True,
        }
        if remote_photo_url:
            user["remote_photo_url"] = remote_photo_url
        body = await self._request(
            "POST", "users/create_or_update.json", json_body={"user": user}
        )
        return body["user"]["id"]

    # ---------- tickets ----------

    async def create_ticket(
        self, ticket: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body = await self._request(
            "POST", "tickets.json", json_body={"ticket": ticket}, headers=headers
        )
        return body["ticket"]

    async def update_ticket(
        self,
        ticket_id: str,
        ticket: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Update a ticket (typically adding a comment).

        Raises:
            ZendeskTicketClosedError: The ticket is closed or deleted
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body = await self._request(
            "PUT",
            f"tickets/{ticket_id}.json",
            json_body={"ticket": ticket},
            headers=headers,
            ticket_id=str(ticket_id),
        )
        return body.get("ticket") or {}

    async def upload_file(
        self,
        filename: str,
        content: Union[bytes, AsyncIterable[bytes]],
        content_type: Optional[str] = None,
    ) -> str:
        """Upload an attachment and return the token to reference from a comment."""
        body = await self._request(
            "POST",
            "uploads.json",
            params={"filename": filename},
            content=content,
            headers={"Content-Type": content_type or "application/octet-stream"},
        )
        return body["upload"]["token"]

    # ---------- webhook plumbing ----------

    async def create_webhook(self, endpoint: str, bearer_token: str) -> str:
        body = await self._request(
            "POST",
            "webhooks",
            json_body={
                "webhook": {
                    "endpoint": endpoint,
                    "http_method": "POST",
                    "name": WEBHOOK_NAME,
                    "request_format": "json",
                    "status": "active",
                    "subscriptions": ["conditional_ticket_events"],
                    "authentication": {
                        "type": "bearer_token",
                        "data": {"token": bearer_token},
                        "add_position": "header",
                    },
                }
            },
        )
        return str(body["webhook"]["id"])

    async def create_trigger(self, webhook_id: str, tag: str) -> str:
        conditions: List[Dict[str, str]] = [
            {"field": "status", "operator": "greater_than", "value": "new"},
            {"field": "role", "operator": "is", "value": "agent"},
            {"field": "current_tags", "operator": "includes", "value": tag},
            {"field": "comment_is_public", "operator": "is", "value": "true"},
        ]
        body = await self._request(
            "POST",
            "triggers",
            json_body={
                "trigger": {
                    "title": TRIGGER_TITLE,
                    "description": TRIGGER_DESCRIPTION,
                    "active": True,
                    "conditions": {"all": conditions},
                    "actions": [
                        {
                            "field": "notification_webhook",
                            "value": [webhook_id, TRIGGER_WEBHOOK_BODY],
                        }
                    ],
                }
            },
        )
        return str(body["trigger"]["id"])
