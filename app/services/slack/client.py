"""
Slack Web API client.

Thin httpx wrapper around the handful of Slack methods the sync pipeline
uses. Every call has a bounded timeout and every failure is classified into
the sync error taxonomy so queue workers know whether to retry.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from app.core.config import settings
from app.sync.errors import ConfigurationError, DownstreamError

logger = logging.getLogger(__name__)

# Slack `error` codes meaning the bot token is no longer usable
AUTH_ERROR_CODES = {
    "invalid_auth",
    "not_authed",
    "token_revoked",
    "token_expired",
    "account_inactive",
    "missing_scope",
}

# Slack `error` codes worth another attempt
TRANSIENT_ERROR_CODES = {
    "ratelimited",
    "internal_error",
    "fatal_error",
    "service_unavailable",
    "request_timeout",
}


class SlackClient:
    """
    Per-installation Slack Web API client.

    The bot token is passed in already decrypted; callers obtain it from the
    injected TokenProcessor. `transport` is only set by tests.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = (base_url or settings.SLACK_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def __repr__(self) -> str:
        return f"SlackClient(base_url={self.base_url!r})"

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _auth_headers(self) -> Dict[str, str]:
        if not self.token:
            raise ConfigurationError("Slack bot token not available")
        return {"Authorization": f"Bearer {self.token}"}

    async def _call(
        self,
        method: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Dict[str, Any]:
        """
        Invoke a Slack Web API method and return its JSON body.

        Write methods are sent as JSON; read methods that Slack only accepts as
        form/query arguments are sent with `params` (GET) or `data` (form POST).

        Raises:
            DownstreamError: Network failure, non-2xx, or `ok: false`
            ConfigurationError: Token missing, revoked or lacking scopes
        """
        url = f"{self.base_url}/{method}"
        headers = self._auth_headers() if authenticated else {}
        context = {"slack_method": method}

        try:
            async with self._http() as client:
                if params is not None:
                    response = await client.get(url, params=params, headers=headers)
                elif data is not None:
                    response = await client.post(url, data=data, headers=headers)
                else:
                    response = await client.post(url, json=json or {}, headers=headers)
        except httpx.HTTPError as e:
            raise DownstreamError(
                f"Slack {method} request failed: {type(e).__name__}", context
            ) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise DownstreamError(
                f"Slack {method} returned HTTP {response.status_code}",
                context,
                http_status=response.status_code,
            )
        if response.status_code in (401, 403):
            raise ConfigurationError(
                f"Slack {method} rejected credentials (HTTP {response.status_code})",
                context,
            )
        if response.status_code >= 400:
            raise DownstreamError(
                f"Slack {method} returned HTTP {response.status_code}",
                context,
                retryable=False,
                http_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise DownstreamError(
                f"Slack {method} returned a non-JSON body", context
            ) from e

        if not body.get("ok"):
            error_code = body.get("error", "unknown_error")
            context["slack_error"] = error_code
            if error_code in AUTH_ERROR_CODES:
                raise ConfigurationError(f"Slack {method} failed: {error_code}", context)
            raise DownstreamError(
                f"Slack {method} failed: {error_code}",
                context,
                retryable=error_code in TRANSIENT_ERROR_CODES,
                http_status=response.status_code,
                error_code=error_code,
            )

        return body

    # ---------- chat ----------

    async def post_message(
        self,
        channel: str,
        text: str,
        thread_ts: Optional[str] = None,
        username: Optional[str] = None,
        icon_url: Optional[str] = None,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Post to a channel (or a thread when thread_ts is set). Returns the API body with `ts`."""
        payload: Dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        if username:
            payload["username"] = username
        if icon_url:
            payload["icon_url"] = icon_url
        if blocks:
            payload["blocks"] = blocks
        return await self._call("chat.postMessage", json=payload)

    async def post_ephemeral(
        self,
        channel: str,
        user: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"channel": channel, "user": user, "text": text}
        if blocks:
            payload["blocks"] = blocks
        return await self._call("chat.postEphemeral", json=payload)

    # ---------- conversations ----------

    async def conversations_info(self, channel: str) -> Dict[str, Any]:
        body = await self._call("conversations.info", params={"channel": channel})
        return body.get("channel") or {}

    async def leave_channel(self, channel: str) -> None:
        await self._call("conversations.leave", json={"channel": channel})

    # ---------- users ----------

    async def users_profile_get(self, user: str) -> Dict[str, Any]:
        body = await self._call("users.profile.get", params={"user": user})
        return body.get("profile") or {}

    async def lookup_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Return the Slack user for an email, or None if no member has it."""
        try:
            body = await self._call("users.lookupByEmail", params={"email": email})
        except DownstreamError as e:
            if e.error_code == "users_not_found":
                return None
            raise
        return body.get("user")

    # ---------- files ----------

    async def files_info(self, file_id: str) -> Dict[str, Any]:
        body = await self._call("files.info", params={"file": file_id})
        return body.get("file") or {}

    async def stream_file(
        self, url: str, chunk_size: int = 64 * 1024
    ) -> AsyncIterator[bytes]:
        """
        Stream a private Slack file (url_private) using the bot token.

        Yields raw byte chunks; the file is never held in memory as a whole.
        """
        headers = self._auth_headers()
        try:
            async with self._http() as client:
                async with client.stream("GET", url, headers=headers) as response:
                    if response.status_code >= 400:
                        raise DownstreamError(
                            f"Slack file download returned HTTP {response.status_code}",
                            {"slack_method": "files.download"},
                            retryable=response.status_code >= 500
                            or response.status_code == 429,
                            http_status=response.status_code,
                        )
                    async for chunk in response.aiter_bytes(chunk_size):
                        yield chunk
        except httpx.HTTPError as e:
            raise DownstreamError(
                f"Slack file download failed: {type(e).__name__}",
                {"slack_method": "files.download"},
            ) from e

    # ---------- views ----------

    async def publish_view(self, user_id: str, view: Dict[str, Any]) -> None:
        await self._call("views.publish", json={"user_id": user_id, "view": view})

    async def open_view(self, trigger_id: str, view: Dict[str, Any]) -> None:
        await self._call("views.open", json={"trigger_id": trigger_id, "view": view})

    # ---------- team / oauth ----------

    async def team_info(self) -> Dict[str, Any]:
        body = await self._call("team.info", params={})
        return body.get("team") or {}

    async def oauth_access(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """Exchange an OAuth code for a bot token (oauth.v2.access)."""
        if not settings.SLACK_CLIENT_ID or not settings.SLACK_CLIENT_SECRET:
            raise ConfigurationError("Slack OAuth client credentials not configured")
        return await self._call(
            "oauth.v2.access",
            data={
                "client_id": settings.SLACK_CLIENT_ID,
                "client_secret": settings.SLACK_CLIENT_SECRET,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            authenticated=False,
        )
