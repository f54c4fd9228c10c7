"""
Zendesk webhook authentication.

Each Zendesk connection gets its own random bearer token when the webhook is
created. Only its sha256 is stored, so lookup is a single indexed query.
"""

import hashlib
import logging
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ConnectionStatus, ZendeskConnection
from app.sync.errors import AuthenticationError

logger = logging.getLogger(__name__)


def generate_webhook_token() -> str:
    return secrets.token_urlsafe(32)


def hash_webhook_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def authenticate_zendesk_request(
    db: AsyncSession, authorization: Optional[str]
) -> ZendeskConnection:
    """
    Resolve the Zendesk connection that owns the bearer token.

    Raises:
        AuthenticationError: Missing header, wrong scheme, unknown or inactive token
    """
    token = extract_bearer_token(authorization)
    if not token:
        logger.warning("Zendesk webhook received without bearer token")
        raise AuthenticationError("Missing bearer token")

    result = await db.execute(
        select(ZendeskConnection).where(
            ZendeskConnection.webhook_token_hash == hash_webhook_token(token)
        )
    )
    connection = result.scalar_one_or_none()

    if not connection or connection.status != ConnectionStatus.ACTIVE:
        logger.warning("Zendesk webhook bearer token did not match a connection")
        raise AuthenticationError("Invalid bearer token")

    return connection
