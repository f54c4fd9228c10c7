"""
OAuth state management for CSRF protection.

States live in the database so any API instance can validate a state issued
by another. A state is valid for OAUTH_STATE_TTL_SECONDS and is deleted on
first validation.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models import OAuthState, as_utc
from app.sync.errors import AuthenticationError

logger = logging.getLogger(__name__)


class OAuthStateManager:
    """Database-backed single-use state tokens with a fixed validity window."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds or settings.OAUTH_STATE_TTL_SECONDS

    async def issue_state(
        self,
        db: AsyncSession,
        organization_id: Optional[str] = None,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Create and persist a new random state token.

        Args:
            db: Database session
            organization_id: Organization the OAuth flow will be bound to
            created_by: Dashboard user that started the flow
            now: Creation time override (tests)

        Returns:
            The state token to embed in the authorize URL
        """
        state = secrets.token_urlsafe(32)
        db.add(
            OAuthState(
                id=state,
                organization_id=organization_id,
                created_by=created_by,
                created_at=now or datetime.now(timezone.utc),
            )
        )
        await db.commit()
        logger.info(f"Issued OAuth state for organization {organization_id}")
        return state

    async def validate_and_consume_state(
        self, db: AsyncSession, state: Optional[str], now: Optional[datetime] = None
    ) -> OAuthState:
        """
        Validate OAuth state and delete it (one-time use).

        Returns:
            The consumed OAuthState row (organization_id / created_by are trusted)

        Raises:
            AuthenticationError: If the state is unknown or older than the window
        """
        if not state:
            raise AuthenticationError("Missing OAuth state")

        result = await db.execute(select(OAuthState).where(OAuthState.id == state))
        row = result.scalar_one_or_none()
        if not row:
            logger.warning("OAuth state not found")
            raise AuthenticationError("Invalid or expired OAuth state")

        current = now or datetime.now(timezone.utc)
        age = current - as_utc(row.created_at)

        await db.delete(row)
        await db.commit()

        if age > timedelta(seconds=self.ttl_seconds):
            logger.warning(
                f"OAuth state expired ({age.total_seconds():.0f}s old, "
                f"organization={row.organization_id})"
            )
            raise AuthenticationError("Invalid or expired OAuth state")

        return row

    async def cleanup_expired(
        self, db: AsyncSession, now: Optional[datetime] = None
    ) -> int:
        """
        Remove all expired states.

        Returns:
            Number of states removed
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(
            seconds=self.ttl_seconds
        )
        result = await db.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        await db.commit()
        return result.rowcount or 0


# Global instance
oauth_state_manager = OAuthStateManager()
