"""
Unit tests for the database session factory.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import AsyncSessionLocal


def test_session_factory_is_async():
    assert isinstance(AsyncSessionLocal, async_sessionmaker)
    assert AsyncSessionLocal.class_ is AsyncSession
    assert AsyncSessionLocal.kw["expire_on_commit"] is False
