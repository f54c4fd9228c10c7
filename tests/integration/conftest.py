"""
Shared fixtures for integration tests.

All integration tests:
1. Use async tests with @pytest.mark.asyncio
2. Use the `client` fixture (AsyncClient) - NOT TestClient
3. Use the `test_db` fixture (AsyncSession) - NOT sync Session
4. Prefix all routes with API_PREFIX

Queue publishing is patched out by `published`; assert on it instead of SQS.
"""

from unittest.mock import AsyncMock, patch

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.database import get_db
from app.core.rate_limit import limiter
from app.main import app


@pytest_asyncio.fixture
async def published():
    """Replaces sqs_client.publish; returns the mock so tests can inspect calls."""
    with patch(
        "app.services.sqs.client.sqs_client.publish",
        new=AsyncMock(return_value=True),
    ) as mock_publish:
        yield mock_publish


@pytest_asyncio.fixture
async def client(test_db, token_processor, published):
    """
    Create async test client with database override.

    Overrides the app's get_db dependency to use the test database and
    disables rate limiting.
    """

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    limiter.enabled = True


# All API routes are prefixed with this. Use it in your tests!
API_PREFIX = "/api/v1"
