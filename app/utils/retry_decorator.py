"""
Retry helper for synchronous external API calls using tenacity.

Queue handlers never retry in-process: a failed job is redelivered by SQS.
The one call made while a user waits on a response (the Slack OAuth code
exchange) uses this helper instead.

Features:
- Exponential backoff bounded by settings (EXTERNAL_API_RETRY_*)
- Smart error detection (retry transient errors, fail fast on permanent errors)
- Logs each failed attempt before sleeping
"""

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.sync.errors import ConfigurationError, DownstreamError

logger = logging.getLogger(__name__)

_NETWORK_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.NetworkError,
)


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if a failed external call should be retried.

    Retryable:
    - Network errors (timeouts, connection errors)
    - httpx 5xx / 429 / 408 status errors
    - DownstreamError flagged retryable by the relay client

    Everything else fails fast, including ConfigurationError (bad credentials
    do not fix themselves within a few seconds).
    """
    if isinstance(exception, _NETWORK_ERRORS):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
        return status_code >= 500 or status_code in (408, 429)

    if isinstance(exception, ConfigurationError):
        return False

    if isinstance(exception, DownstreamError):
        return exception.retryable

    return False


def retry_external_api(service_name: str = "external_api") -> AsyncRetrying:
    """
    Create a tenacity AsyncRetrying instance for external API calls.

    Usage:
        async for attempt in retry_external_api("slack_oauth"):
            with attempt:
                return await slack.oauth_access(code, redirect_uri)

    Args:
        service_name: Name of the external service (for logging)

    Returns:
        AsyncRetrying instance configured with retry logic
    """
    retry_logger = logging.getLogger(f"{__name__}.{service_name}")
    return AsyncRetrying(
        stop=stop_after_attempt(settings.EXTERNAL_API_RETRY_ATTEMPTS),
        # With multiplier=1.0, min=0.5s, max=2.0s: 0.5s -> 1.0s -> 2.0s
        wait=wait_exponential(
            multiplier=settings.EXTERNAL_API_RETRY_MULTIPLIER,
            min=settings.EXTERNAL_API_RETRY_MIN_WAIT,
            max=settings.EXTERNAL_API_RETRY_MAX_WAIT,
        ),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(retry_logger, logging.WARNING),
        reraise=True,
    )
