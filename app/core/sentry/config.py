"""
Centralized Sentry configuration and context helpers.

Provides initialization and scope-setting utilities so every Sentry event
raised by the API or a queue worker carries request_id, job_id and
organization_id.
"""

import logging

import sentry_sdk

from app.core.config import settings

logger = logging.getLogger(__name__)


def init_sentry() -> None:
    """Initialize Sentry SDK.

    Called once at startup (main.py and worker.py). No-op if SENTRY_DSN is not set.
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured, skipping initialization")
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=(
            1.0 if settings.is_local else settings.SENTRY_TRACES_SAMPLE_RATE
        ),
        environment=settings.ENVIRONMENT,
        # Webhook bodies carry end-user chat text
        send_default_pii=False,
    )
    logger.info("Sentry initialized (environment=%s)", settings.ENVIRONMENT)


def set_sentry_context(
    *,
    request_id: str | None = None,
    job_id: str | None = None,
    organization_id: str | None = None,
    topic: str | None = None,
) -> None:
    """Set Sentry scope tags for the current execution context.

    Call this from middleware (request_id) and workers (job_id, organization_id, topic)
    so every Sentry event in that context is tagged for filtering/search.
    """
    if not settings.SENTRY_DSN:
        return

    if request_id:
        sentry_sdk.set_tag("request_id", request_id)
    if job_id:
        sentry_sdk.set_tag("job_id", job_id)
    if organization_id:
        sentry_sdk.set_tag("organization_id", organization_id)
    if topic:
        sentry_sdk.set_tag("queue_topic", topic)


def clear_sentry_context() -> None:
    """Clear Sentry scope tags after request/job completes."""
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.set_tag("request_id", "")
    sentry_sdk.set_tag("job_id", "")
    sentry_sdk.set_tag("organization_id", "")
    sentry_sdk.set_tag("queue_topic", "")
