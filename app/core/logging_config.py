"""
Loguru setup shared by the API process and the queue workers.

Records from standard-library loggers are routed into loguru and written to
stderr as one JSON object per line. Correlation ids live in contextvars:
request_id for an HTTP request, job_id for an SQS delivery, and the
organization, Slack channel and Zendesk ticket a job is working on. A record
only carries the ids that are set in its context.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from types import FrameType
from typing import Any, Dict, Optional

from loguru import logger

from app.core.config import settings

UNSET = "-"

request_id_var: ContextVar[str] = ContextVar("request_id", default=UNSET)
job_id_var: ContextVar[str] = ContextVar("job_id", default=UNSET)
organization_id_var: ContextVar[str] = ContextVar("organization_id", default=UNSET)
slack_channel_id_var: ContextVar[str] = ContextVar("slack_channel_id", default=UNSET)
zendesk_ticket_id_var: ContextVar[str] = ContextVar("zendesk_ticket_id", default=UNSET)

# Ids a job binds once it knows what it is syncing; cleared with job_id
SYNC_CONTEXT_VARS: Dict[str, ContextVar[str]] = {
    var.name: var
    for var in (organization_id_var, slack_channel_id_var, zendesk_ticket_id_var)
}
CONTEXT_VARS = (request_id_var, job_id_var, *SYNC_CONTEXT_VARS.values())

NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "uvicorn.access",
    "botocore",
    "aiobotocore",
    "httpx",
)


class InterceptHandler(logging.Handler):
    """Send standard logging records to loguru, attributed to the original caller."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: Optional[FrameType] = sys._getframe(settings.LOGGING_FRAME_DEPTH)
        depth: int = settings.LOGGING_FRAME_DEPTH
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def context_filter(record) -> bool:
    """Copy every correlation id set in the current context into record["extra"]."""
    for var in CONTEXT_VARS:
        value = var.get()
        if value and value != UNSET:
            record["extra"][var.name] = value
    return True


def _exception_fields(exception) -> Dict[str, Any]:
    traceback_text = None
    if exception.traceback:
        try:
            traceback_text = "".join(
                traceback.format_exception(
                    exception.type, exception.value, exception.traceback
                )
            ).strip()
        except Exception:
            traceback_text = str(exception.traceback)

    return {
        "type": exception.type.__name__ if exception.type else None,
        "value": str(exception.value) if exception.value else None,
        "traceback": traceback_text,
    }


def build_json_record(record) -> Dict[str, Any]:
    """
    Flatten a loguru record into the JSON line we ship.

    Correlation ids are top-level keys so log search can filter on
    organization_id or zendesk_ticket_id directly.
    """
    log_record: Dict[str, Any] = {
        "timestamp": record["time"].strftime("%Y-%m-%d %H:%M:%S"),
        "level": record["level"].name,
        "logger": record["name"],
        "message": record["message"],
    }
    for var in CONTEXT_VARS:
        if var.name in record["extra"]:
            log_record[var.name] = record["extra"][var.name]

    log_record["exception"] = (
        _exception_fields(record["exception"]) if record["exception"] else None
    )
    log_record["process"] = {
        "id": record["process"].id,
        "name": record["process"].name,
    }
    return log_record


def json_sink(message):
    sys.stderr.write(json.dumps(build_json_record(message.record)) + "\n")


def configure_logging():
    """
    Route all logging through loguru's JSON sink at settings.LOG_LEVEL.

    Called once at startup by the API and by the worker entry point.
    """
    logger.remove()
    logger.add(
        json_sink,
        level=settings.LOG_LEVEL,
        backtrace=True,
        diagnose=True,
        filter=context_filter,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured successfully with loguru")


def set_request_id(request_id: str):
    """Set by RequestIDMiddleware at the start of every HTTP request."""
    request_id_var.set(request_id)


def clear_request_id():
    request_id_var.set(UNSET)


def set_job_id(job_id: str):
    """Set by the workers for every SQS delivery (the SQS MessageId)."""
    job_id_var.set(job_id)


def bind_sync_context(**ids: Optional[str]):
    """
    Attach organization_id, slack_channel_id or zendesk_ticket_id to the
    current job's logs. Unknown keys and empty values are ignored, so an
    error's context dict can be passed as-is.
    """
    for name, value in ids.items():
        var = SYNC_CONTEXT_VARS.get(name)
        if var is not None and value:
            var.set(str(value))


def clear_job_id():
    """Reset job_id and every id bound through bind_sync_context."""
    job_id_var.set(UNSET)
    for var in SYNC_CONTEXT_VARS.values():
        var.set(UNSET)
