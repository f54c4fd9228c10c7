"""
Error taxonomy for the sync pipeline.

Every error kind declares whether it is retryable. Queue workers never
inspect exception types directly: they turn the outcome of a handler into a
HandlerResult and act on that.
"""

import enum
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base class for errors raised while syncing Slack and Zendesk"""

    retryable: bool = True
    status_code: int = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class PayloadValidationError(SyncError):
    """Malformed payload or missing required field"""

    retryable = False
    status_code = 400


class AuthenticationError(SyncError):
    """Bad signature, unknown bearer token, expired or unknown OAuth state"""

    retryable = False
    status_code = 401


class ConfigurationError(SyncError):
    """Missing or invalid remote credentials; may resolve after reconnection"""

    retryable = True
    status_code = 424


class DownstreamError(SyncError):
    """Non-success response (or network failure) from Slack or Zendesk"""

    status_code = 502

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        *,
        retryable: bool = True,
        http_status: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, context)
        self.retryable = retryable
        self.http_status = http_status
        self.error_code = error_code


class ZendeskTicketClosedError(DownstreamError):
    """Ticket is closed or deleted; the caller should open a follow-up ticket"""

    def __init__(self, ticket_id: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Zendesk ticket {ticket_id} can no longer be updated",
            context,
            retryable=False,
            http_status=422,
        )
        self.ticket_id = ticket_id


class MappingError(SyncError):
    """
    Reply whose parent conversation is unknown.

    Retryable: the parent may be created by a racing delivery shortly after.
    """

    retryable = True
    status_code = 409


class HandlerResult(enum.Enum):
    """What a queue worker should do with the message it just handled"""

    ACK = "ack"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "HandlerResult":
        if isinstance(exc, SyncError):
            return cls.RETRY if exc.retryable else cls.DEAD_LETTER
        # Unknown failures are treated as transient; the retry budget bounds them
        return cls.RETRY
