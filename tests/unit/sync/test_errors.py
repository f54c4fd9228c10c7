"""
Unit tests for the sync error taxonomy and HandlerResult mapping.
"""

import pytest

from app.sync.errors import (
    AuthenticationError,
    ConfigurationError,
    DownstreamError,
    HandlerResult,
    MappingError,
    PayloadValidationError,
    ZendeskTicketClosedError,
)


@pytest.mark.parametrize(
    "exc,expected",
    [
        (PayloadValidationError("bad"), HandlerResult.DEAD_LETTER),
        (AuthenticationError("nope"), HandlerResult.DEAD_LETTER),
        (ConfigurationError("missing creds"), HandlerResult.RETRY),
        (DownstreamError("503"), HandlerResult.RETRY),
        (DownstreamError("400", retryable=False), HandlerResult.DEAD_LETTER),
        (ZendeskTicketClosedError("42"), HandlerResult.DEAD_LETTER),
        (MappingError("no parent"), HandlerResult.RETRY),
        (RuntimeError("boom"), HandlerResult.RETRY),
    ],
)
def test_handler_result_from_exception(exc, expected):
    assert HandlerResult.from_exception(exc) == expected


def test_context_in_message():
    error = MappingError("No conversation", {"slack_channel_id": "C1"})
    assert str(error) == "No conversation (slack_channel_id=C1)"
    assert error.message == "No conversation"


def test_http_status_codes():
    assert PayloadValidationError("x").status_code == 400
    assert AuthenticationError("x").status_code == 401
    assert DownstreamError("x").status_code == 502
