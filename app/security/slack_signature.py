"""
Slack request signature verification.

Slack signs every request with HMAC-SHA256 over "v0:{timestamp}:{body}"
using the app's signing secret and sends the result in X-Slack-Signature.

Documentation: https://api.slack.com/authentication/verifying-requests-from-slack
"""

import hashlib
import hmac
import logging
import time
from typing import Optional, Union

from app.core.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = "v0"


def compute_slack_signature(
    signing_secret: str, timestamp: str, body: Union[str, bytes]
) -> str:
    """Return the "v0=<hex>" signature Slack would send for this body"""
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    base_string = f"{SIGNATURE_VERSION}:{timestamp}:{body}"
    digest = hmac.new(
        key=signing_secret.encode("utf-8"),
        msg=base_string.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def constant_time_equals(expected: str, supplied: str) -> bool:
    """
    Compare two strings without an early exit on the first mismatch.

    Length is checked first; equal-length inputs always walk every byte and
    accumulate differences with XOR.
    """
    expected_bytes = expected.encode("utf-8")
    supplied_bytes = supplied.encode("utf-8")
    if len(expected_bytes) != len(supplied_bytes):
        return False

    mismatch = 0
    for a, b in zip(expected_bytes, supplied_bytes):
        mismatch |= a ^ b
    return mismatch == 0


def is_timestamp_fresh(
    timestamp: str, max_age_seconds: int, now: Optional[float] = None
) -> bool:
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False
    current = time.time() if now is None else now
    return abs(current - sent_at) <= max_age_seconds


def verify_slack_signature(
    signature: Optional[str],
    timestamp: Optional[str],
    body: Union[str, bytes],
    signing_secret: Optional[str] = None,
    max_age_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> bool:
    """
    Verify a Slack request.

    Args:
        signature: X-Slack-Signature header ("v0=...")
        timestamp: X-Slack-Request-Timestamp header (unix seconds)
        body: Raw request body exactly as received
        signing_secret: Defaults to settings.SLACK_SIGNING_SECRET
        max_age_seconds: Replay window, defaults to settings.SLACK_REQUEST_MAX_AGE_SECONDS
        now: Current unix time override (tests)

    Returns:
        bool: True only if the timestamp is fresh and the signature matches
    """
    secret = signing_secret or settings.SLACK_SIGNING_SECRET
    if not (secret and signature and timestamp):
        logger.warning("Missing Slack verification parameters")
        return False

    window = (
        settings.SLACK_REQUEST_MAX_AGE_SECONDS
        if max_age_seconds is None
        else max_age_seconds
    )
    if not is_timestamp_fresh(timestamp, window, now):
        logger.warning(f"Stale or invalid Slack request timestamp: {timestamp}")
        return False

    expected = compute_slack_signature(secret, timestamp, body)
    return constant_time_equals(expected, signature)
