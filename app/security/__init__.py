"""
Inbound request authentication: Slack signatures and Zendesk bearer tokens.
"""

from .slack_signature import (
    compute_slack_signature,
    constant_time_equals,
    verify_slack_signature,
)
from .zendesk_auth import (
    authenticate_zendesk_request,
    generate_webhook_token,
    hash_webhook_token,
)

__all__ = [
    "compute_slack_signature",
    "constant_time_equals",
    "verify_slack_signature",
    "authenticate_zendesk_request",
    "generate_webhook_token",
    "hash_webhook_token",
]
