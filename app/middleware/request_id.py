"""
Request ID middleware for FastAPI.

Generates a unique request_id for each incoming request (or reuses the
X-Request-ID header a proxy already set). The request_id is:
- Added to the request state
- Added to response headers (X-Request-ID)
- Set in context variables so ALL logs in this request automatically include it
- Tagged on the Sentry scope
"""

import uuid
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import set_request_id, clear_request_id
from app.core.sentry import clear_sentry_context, set_sentry_context


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request_id to each request and sets it in context.
    """

    async def dispatch(self, request: Request, call_next):
        """Process the request and set request_id in context."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        request.state.request_id = request_id

        set_request_id(request_id)
        set_sentry_context(request_id=request_id)

        try:
            logger.info(f"{request.method} {request.url.path} - Request started")

            response: Response = await call_next(request)

            response.headers["X-Request-ID"] = request_id

            logger.info(
                f"{request.method} {request.url.path} - Request completed with status {response.status_code}"
            )

            return response

        except Exception as e:
            logger.error(f"{request.method} {request.url.path} - Request failed: {e}")
            raise
        finally:
            clear_request_id()
            clear_sentry_context()
