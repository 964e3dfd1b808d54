"""
RequestContext Middleware - Adds request tracking to all requests.

Adds to request.state:
- request_id: Unique ID for request tracing (reuses an incoming X-Request-ID)
- ip_address: Client IP address
- user_agent: Client user agent string

The request id is also bound into the structlog context so every log line
emitted while handling the request carries it, and is echoed back in the
X-Request-ID response header.
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        """Process request and add context."""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = request.client.host if request.client else None
        request.state.user_agent = request.headers.get("user-agent")

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            logger.debug(
                "Request started",
                method=request.method,
                path=request.url.path,
                ip_address=request.state.ip_address,
                user_agent=request.state.user_agent,
            )
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response
