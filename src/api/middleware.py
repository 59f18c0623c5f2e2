"""Request context middleware for correlation ID tracking."""

import uuid
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from src.core.logging import filing_id_ctx, request_id_ctx, user_id_ctx

RequestResponseEndpoint = Callable[[Request], Awaitable[Response]]


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Sets request context variables for logging correlation.

    Reuses the caller's X-Request-ID header or generates one, exposes it to
    every log event of the request, and echoes it on the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_ctx.set(request_id)
        user_id_ctx.set(None)
        filing_id_ctx.set(None)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response
