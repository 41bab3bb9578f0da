"""
AIGate — Request ID Middleware
==============================

What:  Assigns a short correlation ID to each request and echoes it back.
Why:   One generate() call can log several attempts across keys and models;
       the request ID ties those lines to the HTTP request that caused them.
How:   Reuses the client's X-Request-ID when present, else generates one.
       The ID lives in a ContextVar so the orchestrator can prefix its log
       lines without the route passing it down.
When:  First middleware to run.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local; empty outside an HTTP request (in-process callers).
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
