"""
Patient Image Backend - Request ID Middleware
===============================================

What:  Gives every request a correlation id, returns it in X-Request-ID and
       stamps it on every log record written while the request is served.
How:   A client-supplied X-Request-ID is reused when it is a short token
       (letters, digits, ".", "_", "-"); anything else is replaced by a
       generated 8-character hex id.

The id lives in two places:
    request.state.request_id  read by the exception handlers (main.py), which
                              includes the catch-all handler that runs outside
                              this middleware
    request_id_var            read by RequestIdLogFilter for log records
"""

import logging
import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_CLIENT_ID_PATTERN = re.compile(r"[A-Za-z0-9._-]{1,64}")

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def choose_request_id(supplied: str | None) -> str:
    """The client's id if it is a usable token, otherwise a fresh one."""
    if supplied and _CLIENT_ID_PATTERN.fullmatch(supplied):
        return supplied
    return uuid.uuid4().hex[:8]


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", "")


class RequestIdLogFilter(logging.Filter):
    """Adds `request_id` to each record ("-" outside of a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = choose_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = rid

        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
