"""
Patient Image Backend - Access Log Middleware
===============================================

What:  One access log line per request, naming the image operation and the
       patient it was for.
How:   After the request is routed, the matched route's name is the operation
       (upload_image, list_images, delete_all_images, delete_image,
       serve_file) and the patient id is read from the path parameter or the
       patientId query parameter.

The request body is never read here: uploads carry patientId in the form, so
their log line has no patient id.

Example line:
    DELETE /image/123 → 200 in 4.2ms (delete_all_images, patient=123)
"""

import logging
import time
from typing import Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("patient_images.access")

UNLOGGED_PATHS = frozenset({"/health"})


def describe_request(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """(operation, patient_id) of a routed request; either may be None."""
    route = request.scope.get("route")
    operation = getattr(route, "name", None)
    patient_id = request.path_params.get("patient_id") or request.query_params.get("patientId")
    return operation, patient_id


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        operation, patient_id = describe_request(request)
        logger.log(
            level_for_status(response.status_code),
            "%s %s → %d in %.1fms (%s, patient=%s)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            operation or "unrouted",
            patient_id or "-",
            extra={
                "operation": operation,
                "patient_id": patient_id,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
