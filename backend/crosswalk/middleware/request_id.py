"""Request context middleware.

Binds a request id, and the organisation the request acts for, into the
structlog context so every engine and cache log line can be traced back to
one API call.
"""

import re
from typing import Optional
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import structlog

REQUEST_ID_HEADER = "X-Request-ID"
ORGANIZATION_HEADER = "X-Organization-ID"

# Client supplied ids are echoed into logs and headers
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _client_value(request: Request, header: str) -> Optional[str]:
    value = (request.headers.get(header) or "").strip()
    return value if _SAFE_ID.match(value) else None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id and the organisation id to each request.

    A well-formed incoming X-Request-ID is reused, anything else is replaced
    by a fresh UUID. The id is stored on ``request.state`` for the exception
    handlers and echoed back in the response header.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = _client_value(request, REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        context = {"request_id": request_id}
        organization_id = _client_value(request, ORGANIZATION_HEADER)
        if organization_id:
            context["organization_id"] = organization_id

        with structlog.contextvars.bound_contextvars(**context):
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
