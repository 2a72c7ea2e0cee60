"""Request-scoped middleware for API requests."""

import re
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

REQUEST_ID_HEADER = "X-Request-ID"

# Ids forwarded by the load balancer are kept when they look like one
_FORWARDED_ID = re.compile(r"^[A-Za-z0-9-]{8,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id, reusing a well-formed upstream one."""

    async def dispatch(self, request: Request, call_next):
        forwarded = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = forwarded if _FORWARDED_ID.match(forwarded) else str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
