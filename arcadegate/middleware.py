"""Request id middleware for ArcadeGate.

Every request gets a request id: the incoming ``X-Request-ID`` header when
present and sane, otherwise a fresh ULID. The id is bound to the structlog
context for the duration of the request and echoed back in the response's
``X-Request-ID`` header.
"""

from __future__ import annotations

import re

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from arcadegate.utils.logger import clear_request_id, set_request_id
from arcadegate.utils.ulid import generate_ulid

REQUEST_ID_HEADER = "X-Request-ID"

# Accept client-supplied ids only if short and printable.
_VALID_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to log context and echo it in the response."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = incoming if _VALID_REQUEST_ID_RE.match(incoming) else generate_ulid()

        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id()

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
