"""
=============================================================================
HTTP/1.1 MESSAGE HANDLING
=============================================================================

Bytes in, structured messages out, and back again:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ request.py       b"GET /users/42 HTTP/1.1\r\n..." → HTTPRequest     │
    │ response.py      ResponseWriter → HTTPResponse → b"HTTP/1.1 200..." │
    │ status_codes.py  HTTPStatus.NOT_FOUND → 404 "Not Found"             │
    │ router.py        ("GET", "/users/:id") → handler(ctx)               │
    └─────────────────────────────────────────────────────────────────────┘

The router is not re-exported here: it depends on ``httpapp.errors``,
which itself imports ``status_codes`` from this package. Import it from
``httpapp`` or ``httpapp.http.router``.

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import HTTPResponse, ResponseWriter, canonical_header_name
from .status_codes import HTTPStatus, reason_phrase

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",
    "HTTPResponse",
    "ResponseWriter",
    "canonical_header_name",
    "HTTPStatus",
    "reason_phrase",
]
