"""
=============================================================================
HTTP STATUS CODES
=============================================================================

Status codes used by the scaffold and the reason phrases written on the
status line.

Application errors may carry any integer status (an ``AppError`` with code
599 is legal), so the writer never assumes a code is a member of the enum.
``reason_phrase()`` is the lookup used on the wire and falls back to a
generic phrase for codes this module does not name.

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  2xx   │ 200 OK            - handler wrote a body / JSON value     │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  4xx   │ 400 Bad Request   - request line or headers malformed     │
    │        │ 404 Not Found     - no route matched                      │
    │        │ 405 Method Not Allowed - path known, method is not        │
    │        │ 408 Request Timeout    - client never finished sending    │
    │        │ 413 Payload Too Large  - request over max_request_size    │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  5xx   │ 500 Internal Server Error - AppError default, faults      │
    │        │ 505 HTTP Version Not Supported                            │
    └────────┴───────────────────────────────────────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes with their reason phrases.

    IntEnum members compare equal to plain integers, so
    ``HTTPStatus.NOT_FOUND == 404`` holds and a member can be passed
    anywhere a status code is expected.
    """

    # 2xx SUCCESS
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NO_CONTENT = 204

    # 3xx REDIRECTION
    MOVED_PERMANENTLY = 301
    FOUND = 302
    NOT_MODIFIED = 304

    # 4xx CLIENT ERRORS
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    CONFLICT = 409
    PAYLOAD_TOO_LARGE = 413
    UNPROCESSABLE_ENTITY = 422
    TOO_MANY_REQUESTS = 429

    # 5xx SERVER ERRORS
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line, e.g. ``"Not Found"``."""
        return _STATUS_PHRASES[self]

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_client_error(self) -> bool:
        return 400 <= self < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self < 600

    @property
    def is_error(self) -> bool:
        return self >= 400


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.CREATED: "Created",
    HTTPStatus.ACCEPTED: "Accepted",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.MOVED_PERMANENTLY: "Moved Permanently",
    HTTPStatus.FOUND: "Found",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.UNAUTHORIZED: "Unauthorized",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.CONFLICT: "Conflict",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.UNPROCESSABLE_ENTITY: "Unprocessable Entity",
    HTTPStatus.TOO_MANY_REQUESTS: "Too Many Requests",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.BAD_GATEWAY: "Bad Gateway",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.GATEWAY_TIMEOUT: "Gateway Timeout",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}

# Phrases by class for codes that are not enum members
_CLASS_PHRASES = {
    1: "Informational",
    2: "Success",
    3: "Redirection",
    4: "Client Error",
    5: "Server Error",
}


def reason_phrase(code: int) -> str:
    """
    Get the reason phrase for any integer status code.

    Args:
        code: Status code, enum member or plain int.

    Returns:
        The registered phrase, or a class-level phrase such as
        ``"Client Error"`` for codes this module does not name.
    """
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return _CLASS_PHRASES.get(code // 100, "Unknown")
