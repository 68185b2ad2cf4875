"""
=============================================================================
RESPONSE WRITER
=============================================================================

Handlers do not return responses; they write into a ``ResponseWriter``
handed to them through the request context. When the handler returns, the
connection turns the writer into an ``HTTPResponse`` and sends it.

    handler(ctx)                 ResponseWriter              HTTPResponse
    ───────────                  ──────────────              ────────────
    set_header("Content-Type")   headers {...}
    write_header(400)     ──►    status 400           ──►    to_bytes()
    write(b'{"error":...}')      body  b'{...}'              "HTTP/1.1 400 ..."

=============================================================================
STATUS IS WRITTEN ONCE
=============================================================================

    write_header(404)   → status = 404
    write_header(500)   → ignored, a warning is logged
    write(b"...")       → body appended, status stays 404

    write(b"...")       → no status yet, so status = 200 first

A handler that never writes anything produces an empty 200.

=============================================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from .status_codes import HTTPStatus, reason_phrase


logger = logging.getLogger(__name__)


def canonical_header_name(name: str) -> str:
    """
    Canonical form of a header name: ``content-type`` → ``Content-Type``.
    """
    return "-".join(part.capitalize() for part in name.strip().split("-"))


@dataclass
class HTTPResponse:
    """
    A complete response ready to be serialised onto a socket.
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """e.g. ``"HTTP/1.1 404 Not Found"``."""
        return f"{self.version} {int(self.status)} {reason_phrase(self.status)}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[canonical_header_name(name)] = value
        return self

    def to_bytes(self, server_name: str = "httpapp/1.0", include_body: bool = True) -> bytes:
        """
        Serialise status line, headers and body.

        ``Content-Length``, ``Date`` and ``Server`` are added when the
        response does not already carry them.

        Args:
            server_name: Value for the Server header.
            include_body: False for HEAD requests; Content-Length still
                          describes the body that would have been sent.
        """
        response_headers = dict(self.headers)

        if "Content-Length" not in response_headers:
            response_headers["Content-Length"] = str(len(self.body))

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        return header_bytes + self.body if include_body else header_bytes


class ResponseWriter:
    """
    Buffered response sink passed to handlers.

    Not thread-safe: a writer belongs to exactly one request and is used
    by the single thread serving that request.
    """

    def __init__(self):
        self._headers: Dict[str, str] = {}
        self._status: Optional[int] = None
        self._body = bytearray()

    @property
    def headers(self) -> Dict[str, str]:
        """The live header mapping, keyed by canonical header name."""
        return self._headers

    @property
    def status(self) -> Optional[int]:
        """The written status, or None if nothing was written yet."""
        return self._status

    @property
    def written(self) -> bool:
        return self._status is not None

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    def set_header(self, name: str, value: str) -> None:
        self._headers[canonical_header_name(name)] = value

    def get_header(self, name: str, default: str = "") -> str:
        return self._headers.get(canonical_header_name(name), default)

    def write_header(self, status: int) -> None:
        """Set the status code; only the first call has an effect."""
        if self._status is not None:
            logger.warning(
                "superfluous write_header call: status %d already written, ignoring %d",
                self._status, int(status),
            )
            return
        self._status = int(status)

    def write(self, data: Union[str, bytes]) -> int:
        """
        Append to the body, writing an implicit 200 status first if needed.

        Returns:
            Number of bytes appended.
        """
        if self._status is None:
            self.write_header(HTTPStatus.OK)
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._body.extend(data)
        return len(data)

    def to_response(self) -> HTTPResponse:
        """Freeze the writer into an ``HTTPResponse``."""
        return HTTPResponse(
            status=self._status if self._status is not None else HTTPStatus.OK,
            headers=dict(self._headers),
            body=bytes(self._body),
        )


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), always in GMT.

    Example: ``Wed, 01 Jan 2026 12:00:00 GMT``
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )
