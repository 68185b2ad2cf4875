"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes of one HTTP/1.x request into an ``HTTPRequest``.

    GET /users/42?expand=1 HTTP/1.1\r\n       ← request line
    Host: localhost:8080\r\n                  ← headers
    Content-Length: 0\r\n
    \r\n                                      ← header/body separator
                                              ← body (Content-Length bytes)

The connection layer has already framed the request (it read up to the
blank line and then Content-Length bytes), so the parser works on one
complete message at a time.

=============================================================================
WHAT THE APPLICATION SEES
=============================================================================

    method   "GET"
    path     "/users/42"            percent-decoded, no query string
    target   "/users/42?expand=1"   the request URI exactly as sent
    headers  {"host": "localhost:8080", "content-length": "0"}

``path`` is what the router matches against; ``target`` is what the
application logs as the request URL.

=============================================================================
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, unquote, urlparse

from .status_codes import HTTPStatus


class HTTPParseError(Exception):
    """
    Raised when a request cannot be parsed.

    Carries the status code the connection layer answers with:

        400 Bad Request                - malformed syntax
        413 Payload Too Large          - over the configured size limit
        505 HTTP Version Not Supported - anything but HTTP/1.0 and 1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Header names are stored lowercase; HTTP header names are
    case-insensitive, so normalising once at parse time keeps lookups
    simple everywhere else.

    Attributes:
        method:         HTTP method, uppercase.
        path:           Percent-decoded path without the query string.
        target:         The request URI as received (path and query).
        version:        "HTTP/1.1" or "HTTP/1.0".
        headers:        Lowercase header name → value.
        query_params:   Query string as name → list of values.
        body:           Raw body bytes.
        client_address: (ip, port) of the peer; ("", 0) for unix sockets.
    """

    method: str
    path: str
    target: str = ""
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""

    client_address: tuple[str, int] = ("", 0)

    _body_json: Optional[Any] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.target:
            self.target = self.path

    @property
    def url(self) -> str:
        """The request URI as the client sent it."""
        return self.target

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters (``; charset=...`` is dropped)."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_json(self) -> bool:
        return self.content_type == "application/json"

    @property
    def json(self) -> Any:
        """
        Parse the body as JSON, once.

        Raises:
            AppError: 400 if the body is not valid UTF-8 JSON.
        """
        # deferred: httpapp.errors imports httpapp.http.status_codes
        from ..errors import new_error_with_code

        if self._body_json is None and self.body:
            try:
                self._body_json = json.loads(self.body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise new_error_with_code(
                    f"invalid JSON body: {e}", HTTPStatus.BAD_REQUEST
                ) from e
        return self._body_json

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client expects the connection to stay open.

        HTTP/1.1 keeps alive unless ``Connection: close`` is sent;
        HTTP/1.0 closes unless ``Connection: keep-alive`` is sent.
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def get_query_list(self, name: str) -> list[str]:
        """All values of a query parameter."""
        return self.query_params.get(name, [])


class RequestParser:
    """
    Parses raw HTTP request bytes into ``HTTPRequest`` objects.

    REQUEST_LINE_PATTERN: ^([A-Z]+) ([^ ]+) (HTTP/\\d\\.\\d)$
        METHOD SP REQUEST-URI SP HTTP-VERSION

    Any uppercase method token is accepted; whether the application
    serves it is up to the router (404 or 405).

    HEADER_PATTERN: ^([^:]+):\\s*(.*)$
        field-name ":" OWS field-value

    The parser is stateless apart from its size limit, so one instance is
    shared by every connection of a server.
    """

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse one complete request.

        Args:
            data: Request bytes, headers and body.
            client_address: Peer address, kept for logging.

        Returns:
            The parsed request.

        Raises:
            HTTPParseError: If the request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413,
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, path, target, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError(
                f"Invalid Content-Length: {headers['content-length']!r}"
            )
        if content_length < 0:
            raise HTTPParseError(f"Invalid Content-Length: {content_length}")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            target=target,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(
        self,
        line: str
    ) -> tuple[str, str, str, Dict[str, list[str]], str]:
        """
        Split ``METHOD SP REQUEST-URI SP HTTP-VERSION``.

        Returns:
            Tuple of (method, path, target, query_params, version).
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        parsed = urlparse(target)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        return method, path, target, query_params, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a lowercase-keyed dict.

        Repeated headers are joined with ", " (RFC 7230 section 3.2.2) and
        obsolete line folding (a line starting with whitespace) continues
        the previous header. Lines without a colon are skipped.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """Parse ``data`` with a one-off ``RequestParser``."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
