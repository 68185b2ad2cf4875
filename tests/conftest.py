"""
pytest configuration and fixtures.
"""

import http.client
import json
import socket
import tempfile
from pathlib import Path
from typing import Generator, Optional

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpapp import Application, AppConfig, ShutdownError
from httpapp.http import HTTPRequest, ResponseWriter


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def config() -> AppConfig:
    """Test configuration on an OS-assigned TCP port."""
    return AppConfig(
        address="127.0.0.1:0",
        version="1.2.3",
        build_time="2026-01-01T00:00:00Z",
        timeout=5.0,
        keep_alive_timeout=1.0,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def app(config: AppConfig) -> Application:
    return Application(config)


@pytest.fixture
def socket_path() -> Generator[str, None, None]:
    """A unix socket path in a fresh temporary directory."""
    with tempfile.TemporaryDirectory() as tmp:
        yield str(Path(tmp) / "app.sock")


def make_request(method: str = "GET", target: str = "/", **kwargs) -> HTTPRequest:
    """Build a request without going through the parser."""
    path = target.split("?", 1)[0]
    return HTTPRequest(method=method, path=path, target=target, **kwargs)


def serve(app: Application, method: str = "GET", target: str = "/") -> ResponseWriter:
    """Run one request through ``app.serve_http`` and return the writer."""
    writer = ResponseWriter()
    app.serve_http(writer, make_request(method, target))
    return writer


def body_json(writer: ResponseWriter):
    return json.loads(writer.body.decode("utf-8"))


class AppClient:
    """Minimal HTTP client against a started application."""

    def __init__(self, app: Application):
        self.app = app

    @property
    def port(self) -> int:
        return self.app.address[1]

    def request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ):
        """
        Returns:
            Tuple of (status, headers, parsed JSON body or raw bytes).
        """
        conn = http.client.HTTPConnection("127.0.0.1", self.port, timeout=5)
        try:
            conn.request(method, path, body=body, headers=headers or {})
            response = conn.getresponse()
            data = response.read()
            response_headers = {k.lower(): v for k, v in response.getheaders()}
        finally:
            conn.close()

        if response_headers.get("content-type") == "application/json" and data:
            return response.status, response_headers, json.loads(data)
        return response.status, response_headers, data

    def get(self, path: str):
        return self.request("GET", path)


def raw_request(address, data: bytes, family=socket.AF_INET) -> bytes:
    """Send raw bytes and read until the server closes the connection."""
    with socket.socket(family, socket.SOCK_STREAM) as s:
        s.settimeout(5)
        s.connect(address)
        s.sendall(data)
        chunks = []
        while True:
            chunk = s.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


@pytest.fixture
def started_app(app: Application) -> Generator[Application, None, None]:
    """An application listening on 127.0.0.1 with an ephemeral port."""
    app.start()
    yield app
    if app.state.value == "listening":
        try:
            app.stop()
        except ShutdownError:
            pass


@pytest.fixture
def client(started_app: Application) -> AppClient:
    return AppClient(started_app)


@pytest.fixture
def serve_request():
    """``serve_request(app, method, target)`` → ResponseWriter."""
    return serve


@pytest.fixture
def read_json():
    return body_json


@pytest.fixture
def send_raw():
    return raw_request
