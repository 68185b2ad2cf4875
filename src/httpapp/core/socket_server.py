"""
=============================================================================
SOCKET SERVER
=============================================================================

Listens on a unix domain socket or a TCP address, accepts connections on a
background thread and serves every connection on a thread of its own.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SERVER LIFECYCLE                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   listen()                                                           │
    │     ├──► unlink stale socket file        (unix only)                │
    │     ├──► socket() / setsockopt() / bind() / listen()                │
    │                                                                      │
    │   serve_in_background()                                              │
    │     └──► accept thread                                               │
    │            └──► accept() ──► connection thread                      │
    │                               └──► read → parse → handler → send    │
    │                                    (repeat while keep-alive)         │
    │                                                                      │
    │   shutdown(timeout)                                                  │
    │     ├──► close listener, remove socket file                         │
    │     ├──► close idle connections, poll until none are left           │
    │     └──► deadline passed: force-close, raise ShutdownError          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ADDRESSES
=============================================================================

    "/run/app.sock"     AF_UNIX    path as is
    "127.0.0.1:8080"    AF_INET    ("127.0.0.1", 8080)
    ":8080"             AF_INET    ("0.0.0.0", 8080)
    "[::1]:8080"        AF_INET6   ("::1", 8080)
    "localhost:0"       AF_INET    ephemeral port, see ``address``

=============================================================================
"""

import logging
import os
import socket
import threading
import time
from typing import Callable, Optional, Set, Tuple, Union

from ..config import AppConfig
from ..context import JSON_CONTENT_TYPE, encode_json
from ..errors import ShutdownError
from ..http.request import HTTPParseError, HTTPRequest, RequestParser
from ..http.response import HTTPResponse, ResponseWriter
from ..http.status_codes import HTTPStatus
from .connection import Connection, ConnectionState


logger = logging.getLogger(__name__)

RequestHandler = Callable[[ResponseWriter, HTTPRequest], None]

# Seconds between checks while waiting for connections to drain
_DRAIN_POLL_INTERVAL = 0.05


def socket_kind(address: str) -> str:
    """``"tcp"`` if the address contains ``":"``, else ``"unix"``."""
    return "tcp" if ":" in address else "unix"


def parse_tcp_address(address: str) -> Tuple[int, Tuple[str, int]]:
    """
    Split ``host:port`` into an address family and a bind address.

    Raises:
        ValueError: If the port is not an integer in 0..65535.
    """
    host, _, port_text = address.rpartition(":")

    family = socket.AF_INET
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
        family = socket.AF_INET6
    elif not host:
        host = "0.0.0.0"

    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}")
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in address {address!r}")

    return family, (host, port)


class SocketServer:
    """
    Accepts connections and feeds parsed requests to a handler.

    The handler receives a fresh ``ResponseWriter`` and the request; once
    it returns, the writer's content is sent as the response.
    """

    def __init__(self, config: AppConfig, handler: RequestHandler):
        self.config = config
        self._handler = handler
        self._parser = RequestParser(config.max_request_size)

        self._socket: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._running = False
        self._shutting_down = False

        self._connections: Set[Connection] = set()
        self._connections_lock = threading.Lock()

    @property
    def kind(self) -> str:
        return socket_kind(self.config.address)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Union[str, Tuple]:
        """The bound address: socket path, or ``(host, port, ...)`` for TCP."""
        if self._socket is None:
            return self.config.address
        return self._socket.getsockname()

    @property
    def active_connections(self) -> int:
        with self._connections_lock:
            return len(self._connections)

    # =========================================================================
    # LISTENING
    # =========================================================================

    def listen(self) -> None:
        """
        Create, bind and listen on the configured address.

        Raises:
            OSError: If the address cannot be bound.
            SystemExit: If a stale unix socket file cannot be removed.
        """
        if self.kind == "unix":
            self._unlink_stale_socket()
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            bind_address: Union[str, Tuple[str, int]] = self.config.address
        else:
            family, bind_address = parse_tcp_address(self.config.address)
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        try:
            sock.bind(bind_address)
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            logger.error("failed to bind %s: %s", self.config.address, e)
            raise

        # accept() wakes up every second to notice shutdown
        sock.settimeout(1.0)
        self._socket = sock
        self._shutting_down = False

    def _unlink_stale_socket(self) -> None:
        try:
            os.unlink(self.config.address)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.critical("error when unlinking %s: %s", self.config.address, e)
            raise SystemExit(1)

    def serve_in_background(self) -> threading.Thread:
        """Start the accept loop on a daemon thread."""
        if self._socket is None:
            raise RuntimeError("listen() must be called before serving")

        self._running = True
        self._accept_thread = threading.Thread(
            target=self._accept_loop,
            name="httpapp-accept",
            daemon=True,
        )
        self._accept_thread.start()
        return self._accept_thread

    def _accept_loop(self) -> None:
        listener = self._socket
        while self._running:
            try:
                client_socket, client_address = listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error("accept error: %s", e)
                break

            if self.kind == "unix":
                client_address = ("", 0)
            else:
                client_address = tuple(client_address[:2])

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )
            # shutdown() may have already found the connection set empty
            with self._connections_lock:
                if self._shutting_down:
                    client_socket.close()
                    break
                self._connections.add(conn)

            logger.debug("[%s] accepted connection from %s", conn.id, client_address)
            threading.Thread(
                target=self._serve_connection,
                args=(conn,),
                name=f"httpapp-conn-{conn.id}",
                daemon=True,
            ).start()

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _serve_connection(self, conn: Connection) -> None:
        """Serve requests on ``conn`` until it closes or stops keeping alive."""
        try:
            with conn:
                while True:
                    try:
                        raw_request = conn.read_request()
                        if raw_request is None:
                            break
                        request = self._parser.parse(raw_request, conn.address)
                    except HTTPParseError as e:
                        logger.info("[%s] bad request: %s", conn.id, e)
                        self._send_error(conn, e.status_code, str(e))
                        break
                    except TimeoutError:
                        self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "request timeout")
                        break

                    conn.state = ConnectionState.PROCESSING
                    response = self._handle(request)

                    keep_alive = (
                        self.config.keep_alive
                        and request.is_keep_alive
                        and not self._shutting_down
                    )
                    if keep_alive:
                        response.headers.setdefault("Connection", "keep-alive")
                        response.headers.setdefault(
                            "Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}"
                        )
                    else:
                        response.headers["Connection"] = "close"

                    data = response.to_bytes(
                        self.config.server_name,
                        include_body=request.method != "HEAD",
                    )
                    if not conn.send_response(data) or not keep_alive:
                        break
                    conn.set_keep_alive()
        except OSError as e:
            logger.debug("[%s] connection error: %s", conn.id, e)
        finally:
            with self._connections_lock:
                self._connections.discard(conn)

    def _handle(self, request: HTTPRequest) -> HTTPResponse:
        writer = ResponseWriter()
        try:
            self._handler(writer, request)
        except Exception:
            logger.exception("unhandled error serving %s %s", request.method, request.target)
            writer = ResponseWriter()
            writer.set_header("Content-Type", JSON_CONTENT_TYPE)
            writer.write_header(HTTPStatus.INTERNAL_SERVER_ERROR)
            writer.write(encode_json({"error": "error", "message": "internal server error"}))
        return writer.to_response()

    def _send_error(self, conn: Connection, status: int, message: str) -> None:
        response = HTTPResponse(
            status=status,
            headers={"Content-Type": JSON_CONTENT_TYPE, "Connection": "close"},
            body=encode_json({"error": "error", "message": message}),
        )
        conn.send_response(response.to_bytes(self.config.server_name))

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self, timeout: float) -> None:
        """
        Stop accepting and wait for in-flight requests to finish.

        Idle keep-alive connections are closed right away; busy ones are
        given until ``timeout`` seconds have passed.

        Raises:
            ShutdownError: If connections were still busy at the deadline.
                           They are force-closed before raising.
        """
        logger.info("shutting down, waiting up to %.1fs for in-flight requests", timeout)
        with self._connections_lock:
            self._running = False
            self._shutting_down = True
        self._close_listener()

        deadline = time.monotonic() + timeout
        while True:
            with self._connections_lock:
                remaining = list(self._connections)
            if not remaining:
                break

            for conn in remaining:
                conn.close_if_idle()

            if time.monotonic() >= deadline:
                for conn in remaining:
                    conn.abort()
                raise ShutdownError(
                    f"{len(remaining)} connection(s) still active after {timeout:.1f}s"
                )
            time.sleep(_DRAIN_POLL_INTERVAL)

        if self._accept_thread is not None:
            self._accept_thread.join(timeout=2.0)
            self._accept_thread = None
        logger.info("server stopped")

    def _close_listener(self) -> None:
        if self._socket is None:
            return
        # shutdown() wakes a blocked accept(); close() alone does not on Linux
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._socket.close()
        except OSError:
            pass
        self._socket = None

        if self.kind == "unix":
            try:
                os.unlink(self.config.address)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("could not remove socket file %s: %s", self.config.address, e)
