"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket (TCP or unix) with buffered request
reading, response writing and a lifecycle that graceful shutdown can
inspect from another thread.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

recv() returns whatever has arrived, not one request:

    recv() → b"GET /users/4"
    recv() → b"2 HTTP/1.1\r\nHost: x\r\n\r\nGET /ver"   ← next request starts

So bytes are buffered until the header terminator ``\r\n\r\n`` shows up,
then exactly ``Content-Length`` body bytes are taken. Anything after that
stays in the buffer for the next ``read_request()``.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► PROCESSING ──────► WRITING ────────┐
     │                                                 │            ▼
     │                                                 │       KEEP_ALIVE
     │                                                 │            │
     ▼                                                 ▼            │
    CLOSING ◄──────────────────────────────────────────┴────────────┘
     │
     ▼
    CLOSED

NEW and KEEP_ALIVE are the IDLE states: no request bytes have been read
yet. Shutdown may close an idle connection at any moment; a connection in
any other state is left to finish its request.

A connection only moves to READING once the first bytes of a request
arrive, so a client that connects and sends nothing stays idle.

=============================================================================
"""

import logging
import socket
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..http.request import HTTPParseError


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"                # Accepted, nothing read yet
    READING = "reading"        # Request bytes are arriving
    PROCESSING = "processing"  # Request parsed, handler running
    WRITING = "writing"        # Sending the response
    KEEP_ALIVE = "keep_alive"  # Response sent, waiting for the next request
    CLOSING = "closing"
    CLOSED = "closed"


_IDLE_STATES = (ConnectionState.NEW, ConnectionState.KEEP_ALIVE)


@dataclass(eq=False)
class Connection:
    """
    A client connection.

    Attributes:
        socket: The accepted client socket.
        address: Peer ``(host, port)``; ``("", 0)`` for unix sockets.
        id: Short identifier used in log lines.
        requests_handled: Requests read so far on this connection.
    """

    socket: socket.socket
    address: tuple = ("", 0)

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    created_at: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _state: ConnectionState = field(default=ConnectionState.NEW, repr=False)
    _buffer: bytes = field(default=b"", repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @state.setter
    def state(self, value: ConnectionState) -> None:
        with self._lock:
            # Once closing has begun only close() moves the state on
            if self._state not in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                self._state = value

    @property
    def is_idle(self) -> bool:
        return self._state in _IDLE_STATES

    @property
    def age(self) -> float:
        return time.time() - self.created_at

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request, headers and body.

        Returns:
            The raw request bytes, or None when the peer closed the
            connection or an idle keep-alive connection timed out.

        Raises:
            TimeoutError: If the first request does not arrive in time.
            HTTPParseError: If the request exceeds ``max_request_size``
                            or carries an unusable Content-Length.
        """
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            if self._buffer:
                self.state = ConnectionState.READING

            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self.state = ConnectionState.READING
                self._append(chunk)

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    return None
                self._append(chunk)

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            return request_data

        except socket.timeout:
            if self.requests_handled > 0 and self.is_idle:
                logger.debug("[%s] keep-alive timeout", self.id)
                return None
            raise TimeoutError("request read timeout")

        finally:
            if self.timeout and self._state is not ConnectionState.CLOSED:
                try:
                    self.socket.settimeout(self.timeout)
                except OSError:
                    pass

    def _append(self, chunk: bytes) -> None:
        self._buffer += chunk
        if len(self._buffer) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(self._buffer)} bytes", status_code=413)

    def _recv(self) -> bytes:
        """recv() that reports a reset or locally closed socket as EOF."""
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""
        except OSError:
            if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                return b""
            raise

    @staticmethod
    def _parse_content_length(headers: bytes) -> int:
        """
        Content-Length from raw header bytes, before the full parse.

        Raises:
            HTTPParseError: If the value is not a non-negative integer.
        """
        for line in headers.decode("latin-1").split("\r\n")[1:]:
            name, _, value = line.partition(":")
            if name.strip().lower() == "content-length":
                try:
                    length = int(value.strip())
                except ValueError:
                    raise HTTPParseError(f"Invalid Content-Length: {value.strip()!r}")
                if length < 0:
                    raise HTTPParseError(f"Invalid Content-Length: {length}")
                return length
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send ``data`` in full.

        Returns:
            True on success, False if the peer went away.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.warning("[%s] send failed: %s", self.id, e)
            return False

    def set_keep_alive(self) -> None:
        """Mark the connection idle, waiting for its next request."""
        self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close_if_idle(self) -> bool:
        """
        Close the connection if no request is in progress.

        Safe to call from another thread: shutdown(SHUT_RDWR) wakes a
        recv() blocked in the serving thread, which then sees EOF.

        Returns:
            True if the connection was idle and is now closing.
        """
        with self._lock:
            if self._state not in _IDLE_STATES:
                return False
            self._state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        return True

    def abort(self) -> None:
        """Close the socket from another thread regardless of state."""
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                return
            self._state = ConnectionState.CLOSING
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def close(self) -> None:
        """
        Close the connection: FIN, drain briefly, release the descriptor.

        Idempotent.
        """
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                return
            self._state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.1)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        with self._lock:
            self._state = ConnectionState.CLOSED
        logger.debug("[%s] connection closed after %d requests", self.id, self.requests_handled)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
