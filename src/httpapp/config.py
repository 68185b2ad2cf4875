"""
=============================================================================
APPLICATION CONFIGURATION
=============================================================================

Everything the application reads at runtime lives in one frozen
dataclass, built once before ``Application.start()`` and never mutated.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION SOURCES                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Command-line flags      python -m httpapp --address :9000      │
    │   2. Environment variables   APP_ADDRESS=:9000 python -m httpapp    │
    │   3. Defaults                (this dataclass)                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ADDRESS
=============================================================================

The address selects the socket kind:

    "127.0.0.1:8080"    contains ":"   → TCP socket
    ":8080"             contains ":"   → TCP socket, all interfaces
    "[::1]:8080"        contains ":"   → TCP socket, IPv6
    "/run/app.sock"     no ":"         → unix domain socket

=============================================================================
SHOW_STACKTRACE
=============================================================================

``show_stacktrace`` is a raw control string, and an EMPTY value is what
turns stack traces ON in error responses. Setting it to anything at all
(``"0"``, ``"off"``, ``"hide"``) hides them. ``/version`` reports the
effective setting as ``showStacktrace``.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_FORMATS = ("text", "json")


def env_or(name: str, default: str) -> str:
    """
    Read an environment variable, falling back to ``default``.

    An empty value counts as unset.
    """
    value = os.getenv(name, "")
    return value if value != "" else default


@dataclass(frozen=True)
class AppConfig:
    """
    Configuration for an ``Application``.

    APPLICATION
    - address, version, build_time, show_stacktrace

    SERVER
    - backlog, buffer_size, timeout, keep_alive, keep_alive_timeout,
      max_request_size, shutdown_timeout, server_name

    LOGGING
    - log_level, log_format
    """

    address: str = "127.0.0.1:8080"
    """Unix socket path or host:port."""

    version: str = "dev"
    """Reported by GET /version."""

    build_time: str = ""
    """Reported by GET /version as BuildTime."""

    show_stacktrace: str = ""
    """Empty shows stack traces in error responses; any value hides them."""

    backlog: int = 128
    """Listen queue length."""

    buffer_size: int = 8192
    """Bytes read per recv() call."""

    timeout: Optional[float] = 30.0
    """Seconds to wait for the first request on a connection."""

    keep_alive: bool = True
    """Serve several requests per connection."""

    keep_alive_timeout: float = 5.0
    """Seconds an idle keep-alive connection waits for its next request."""

    max_request_size: int = 10 * 1024 * 1024
    """Largest accepted request, headers plus body."""

    shutdown_timeout: float = 5.0
    """Seconds stop() waits for in-flight requests."""

    log_level: str = "INFO"
    log_format: str = "text"

    server_name: str = "httpapp/1.0"
    """Value of the Server response header."""

    @property
    def socket_kind(self) -> str:
        """``"tcp"`` when the address has a port separator, else ``"unix"``."""
        return "tcp" if ":" in self.address else "unix"

    @property
    def stacktrace_visible(self) -> bool:
        return self.show_stacktrace == ""

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        Build a configuration from environment variables.

        APP_ADDRESS           Socket path or host:port (default: 127.0.0.1:8080)
        APP_VERSION           Version string (default: dev)
        APP_BUILD_TIME        Build timestamp (default: empty)
        APP_SHOW_STACKTRACE   Non-empty hides stack traces (default: empty)
        APP_TIMEOUT           First-request timeout in seconds (default: 30)
        APP_SHUTDOWN_TIMEOUT  Graceful shutdown limit in seconds (default: 5)
        APP_LOG_LEVEL         Logging level (default: INFO)
        APP_LOG_FORMAT        text or json (default: text)

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        return cls(
            address=env_or("APP_ADDRESS", "127.0.0.1:8080"),
            version=env_or("APP_VERSION", "dev"),
            build_time=env_or("APP_BUILD_TIME", ""),
            show_stacktrace=env_or("APP_SHOW_STACKTRACE", ""),
            timeout=float(env_or("APP_TIMEOUT", "30")),
            shutdown_timeout=float(env_or("APP_SHUTDOWN_TIMEOUT", "5")),
            log_level=env_or("APP_LOG_LEVEL", "INFO"),
            log_format=env_or("APP_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Reject unusable values at construction time rather than at the
        first request.

        Raises:
            ValueError: Describing the first invalid field.
        """
        if not self.address:
            raise ValueError("address must not be empty")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.shutdown_timeout <= 0:
            raise ValueError("shutdown_timeout must be > 0")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid log_format: {self.log_format!r}. Must be one of {', '.join(LOG_FORMATS)}."
            )
