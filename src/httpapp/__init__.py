"""
=============================================================================
HTTPAPP - Lifecycle-Managed HTTP Application Scaffold
=============================================================================

A small framework for JSON HTTP services listening on a unix domain socket
or a TCP address, built on raw sockets and the standard library.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHAT AN APPLICATION GETS                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. LIFECYCLE                                                       │
    │      - start / stop / close with "start", "stop", "close" events   │
    │      - run_until_signal(): serve until SIGINT or SIGTERM            │
    │      - graceful shutdown with a deadline                            │
    │                                                                      │
    │   2. ROUTING                                                         │
    │      - method + path patterns (:param, *catch_all)                 │
    │      - per-request context with bound parameters                    │
    │      - optional catch-all handler replacing the router             │
    │                                                                      │
    │   3. ERRORS                                                          │
    │      - AppError carries a status and the stack of its origin       │
    │      - uniform JSON error envelope                                  │
    │      - handler crashes become 500 responses, never dead servers    │
    │                                                                      │
    │   4. BUILT-IN ENDPOINT                                               │
    │      - GET /version → {"version", "BuildTime", "showStacktrace"}   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httpapp/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m httpapp)
    ├── app.py               # Application: lifecycle and request pipeline
    ├── context.py           # RequestContext and the JSON error envelope
    ├── errors.py            # AppError and stack capture
    ├── config.py            # AppConfig dataclass, env_or
    ├── log.py               # Logging setup (text or JSON lines)
    ├── core/
    │   ├── socket_server.py # Listener, accept loop, graceful shutdown
    │   └── connection.py    # Buffered per-connection I/O
    └── http/
        ├── request.py       # Request parsing
        ├── response.py      # ResponseWriter, HTTPResponse
        ├── router.py        # Method + path routing
        └── status_codes.py  # Status codes and reason phrases

=============================================================================
QUICK START
=============================================================================

    from httpapp import Application, AppConfig, new_error_with_code

    app = Application(AppConfig(address="/run/users.sock"))

    @app.get("/users/:id")
    def get_user(ctx):
        if ctx.params["id"] != "42":
            ctx.error(new_error_with_code("no such user", 404))
            return
        ctx.response_with_json({"id": 42, "name": "Alice"})

    app.run_until_signal()

=============================================================================
"""

__version__ = "1.0.0"

from .app import Application, AppState
from .config import AppConfig, env_or
from .context import RequestContext
from .errors import AppError, ShutdownError, get_stacktrace, new_error, new_error_with_code
from .http.router import Router

__all__ = [
    "Application",
    "AppState",
    "AppConfig",
    "env_or",
    "RequestContext",
    "AppError",
    "ShutdownError",
    "new_error",
    "new_error_with_code",
    "get_stacktrace",
    "Router",
    "__version__",
]
