"""
=============================================================================
APPLICATION
=============================================================================

The ``Application`` ties configuration, routing and the socket server
together and owns the process lifecycle.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         LIFECYCLE                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   CREATED ──start()──► LISTENING ──stop()──► STOPPING ──► STOPPED   │
    │                                                  │             │     │
    │                                     ShutdownError│             │     │
    │                                                  ▼             ▼     │
    │                                   close() ─────────────────► CLOSED │
    │                                                                      │
    │   start()   binds, serves on a background thread, fires "start"     │
    │   stop()    graceful shutdown (shutdown_timeout), fires "stop"      │
    │   close()   fires "close"                                           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST PIPELINE
=============================================================================

    serve_http(writer, request)
        │
        ├──► ctx = RequestContext(app, writer, request)
        ├──► log "[GET] url=/users/42"
        │
        ├──► GET /version?   → {"version", "BuildTime", "showStacktrace"}
        │
        ├──► catch-all set?  → catch_all(ctx)
        │    otherwise       → router.dispatch(writer, request, ctx)
        │
        └──► handler raised
                AppError     → ctx.error(err)              (its own status)
                Exception    → ctx.error(500 "Panic captured! ...")

No exception escapes ``serve_http``: a failing handler always ends up as a
JSON error envelope and the connection stays usable.

=============================================================================
USAGE
=============================================================================

    app = Application(AppConfig(address=":8080"))

    @app.get("/users/:id")
    def get_user(ctx):
        ctx.response_with_json({"id": ctx.params["id"]})

    app.run_until_signal()

=============================================================================
"""

import logging
import signal
import threading
from enum import Enum
from typing import Callable, Dict, Optional

from .config import AppConfig
from .context import RequestContext
from .core.socket_server import SocketServer
from .errors import AppError, new_error_with_code
from .http.request import HTTPRequest
from .http.response import ResponseWriter
from .http.router import Handler, Router
from .http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)

EventHandler = Callable[["Application"], None]

EVENT_START = "start"
EVENT_STOP = "stop"
EVENT_CLOSE = "close"


class AppState(Enum):
    CREATED = "created"
    LISTENING = "listening"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CLOSED = "closed"


class Application:
    """
    An HTTP application served on a unix socket or TCP address.

    Routes, event handlers and the catch-all handler are registered before
    ``start()``. Registration methods return the application so they chain:

        app.on_start(announce).on_stop(flush).add_route("GET", "/", index)
    """

    def __init__(self, config: Optional[AppConfig] = None):
        """
        Args:
            config: Application configuration; defaults to ``AppConfig()``.

        Raises:
            ValueError: If the configuration is invalid.
        """
        self._config = config or AppConfig()
        self._config.validate()

        self._router = Router(context_factory=self._new_context)
        self._router.not_found = self.not_found

        self._server = SocketServer(self._config, self.serve_http)
        self._catch_all: Optional[Handler] = None

        self._events: Dict[str, EventHandler] = {}
        self._events_lock = threading.Lock()

        self._state = AppState.CREATED
        self._state_lock = threading.Lock()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def router(self) -> Router:
        return self._router

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def address(self):
        """The bound address once listening, else the configured one."""
        return self._server.address

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Bind the configured address and serve in the background.

        Returns once the listener is bound; the ``"start"`` handler runs
        before this method returns.

        Raises:
            RuntimeError: If the application was already started.
            OSError: If the address cannot be bound.
        """
        with self._state_lock:
            if self._state is not AppState.CREATED and self._state is not AppState.STOPPED:
                raise RuntimeError(f"cannot start application in state {self._state.value}")

            self._server.listen()
            self._server.serve_in_background()
            self._state = AppState.LISTENING

        if self._server.kind == "tcp":
            host, port = self._server.address[:2]
            logger.info("listening on http://%s", _format_host_port(host, port))
        else:
            logger.info("listening on %s", self._server.address)

        self._emit(EVENT_START)

    def stop(self) -> None:
        """
        Gracefully shut the server down.

        Waits up to ``config.shutdown_timeout`` seconds for in-flight
        requests, then fires ``"stop"``.

        Raises:
            RuntimeError: If the application is not listening.
            ShutdownError: If requests were still running at the deadline.
                           ``"stop"`` is not fired in that case.
        """
        with self._state_lock:
            if self._state is not AppState.LISTENING:
                raise RuntimeError(f"cannot stop application in state {self._state.value}")
            self._state = AppState.STOPPING

        self._server.shutdown(self._config.shutdown_timeout)

        with self._state_lock:
            self._state = AppState.STOPPED
        self._emit(EVENT_STOP)

    def close(self) -> None:
        """Fire ``"close"``."""
        with self._state_lock:
            self._state = AppState.CLOSED
        self._emit(EVENT_CLOSE)

    def run_until_signal(self) -> "Application":
        """
        Start, block until SIGINT or SIGTERM, then stop.

        ``close()`` runs even when start or stop fail. Must be called from
        the main thread; previous signal handlers are restored on return.
        """
        received = threading.Event()

        def on_signal(signum, frame):
            logger.info("received %s, shutting down", signal.Signals(signum).name)
            received.set()

        original_handlers = {
            sig: signal.signal(sig, on_signal)
            for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            self.start()
            received.wait()
            self.stop()
        finally:
            for sig, handler in original_handlers.items():
                signal.signal(sig, handler)
            self.close()

        return self

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _on(self, name: str, fn: EventHandler) -> "Application":
        with self._events_lock:
            self._events[name] = fn
        return self

    def _emit(self, name: str) -> None:
        with self._events_lock:
            handler = self._events.get(name)
        if handler is not None:
            handler(self)

    def on_start(self, fn: EventHandler) -> "Application":
        return self._on(EVENT_START, fn)

    def on_stop(self, fn: EventHandler) -> "Application":
        return self._on(EVENT_STOP, fn)

    def on_close(self, fn: EventHandler) -> "Application":
        return self._on(EVENT_CLOSE, fn)

    def on_serve_http(self, fn: Handler) -> "Application":
        """Send every request (except GET /version) to ``fn`` instead of the router."""
        self._catch_all = fn
        return self

    # =========================================================================
    # ROUTING
    # =========================================================================

    def add_route(self, method: str, path: str, handler: Handler) -> "Application":
        """
        Register ``handler`` for ``method`` and ``path``.

        Raises:
            ValueError: If the route is malformed or already registered.
        """
        self._router.add_route(method, path, handler)
        return self

    def route(self, method: str, path: str) -> Callable[[Handler], Handler]:
        return self._router.route(method, path)

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self._router.get(path)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self._router.post(path)

    def put(self, path: str) -> Callable[[Handler], Handler]:
        return self._router.put(path)

    def delete(self, path: str) -> Callable[[Handler], Handler]:
        return self._router.delete(path)

    def patch(self, path: str) -> Callable[[Handler], Handler]:
        return self._router.patch(path)

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def serve_http(self, writer: ResponseWriter, request: HTTPRequest) -> None:
        """Handle one request; never raises ``Exception``."""
        ctx = self._new_context(writer, request)

        try:
            logger.info("[%s] url=%s", request.method, request.target)

            if request.method == "GET" and request.path == "/version":
                ctx.response_with_json({
                    "version": self._config.version,
                    "BuildTime": self._config.build_time,
                    "showStacktrace": self._config.stacktrace_visible,
                })
                return

            if self._catch_all is not None:
                self._catch_all(ctx)
            else:
                self._router.dispatch(writer, request, ctx)

        except AppError as err:
            ctx.error(err)

        except Exception as exc:
            logger.exception("Recovered! %s", exc)
            ctx.error(new_error_with_code(f"Panic captured! {exc}", HTTPStatus.INTERNAL_SERVER_ERROR))

    def not_found(self, ctx: RequestContext) -> None:
        """Default handler for unmatched requests."""
        ctx.error(new_error_with_code("not found", HTTPStatus.NOT_FOUND))

    def _new_context(self, writer: ResponseWriter, request: HTTPRequest) -> RequestContext:
        return RequestContext(self, writer, request)

    def __repr__(self) -> str:
        return f"<Application {self._config.address!r} {self._state.value}>"


def _format_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
