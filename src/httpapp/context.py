"""
=============================================================================
REQUEST CONTEXT
=============================================================================

One ``RequestContext`` is created for every inbound request by
``Application.serve_http`` and handed, as an argument, down the call chain:

    serve_http(writer, request)
        ctx = RequestContext(app, writer, request)
        router.dispatch(writer, request, ctx)
            ctx.params.update({"id": "42"})
            handler(ctx)
                ctx.response_with_json({"id": ctx.params["id"]})

The context is never shared between requests and never reused, so its
``params`` dict needs no locking.

=============================================================================
ERROR ENVELOPE
=============================================================================

    {"error": "error", "message": "<str(err)>", "stacktrace": ["..."]}

``stacktrace`` is present only for an ``AppError`` with a non-empty stack,
and only while the configured ``show_stacktrace`` value is the EMPTY
string. Any non-empty value hides traces:

    show_stacktrace=""      → traces shown
    show_stacktrace="off"   → traces hidden
    show_stacktrace="true"  → traces hidden

=============================================================================
"""

import dataclasses
import json
import logging
from typing import TYPE_CHECKING, Any, Dict

from .errors import AppError
from .http.request import HTTPRequest
from .http.response import ResponseWriter
from .http.status_codes import HTTPStatus

if TYPE_CHECKING:
    from .app import Application


logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def encode_json(value: Any) -> bytes:
    """
    Compact, newline-terminated JSON encoding used for every JSON body.

    Raises:
        TypeError: If ``value`` contains something JSON cannot represent.
    """
    return (json.dumps(value, separators=(",", ":"), default=_encode_default) + "\n").encode("utf-8")


def _encode_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class RequestContext:
    """
    Per-request carrier of route parameters and response helpers.

    Attributes are read-only except ``params``, which the router fills in
    and handlers may modify.
    """

    __slots__ = ("_app", "_writer", "_request", "_params")

    def __init__(self, app: "Application", writer: ResponseWriter, request: HTTPRequest):
        self._app = app
        self._writer = writer
        self._request = request
        self._params: Dict[str, str] = {}

    @property
    def app(self) -> "Application":
        return self._app

    @property
    def response_writer(self) -> ResponseWriter:
        return self._writer

    @property
    def request(self) -> HTTPRequest:
        return self._request

    @property
    def params(self) -> Dict[str, str]:
        """The live path-parameter mapping."""
        return self._params

    def error(self, err: BaseException) -> None:
        """
        Render ``err`` as the JSON error envelope.

        ``AppError`` keeps its status code; anything else is a 500 and
        never exposes a stack trace.
        """
        status = HTTPStatus.INTERNAL_SERVER_ERROR
        stacktrace = None

        if isinstance(err, AppError):
            status = err.status_code
            if self._app.config.show_stacktrace == "":
                stacktrace = err.stacktrace

        logger.debug("responding with %d: %s", status, err)

        envelope: Dict[str, Any] = {"error": "error", "message": str(err)}
        if stacktrace:
            envelope["stacktrace"] = stacktrace

        self._writer.set_header("Content-Type", JSON_CONTENT_TYPE)
        self._writer.write_header(status)
        self._writer.write(encode_json(envelope))

    def response_with_json(self, value: Any) -> None:
        """
        Write ``value`` as a JSON body with the implicit 200 status.

        The value is encoded before anything is written, so an
        unserialisable value leaves the writer untouched.
        """
        body = encode_json(value)
        self._writer.set_header("Content-Type", JSON_CONTENT_TYPE)
        self._writer.write(body)

    def __repr__(self) -> str:
        return f"<RequestContext {self._request.method} {self._request.target} params={self._params!r}>"
