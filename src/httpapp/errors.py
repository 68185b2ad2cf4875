"""
=============================================================================
APPLICATION ERRORS
=============================================================================

Two kinds of failure reach the JSON error envelope:

    AppError             raised or reported deliberately by handler code;
                         carries an HTTP status and the stack captured
                         where the error was created.

    any other Exception  unexpected; rendered as 500 without a stack.

The stack is captured EAGERLY in ``AppError.__init__``, so it shows where
the error came from, not where it was finally turned into a response:

    def get_user(ctx):
        ...
        ctx.error(new_error_with_code("no such user", 404))
                  ─────────────────────────────────────────
                  stack starts here, in get_user

Each frame is rendered as ``<module>.<qualname>(<file>:<line>)``:

    users.get_user(/srv/app/users.py:42)
    httpapp.http.router.Router.dispatch(/srv/app/httpapp/http/router.py:210)

=============================================================================
"""

import sys
from typing import List

from .http.status_codes import HTTPStatus


# Maximum number of frames kept in a captured stack
MAX_STACK_FRAMES = 10


class AppError(Exception):
    """
    Error with an HTTP status code and the stack of its origin.

    Handlers either hand it to ``ctx.error()`` or raise it; both end up in
    the same JSON envelope with ``status_code`` as the response status.

    Attributes:
        cause: Human-readable message, also ``str(err)``.
        status_code: HTTP status to respond with (default 500).
        stacktrace: Formatted frames, innermost first.
    """

    def __init__(
        self,
        cause: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        *,
        skip: int = 0,
    ):
        """
        Args:
            cause: Error message.
            status_code: HTTP status code.
            skip: Extra frames to drop from the top of the stack, for
                  factory functions that build errors for their caller.
        """
        super().__init__(cause)
        self.cause = cause
        self.status_code = int(status_code)
        self.stacktrace = get_stacktrace(skip=skip + 1)

    def __str__(self) -> str:
        return self.cause

    def __repr__(self) -> str:
        return f"AppError({self.cause!r}, status_code={self.status_code})"


class ShutdownError(Exception):
    """Graceful shutdown did not finish before its deadline."""


def new_error(cause: str) -> AppError:
    """Create a 500 ``AppError`` whose stack starts at the caller."""
    return AppError(cause, HTTPStatus.INTERNAL_SERVER_ERROR, skip=1)


def new_error_with_code(cause: str, code: int) -> AppError:
    """Create an ``AppError`` with ``code`` whose stack starts at the caller."""
    return AppError(cause, code, skip=1)


def get_stacktrace(skip: int = 0) -> List[str]:
    """
    Capture the current call stack.

    Args:
        skip: Frames to drop above the caller. ``0`` starts the stack at
              the function calling ``get_stacktrace``.

    Returns:
        At most ``MAX_STACK_FRAMES`` entries, innermost first, formatted
        ``<function>(<file>:<line>)``.
    """
    try:
        frame = sys._getframe(skip + 1)
    except ValueError:
        # skip reaches past the outermost frame
        return []

    stacktrace = []
    while frame is not None and len(stacktrace) < MAX_STACK_FRAMES:
        code = frame.f_code
        module = frame.f_globals.get("__name__", "?")
        function = compact_function_name(f"{module}.{code.co_qualname}")
        stacktrace.append(f"{function}({code.co_filename}:{frame.f_lineno})")
        frame = frame.f_back

    return stacktrace


def compact_function_name(name: str) -> str:
    """
    Drop a leading ``<domain>/<owner>/`` prefix from a function name.

    Names qualified by an import path such as
    ``github.com/acme/service/handlers.Get`` become ``service/handlers.Get``.
    The prefix is only dropped when there are more than two ``/``-separated
    parts and the first part contains a dot; anything else is returned as is.
    """
    parts = name.split("/")
    if len(parts) > 2 and "." in parts[0]:
        return "/".join(parts[2:])
    return name
