"""
=============================================================================
URL ROUTER
=============================================================================

Maps (method, path) to a handler and binds path parameters into the
request context.

    Pattern segments:
        users       static, exact match
        :id         named parameter, one segment
        *filepath   catch-all, the rest of the path (last segment only)

=============================================================================
DISPATCH
=============================================================================

    dispatch(writer, request, ctx)
        │
        ├── ctx is None?  → ctx = context_factory(writer, request)
        │
        ├── match("GET", "/users/42")
        │       GET /users/:id     ✓  params {"id": "42"}
        │
        ├── ctx.params.update(params)     merged into the SAME context
        │
        └── handler(ctx)

    No route:           path known under other methods → 405 + Allow
                        otherwise                      → not_found(ctx)

=============================================================================
PRIORITY
=============================================================================

When several patterns match, the most specific one wins. Patterns are
compared segment by segment; at the first segment where they differ a
static segment beats a parameter, which beats a catch-all:

    /users/new      beats   /users/:id        for /users/new
    /users/:id      beats   /users/*rest      for /users/42

Registration order only breaks ties between patterns of the same shape.

=============================================================================
"""

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from ..errors import new_error_with_code
from .request import HTTPRequest
from .response import ResponseWriter
from .status_codes import HTTPStatus

if TYPE_CHECKING:
    from ..context import RequestContext


logger = logging.getLogger(__name__)

Handler = Callable[["RequestContext"], None]
ContextFactory = Callable[[ResponseWriter, HTTPRequest], "RequestContext"]

# Segment ranks used for priority; lower is more specific
_STATIC, _PARAM, _WILDCARD = 0, 1, 2


@dataclass
class Route:
    """
    A registered route.

    Attributes:
        method: Uppercase HTTP method.
        path: The pattern as registered, e.g. ``/users/:id``.
        handler: Called with the request context.
    """

    method: str
    path: str
    handler: Handler

    _pattern: Optional[re.Pattern] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)
    _specificity: tuple = field(default=(), repr=False)

    @property
    def param_names(self) -> List[str]:
        return list(self._param_names)


@dataclass
class RouteMatch:
    """A matched route and the parameters bound from the path."""

    route: Route
    params: Dict[str, str]


class Router:
    """
    Method + path router dispatching to context handlers.

    Attributes:
        not_found: Called with the context when nothing matches. When
                   unset the router reports a 404 ``AppError`` itself.
        handle_method_not_allowed: Answer 405 when the path is registered
                   under other methods (default True). When False such
                   requests go to ``not_found``.
    """

    def __init__(self, context_factory: Optional[ContextFactory] = None):
        """
        Args:
            context_factory: Builds a context for dispatches that arrive
                             without one.
        """
        self._routes: List[Route] = []
        self._context_factory = context_factory
        self.not_found: Optional[Handler] = None
        self.handle_method_not_allowed = True

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def add_route(self, method: str, path: str, handler: Handler) -> Route:
        """
        Register ``handler`` for ``method`` and ``path``.

        Raises:
            ValueError: If the pattern is malformed or the same method and
                        pattern are already registered.
        """
        method = method.upper()
        path = _normalize(path)

        for route in self._routes:
            if route.method == method and route.path == path:
                raise ValueError(f"a handler is already registered for {method} {path}")

        pattern, param_names, specificity = self._compile_pattern(path)
        route = Route(
            method=method,
            path=path,
            handler=handler,
            _pattern=pattern,
            _param_names=param_names,
            _specificity=specificity,
        )
        self._routes.append(route)
        logger.debug("registered route %s %s", method, path)
        return route

    def _compile_pattern(self, path: str) -> tuple[re.Pattern, List[str], tuple]:
        """
        Compile a pattern to an anchored regex.

            "/users/:id/posts/:post_id"
                → ^/users/(?P<id>[^/]+)/posts/(?P<post_id>[^/]+)$

        Returns:
            Tuple of (regex, parameter names, specificity key).
        """
        param_names: List[str] = []
        ranks: List[int] = []
        regex_parts = ["^"]

        segments = [s for s in path.split("/") if s]
        for i, segment in enumerate(segments):
            regex_parts.append("/")

            if segment.startswith(":"):
                name = segment[1:]
                self._check_param_name(name, param_names, path)
                param_names.append(name)
                ranks.append(_PARAM)
                regex_parts.append(f"(?P<{name}>[^/]+)")

            elif segment.startswith("*"):
                if i != len(segments) - 1:
                    raise ValueError(f"catch-all segment must be last in {path!r}")
                name = segment[1:]
                self._check_param_name(name, param_names, path)
                param_names.append(name)
                ranks.append(_WILDCARD)
                regex_parts.append(f"(?P<{name}>.*)")

            else:
                ranks.append(_STATIC)
                regex_parts.append(re.escape(segment))

        if not segments:
            regex_parts.append("/")

        regex_parts.append("$")
        return re.compile("".join(regex_parts)), param_names, tuple(ranks)

    @staticmethod
    def _check_param_name(name: str, seen: List[str], path: str) -> None:
        if not name.isidentifier():
            raise ValueError(f"invalid parameter name {name!r} in {path!r}")
        if name in seen:
            raise ValueError(f"duplicate parameter name {name!r} in {path!r}")

    # =========================================================================
    # MATCHING
    # =========================================================================

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """
        Find the most specific route for ``method`` and ``path``.

        Returns:
            RouteMatch if found, None otherwise.
        """
        method = method.upper()
        path = _normalize(path)

        best: Optional[RouteMatch] = None
        for route in self._routes:
            if route.method != method:
                continue
            found = route._pattern.match(path)
            if not found:
                continue
            if best is None or route._specificity < best.route._specificity:
                best = RouteMatch(route=route, params=found.groupdict())

        return best

    def allowed_methods(self, path: str) -> List[str]:
        """Methods registered for patterns matching ``path``, sorted."""
        path = _normalize(path)
        return sorted({
            route.method for route in self._routes
            if route._pattern.match(path)
        })

    def routes(self) -> List[Route]:
        return list(self._routes)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(
        self,
        writer: ResponseWriter,
        request: HTTPRequest,
        ctx: Optional["RequestContext"] = None,
    ) -> None:
        """
        Route ``request`` and run the handler with ``ctx``.

        Args:
            writer: Response sink of the request.
            request: The parsed request.
            ctx: Context created earlier in the pipeline. Bound path
                 parameters are merged into its ``params``; when None a
                 context is created with the context factory.
        """
        if ctx is None:
            ctx = self._new_context(writer, request)

        found = self.match(request.method, request.path)
        if found:
            ctx.params.update(found.params)
            found.route.handler(ctx)
            return

        if self.handle_method_not_allowed:
            allowed = self.allowed_methods(request.path)
            if allowed:
                writer.set_header("Allow", ", ".join(allowed))
                ctx.error(new_error_with_code("method not allowed", HTTPStatus.METHOD_NOT_ALLOWED))
                return

        if self.not_found is not None:
            self.not_found(ctx)
        else:
            ctx.error(new_error_with_code("not found", HTTPStatus.NOT_FOUND))

    def _new_context(self, writer: ResponseWriter, request: HTTPRequest) -> "RequestContext":
        if self._context_factory is None:
            raise RuntimeError("router has no context factory and no context was passed")
        return self._context_factory(writer, request)

    # =========================================================================
    # DECORATOR-STYLE REGISTRATION
    # =========================================================================

    def route(self, method: str, path: str) -> Callable[[Handler], Handler]:
        """
        Decorator form of ``add_route``; returns the handler unchanged.

            @router.route("GET", "/users/:id")
            def get_user(ctx):
                ctx.response_with_json({"id": ctx.params["id"]})
        """
        def decorator(handler: Handler) -> Handler:
            self.add_route(method, path, handler)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("GET", path)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("POST", path)

    def put(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("PUT", path)

    def delete(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("DELETE", path)

    def patch(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("PATCH", path)


def _normalize(path: str) -> str:
    """Leading slash, no trailing slash; ``/`` stays ``/``."""
    return "/" + path.strip("/") if path.strip("/") else "/"
