"""
Unit tests for URL router.
"""

import json

import pytest

from httpapp import AppConfig, Application
from httpapp.context import RequestContext
from httpapp.http import HTTPRequest, ResponseWriter
from httpapp.http.router import Router


def make_request(method: str, path: str) -> HTTPRequest:
    """Helper to create a request for testing."""
    return HTTPRequest(method=method, path=path)


def dummy_handler(ctx: RequestContext) -> None:
    """Dummy handler for testing."""
    ctx.response_with_json({"path": ctx.request.path, "params": ctx.params})


@pytest.fixture
def context_router():
    """A router whose context factory builds real contexts."""
    app = Application(AppConfig())
    return Router(context_factory=lambda w, r: RequestContext(app, w, r))


class TestRegistration:
    """Tests for adding routes."""

    def test_add_route(self):
        router = Router()
        route = router.add_route("get", "/users", dummy_handler)

        assert route.method == "GET"
        assert route.path == "/users"
        assert router.routes() == [route]

    def test_duplicate_route_raises(self):
        router = Router()
        router.add_route("GET", "/users/:id", dummy_handler)

        with pytest.raises(ValueError, match="already registered"):
            router.add_route("GET", "/users/:id/", dummy_handler)

    def test_same_path_other_method_is_fine(self):
        router = Router()
        router.add_route("GET", "/users", dummy_handler)
        router.add_route("POST", "/users", dummy_handler)

        assert len(router.routes()) == 2

    def test_catch_all_must_be_last(self):
        with pytest.raises(ValueError):
            Router().add_route("GET", "/static/*path/more", dummy_handler)

    def test_duplicate_param_name(self):
        with pytest.raises(ValueError):
            Router().add_route("GET", "/a/:id/b/:id", dummy_handler)

    def test_decorator(self):
        router = Router()

        @router.post("/items")
        def create_item(ctx):
            pass

        assert router.match("POST", "/items").route.handler is create_item


class TestMatching:
    """Tests for Router.match."""

    def test_match_static_path(self):
        router = Router()
        router.add_route("GET", "/users", dummy_handler)
        router.add_route("GET", "/posts", dummy_handler)

        assert router.match("GET", "/users").route.path == "/users"
        assert router.match("GET", "/posts").route.path == "/posts"

    def test_match_dynamic_params(self):
        router = Router()
        router.add_route("GET", "/users/:id", dummy_handler)
        router.add_route("GET", "/users/:user_id/posts/:post_id", dummy_handler)

        assert router.match("GET", "/users/123").params == {"id": "123"}
        assert router.match("GET", "/users/456/posts/789").params == {
            "user_id": "456",
            "post_id": "789",
        }

    def test_match_wildcard(self):
        router = Router()
        router.add_route("GET", "/static/*filepath", dummy_handler)

        match = router.match("GET", "/static/css/style.css")
        assert match.params == {"filepath": "css/style.css"}

    def test_root(self):
        router = Router()
        router.add_route("GET", "/", dummy_handler)

        assert router.match("GET", "/") is not None
        assert router.match("GET", "/x") is None

    def test_trailing_slash_ignored(self):
        router = Router()
        router.add_route("GET", "/users", dummy_handler)

        assert router.match("GET", "/users/") is not None

    def test_no_match(self):
        router = Router()
        router.add_route("GET", "/users", dummy_handler)

        assert router.match("GET", "/posts") is None
        assert router.match("POST", "/users") is None

    def test_static_beats_param(self):
        router = Router()
        router.add_route("GET", "/users/:id", dummy_handler)
        router.add_route("GET", "/users/new", dummy_handler)

        assert router.match("GET", "/users/new").route.path == "/users/new"
        assert router.match("GET", "/users/7").route.path == "/users/:id"

    def test_param_beats_wildcard(self):
        router = Router()
        router.add_route("GET", "/users/*rest", dummy_handler)
        router.add_route("GET", "/users/:id", dummy_handler)

        assert router.match("GET", "/users/42").route.path == "/users/:id"
        assert router.match("GET", "/users/42/posts").route.path == "/users/*rest"

    def test_allowed_methods(self):
        router = Router()
        router.add_route("PUT", "/users/:id", dummy_handler)
        router.add_route("GET", "/users/:id", dummy_handler)

        assert router.allowed_methods("/users/1") == ["GET", "PUT"]
        assert router.allowed_methods("/nothing") == []


class TestDispatch:
    """Tests for Router.dispatch."""

    def test_params_merged_into_given_context(self, context_router):
        context_router.add_route("GET", "/users/:id", dummy_handler)
        app = Application(AppConfig())
        writer = ResponseWriter()
        request = make_request("GET", "/users/42")
        ctx = RequestContext(app, writer, request)
        ctx.params["preset"] = "yes"

        context_router.dispatch(writer, request, ctx)

        assert ctx.params == {"preset": "yes", "id": "42"}
        assert json.loads(writer.body)["params"] == {"preset": "yes", "id": "42"}

    def test_creates_context_when_missing(self, context_router):
        context_router.add_route("GET", "/users/:id", dummy_handler)
        writer = ResponseWriter()

        context_router.dispatch(writer, make_request("GET", "/users/7"))

        assert writer.status == 200
        assert json.loads(writer.body)["params"] == {"id": "7"}

    def test_missing_context_without_factory(self):
        router = Router()
        router.add_route("GET", "/", dummy_handler)

        with pytest.raises(RuntimeError):
            router.dispatch(ResponseWriter(), make_request("GET", "/"))

    def test_not_found_default(self, context_router):
        writer = ResponseWriter()
        context_router.dispatch(writer, make_request("GET", "/missing"))

        assert writer.status == 404
        assert json.loads(writer.body)["message"] == "not found"

    def test_not_found_handler(self, context_router):
        calls = []
        context_router.not_found = lambda ctx: calls.append(ctx.request.path)

        context_router.dispatch(ResponseWriter(), make_request("GET", "/missing"))

        assert calls == ["/missing"]

    def test_method_not_allowed(self, context_router):
        context_router.add_route("GET", "/users", dummy_handler)
        context_router.add_route("POST", "/users", dummy_handler)
        writer = ResponseWriter()

        context_router.dispatch(writer, make_request("DELETE", "/users"))

        assert writer.status == 405
        assert writer.get_header("Allow") == "GET, POST"
        assert json.loads(writer.body)["message"] == "method not allowed"

    def test_method_not_allowed_disabled(self, context_router):
        context_router.add_route("GET", "/users", dummy_handler)
        context_router.handle_method_not_allowed = False
        writer = ResponseWriter()

        context_router.dispatch(writer, make_request("DELETE", "/users"))

        assert writer.status == 404
        assert "Allow" not in writer.headers
