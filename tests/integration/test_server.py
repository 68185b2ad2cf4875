"""
Integration tests: a real listener, real sockets, real threads.
"""

import http.client
import json
import os
import signal
import socket
import threading
import time

import pytest

from httpapp import AppConfig, Application, AppState, ShutdownError, new_error_with_code


class TestRequests:
    """End-to-end requests over TCP."""

    def test_route_with_params(self, started_app, client):
        @started_app.get("/users/:id")
        def get_user(ctx):
            ctx.response_with_json({"id": int(ctx.params["id"]), "name": "Alice"})

        status, headers, body = client.get("/users/42")

        assert status == 200
        assert headers["content-type"] == "application/json"
        assert body == {"id": 42, "name": "Alice"}

    def test_version(self, client):
        status, _, body = client.get("/version")

        assert status == 200
        assert body == {
            "version": "1.2.3",
            "BuildTime": "2026-01-01T00:00:00Z",
            "showStacktrace": True,
        }

    def test_not_found(self, client):
        status, _, body = client.get("/nope")

        assert status == 404
        assert body["message"] == "not found"

    def test_method_not_allowed(self, started_app, client):
        started_app.add_route("GET", "/items", lambda ctx: ctx.response_with_json([]))

        status, headers, body = client.request("DELETE", "/items")

        assert status == 405
        assert headers["allow"] == "GET"
        assert body["message"] == "method not allowed"

    def test_post_json_body(self, started_app, client):
        @started_app.post("/echo")
        def echo(ctx):
            ctx.response_with_json({"received": ctx.request.json})

        status, _, body = client.request(
            "POST", "/echo",
            body=b'{"name": "Bob"}',
            headers={"Content-Type": "application/json"},
        )

        assert status == 200
        assert body == {"received": {"name": "Bob"}}

    def test_malformed_json_body(self, started_app, client):
        @started_app.post("/echo")
        def echo(ctx):
            ctx.response_with_json({"received": ctx.request.json})

        status, _, body = client.request(
            "POST", "/echo",
            body=b"{bad}",
            headers={"Content-Type": "application/json"},
        )

        assert status == 400
        assert body["message"].startswith("invalid JSON body")

    def test_extension_method(self, started_app, send_raw):
        @started_app.route("PROPFIND", "/dav/:name")
        def propfind(ctx):
            ctx.response_with_json({"n": ctx.params["name"]})

        raw = send_raw(
            ("127.0.0.1", started_app.address[1]),
            b"PROPFIND /dav/x HTTP/1.1\r\nConnection: close\r\n\r\n",
        )

        head, _, body = raw.partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.1 200 ")
        assert json.loads(body) == {"n": "x"}

    def test_unregistered_extension_method(self, started_app, send_raw):
        raw = send_raw(
            ("127.0.0.1", started_app.address[1]),
            b"BREW /pot HTTP/1.1\r\nConnection: close\r\n\r\n",
        )

        assert raw.startswith(b"HTTP/1.1 404 ")

    def test_panic_then_next_request_succeeds(self, started_app, client):
        @started_app.get("/boom")
        def boom(ctx):
            raise RuntimeError("kaboom")

        status, _, body = client.get("/boom")
        assert status == 500
        assert body["message"] == "Panic captured! kaboom"

        status, _, body = client.get("/version")
        assert status == 200

    def test_raised_app_error(self, started_app, client):
        @started_app.get("/forbidden")
        def forbidden(ctx):
            raise new_error_with_code("go away", 403)

        status, _, body = client.get("/forbidden")

        assert status == 403
        assert body["message"] == "go away"

    def test_head_has_no_body(self, started_app, client):
        started_app.add_route("HEAD", "/ping", lambda ctx: ctx.response_with_json({"pong": True}))

        status, headers, body = client.request("HEAD", "/ping")

        assert status == 200
        assert int(headers["content-length"]) > 0
        assert body == b""

    def test_keep_alive_serves_several_requests(self, client):
        conn = http.client.HTTPConnection("127.0.0.1", client.port, timeout=5)
        try:
            for _ in range(3):
                conn.request("GET", "/version")
                response = conn.getresponse()
                assert response.status == 200
                assert response.getheader("Connection") == "keep-alive"
                json.loads(response.read())
        finally:
            conn.close()

    def test_concurrent_requests(self, started_app, client):
        barrier = threading.Barrier(4, timeout=5)

        @started_app.get("/wait")
        def wait(ctx):
            barrier.wait()
            ctx.response_with_json({"ok": True})

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(client.get("/wait")[0]))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert results == [200, 200, 200, 200]


class TestTransportErrors:
    """What the parser rejects, and what it lets through to routing."""

    def test_malformed_request_line(self, started_app, send_raw):
        raw = send_raw(("127.0.0.1", started_app.address[1]), b"NONSENSE\r\n\r\n")

        head, _, body = raw.partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.1 400 Bad Request")
        assert b"Connection: close" in head
        assert json.loads(body)["error"] == "error"

    def test_unsupported_version(self, started_app, send_raw):
        raw = send_raw(("127.0.0.1", started_app.address[1]), b"GET / HTTP/3.0\r\n\r\n")

        assert raw.startswith(b"HTTP/1.1 505 ")

    def test_dot_segments_reach_wildcard_route(self, started_app, send_raw):
        @started_app.get("/files/*rest")
        def files(ctx):
            ctx.response_with_json({"rest": ctx.params["rest"]})

        raw = send_raw(
            ("127.0.0.1", started_app.address[1]),
            b"GET /files/a/../b HTTP/1.1\r\nConnection: close\r\n\r\n",
        )

        head, _, body = raw.partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.1 200 ")
        assert json.loads(body)["rest"].endswith("a/../b")

    def test_request_timeout(self, send_raw):
        app = Application(AppConfig(address="127.0.0.1:0", timeout=0.2))
        app.start()
        try:
            raw = send_raw(("127.0.0.1", app.address[1]), b"GET / HTTP/1.1\r\n")
            assert raw.startswith(b"HTTP/1.1 408 ")
        finally:
            app.stop()


class TestLifecycle:
    """start / stop / close against a real listener."""

    def test_events_fire_in_order(self, app):
        events = []
        app.on_start(lambda a: events.append("start"))
        app.on_stop(lambda a: events.append("stop"))
        app.on_close(lambda a: events.append("close"))

        app.start()
        assert app.state is AppState.LISTENING
        app.stop()
        assert app.state is AppState.STOPPED
        app.close()

        assert events == ["start", "stop", "close"]
        assert app.state is AppState.CLOSED

    def test_start_event_sees_bound_listener(self, app):
        ports = []
        app.on_start(lambda a: ports.append(a.address[1]))

        app.start()
        try:
            assert ports and ports[0] > 0
            with socket.create_connection(("127.0.0.1", ports[0]), timeout=2):
                pass
        finally:
            app.stop()

    def test_start_twice(self, started_app):
        with pytest.raises(RuntimeError):
            started_app.start()

    def test_bind_failure(self, started_app):
        other = Application(AppConfig(address=f"127.0.0.1:{started_app.address[1]}"))

        with pytest.raises(OSError):
            other.start()

    def test_stop_refuses_new_connections(self, app):
        app.start()
        port = app.address[1]
        app.stop()

        with pytest.raises(OSError):
            socket.create_connection(("127.0.0.1", port), timeout=1)

    def test_stop_waits_for_in_flight_request(self, app):
        entered = threading.Event()
        release = threading.Event()

        @app.get("/slow")
        def slow(ctx):
            entered.set()
            release.wait(5)
            ctx.response_with_json({"done": True})

        app.start()
        port = app.address[1]
        result = {}

        def call():
            conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
            conn.request("GET", "/slow")
            response = conn.getresponse()
            result["status"] = response.status
            result["body"] = json.loads(response.read())
            result["connection"] = response.getheader("Connection")
            conn.close()

        caller = threading.Thread(target=call)
        caller.start()
        assert entered.wait(5)

        threading.Timer(0.3, release.set).start()
        started = time.monotonic()
        app.stop()
        elapsed = time.monotonic() - started
        caller.join(5)

        assert elapsed >= 0.2
        assert result == {"status": 200, "body": {"done": True}, "connection": "close"}

    def test_stop_closes_idle_keep_alive_connections(self, app):
        app.start()
        conn = http.client.HTTPConnection("127.0.0.1", app.address[1], timeout=5)
        conn.request("GET", "/version")
        conn.getresponse().read()

        started = time.monotonic()
        app.stop()

        assert time.monotonic() - started < app.config.keep_alive_timeout
        conn.close()

    def test_stop_timeout_raises_shutdown_error(self):
        app = Application(AppConfig(address="127.0.0.1:0", shutdown_timeout=0.2))
        stop_fired = []
        release = threading.Event()
        entered = threading.Event()

        @app.get("/stuck")
        def stuck(ctx):
            entered.set()
            release.wait(5)

        app.on_stop(lambda a: stop_fired.append(True))
        app.start()

        caller = threading.Thread(
            target=lambda: _swallow(lambda: _get("127.0.0.1", app.address[1], "/stuck")),
        )
        caller.start()
        assert entered.wait(5)

        try:
            with pytest.raises(ShutdownError):
                app.stop()
        finally:
            release.set()
            caller.join(5)

        assert stop_fired == []


class TestUnixSocket:
    """Serving on a unix domain socket."""

    def test_serves_on_unix_socket(self, socket_path, send_raw):
        app = Application(AppConfig(address=socket_path, version="9.9"))
        app.start()
        try:
            assert app.config.socket_kind == "unix"
            raw = send_raw(
                socket_path,
                b"GET /version HTTP/1.1\r\nConnection: close\r\n\r\n",
                family=socket.AF_UNIX,
            )
        finally:
            app.stop()

        head, _, body = raw.partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.1 200 OK")
        assert json.loads(body)["version"] == "9.9"

    def test_stale_socket_file_is_replaced(self, socket_path):
        with open(socket_path, "w") as f:
            f.write("stale")

        app = Application(AppConfig(address=socket_path))
        app.start()
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
                s.connect(socket_path)
        finally:
            app.stop()

    def test_socket_file_removed_on_stop(self, socket_path):
        app = Application(AppConfig(address=socket_path))
        app.start()
        assert os.path.exists(socket_path)

        app.stop()

        assert not os.path.exists(socket_path)

    def test_unremovable_stale_path_is_fatal(self, socket_path):
        os.mkdir(socket_path)
        app = Application(AppConfig(address=socket_path))

        with pytest.raises(SystemExit) as exc_info:
            app.start()

        assert exc_info.value.code == 1


class TestRunUntilSignal:
    """run_until_signal with a real SIGTERM."""

    def test_sigterm_stops_and_closes(self, app):
        events = []
        original = signal.getsignal(signal.SIGTERM)

        def on_start(a):
            events.append("start")
            threading.Timer(0.2, os.kill, args=(os.getpid(), signal.SIGTERM)).start()

        app.on_start(on_start)
        app.on_stop(lambda a: events.append("stop"))
        app.on_close(lambda a: events.append("close"))

        assert app.run_until_signal() is app

        assert events == ["start", "stop", "close"]
        assert app.state is AppState.CLOSED
        assert signal.getsignal(signal.SIGTERM) is original

    def test_close_runs_when_start_fails(self, started_app):
        other = Application(AppConfig(address=f"127.0.0.1:{started_app.address[1]}"))
        closed = []
        other.on_close(lambda a: closed.append(True))

        with pytest.raises(OSError):
            other.run_until_signal()

        assert closed == [True]


def _get(host, port, path):
    conn = http.client.HTTPConnection(host, port, timeout=5)
    try:
        conn.request("GET", path)
        return conn.getresponse().read()
    finally:
        conn.close()


def _swallow(fn):
    try:
        fn()
    except OSError:
        pass
