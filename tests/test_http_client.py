from __future__ import annotations

import json
import socket
from contextlib import closing
from http.server import BaseHTTPRequestHandler, HTTPServer
from threading import Thread
from typing import Any

import pytest

from browser_agents.logger_bridge.config import BridgeConfig
from browser_agents.logger_bridge.http_client import ControllerClient, HttpClientError, http_request


def _free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _start_controller(routes: dict[tuple[str, str], tuple[int, Any]]) -> tuple[int, list[tuple[str, str, Any]], HTTPServer, Thread]:
    seen: list[tuple[str, str, Any]] = []

    class Handler(BaseHTTPRequestHandler):
        def _reply(self) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length) if length else b""
            seen.append((self.command, self.path, json.loads(raw) if raw else None))
            status, body = routes.get((self.command, self.path), (404, {"error": "not found"}))
            data = json.dumps(body).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        do_GET = _reply  # noqa: N815
        do_POST = _reply  # noqa: N815
        do_DELETE = _reply  # noqa: N815

        def log_message(self, format: str, *args: object) -> None:  # noqa: A002
            return

    port = _free_port()
    server = HTTPServer(("127.0.0.1", port), Handler)
    thread = Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return port, seen, server, thread


def test_identity_requires_exact_signature() -> None:
    port, _seen, srv, thread = _start_controller({("GET", "/.identity"): (200, {"signature": "browser-logger-24x7"})})
    try:
        client = ControllerClient(BridgeConfig(controller_port=port))
        assert client.check_identity() is True

        other = ControllerClient(BridgeConfig(controller_port=port, identity_signature="something-else"))
        assert other.check_identity() is False
    finally:
        srv.shutdown()
        thread.join(timeout=1)


def test_identity_fails_on_wrong_payload_even_with_200() -> None:
    port, _seen, srv, thread = _start_controller({("GET", "/.identity"): (200, {"signature": "browser-logger"})})
    try:
        assert ControllerClient(BridgeConfig(controller_port=port)).check_identity() is False
    finally:
        srv.shutdown()
        thread.join(timeout=1)


def test_post_and_command_slot_round() -> None:
    routes = {
        ("GET", "/command"): (200, {"action": "navigate", "url": "https://a"}),
        ("DELETE", "/command"): (200, {"ok": True}),
        ("POST", "/log"): (200, {"ok": True}),
        ("GET", "/version"): (200, {"version": 3}),
    }
    port, seen, srv, thread = _start_controller(routes)
    try:
        client = ControllerClient(BridgeConfig(controller_port=port))
        assert client.fetch_command() == {"action": "navigate", "url": "https://a"}
        assert client.ack_command() is True
        assert client.post("/log", {"type": "console-log", "message": "hi"}) is True
        assert client.get_version() == "3"
    finally:
        srv.shutdown()
        thread.join(timeout=1)

    assert ("POST", "/log", {"type": "console-log", "message": "hi"}) in seen
    assert ("DELETE", "/command", None) in seen


def test_non_2xx_is_a_failed_post() -> None:
    port, _seen, srv, thread = _start_controller({("POST", "/log"): (500, {"error": "nope"})})
    try:
        client = ControllerClient(BridgeConfig(controller_port=port))
        assert client.post("/log", {"type": "x"}) is False
        assert client.fetch_command() is None
    finally:
        srv.shutdown()
        thread.join(timeout=1)


def test_fetch_stats_counts_logs_and_errors() -> None:
    routes = {
        ("GET", "/logs"): (200, [{"level": "error"}, {"level": "log"}]),
        ("GET", "/network"): (200, [{"url": "https://a"}]),
    }
    port, _seen, srv, thread = _start_controller(routes)
    try:
        stats = ControllerClient(BridgeConfig(controller_port=port)).fetch_stats()
    finally:
        srv.shutdown()
        thread.join(timeout=1)
    assert stats == {"logs": 2, "errors": 1, "network": 1}


def test_unreachable_controller_degrades_to_none_and_false() -> None:
    client = ControllerClient(BridgeConfig(controller_port=_free_port(), http_timeout=0.5, command_timeout=0.5))
    assert client.check_identity() is False
    assert client.fetch_command() is None
    assert client.ack_command() is False
    assert client.post("/log", {"type": "x"}) is False
    assert client.get_version() is None
    assert client.fetch_stats() is None


def test_http_request_times_out_on_silent_server() -> None:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port = s.getsockname()[1]
        with pytest.raises(HttpClientError):
            http_request("GET", f"http://127.0.0.1:{port}/command", timeout=0.3)


def test_post_escapes_lone_surrogates_from_page_text() -> None:
    port, seen, srv, thread = _start_controller({("POST", "/dom"): (200, {"ok": True})})
    try:
        client = ControllerClient(BridgeConfig(controller_port=port))
        assert client.post("/dom", {"html": "abc\ud83d"}) is True
    finally:
        srv.shutdown()
        thread.join(timeout=1)
    assert seen == [("POST", "/dom", {"html": "abc\ud83d"})]


def test_unserializable_payload_is_a_failed_post() -> None:
    client = ControllerClient(BridgeConfig(controller_port=_free_port()))
    assert client.post("/log", {"bad": object()}) is False


def test_command_with_surrogate_result_still_posts_one_result() -> None:
    from browser_agents.logger_bridge.dispatcher import CommandDispatcher
    from browser_agents.logger_bridge.loops import CommandPoller

    class Host:
        def resolve_target(self, tab_id: Any | None) -> str:  # noqa: ARG002
            return "T1"

    class Relay:
        def request(self, target_id: str, message: dict[str, Any]) -> dict[str, Any]:  # noqa: ARG002
            return {"success": True, "html": "abc\ud83d"}

    routes = {
        ("GET", "/command"): (200, {"action": "get_dom"}),
        ("DELETE", "/command"): (200, {"ok": True}),
        ("POST", "/dom"): (200, {"ok": True}),
    }
    port, seen, srv, thread = _start_controller(routes)
    try:
        client = ControllerClient(BridgeConfig(controller_port=port))
        result = CommandPoller(client, CommandDispatcher(Host(), Relay(), client)).tick()  # type: ignore[arg-type]
    finally:
        srv.shutdown()
        thread.join(timeout=1)

    assert result is not None and result.success
    posts = [body for (method, path, body) in seen if method == "POST"]
    assert len(posts) == 1
    assert posts[0]["html"] == "abc\ud83d"
    assert ("DELETE", "/command", None) in seen
