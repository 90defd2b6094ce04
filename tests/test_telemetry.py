from __future__ import annotations

from typing import Any

from browser_agents.logger_bridge.telemetry import (
    LOG_ENDPOINT,
    NETWORK_ENDPOINT,
    WEBSOCKET_ENDPOINT,
    ProtocolEventNormalizer,
    TelemetryBuffer,
    TelemetryRecord,
    WebSocketCorrelationTable,
    render_console_arg,
)


def _normalizer(target: str = "T1", **kwargs: Any) -> tuple[ProtocolEventNormalizer, list[TelemetryRecord]]:
    out: list[TelemetryRecord] = []
    return ProtocolEventNormalizer(target, out.append, **kwargs), out


# ═══════════════════════════════════════════════════════════════════════════════
# CONSOLE
# ═══════════════════════════════════════════════════════════════════════════════


def test_render_console_arg_prefers_string_value_then_preview_then_description() -> None:
    assert render_console_arg({"type": "string", "value": "hello"}) == "hello"
    preview = {"type": "object", "properties": [{"name": "a", "value": "1"}]}
    assert render_console_arg({"type": "object", "preview": preview}).startswith('{"type":"object"')
    assert render_console_arg({"type": "number", "value": 42, "description": "42"}) == "42"
    assert render_console_arg({"type": "boolean", "value": True}) == "true"


def test_console_log_joins_args_with_single_spaces() -> None:
    n, out = _normalizer()
    n.handle(
        "T1",
        "Runtime.consoleAPICalled",
        {"type": "log", "args": [{"type": "string", "value": "hello"}, {"type": "number", "value": 42, "description": "42"}]},
    )
    assert len(out) == 1
    rec = out[0].to_dict()
    assert rec["type"] == "console-log"
    assert rec["message"] == "hello 42"
    assert rec["level"] == "log"
    assert isinstance(rec["timestamp"], int)
    assert out[0].endpoint == LOG_ENDPOINT


def test_console_error_level_maps_to_console_error_record() -> None:
    n, out = _normalizer()
    n.handle("T1", "Runtime.consoleAPICalled", {"type": "error", "args": [{"type": "string", "value": "boom"}]})
    assert out[0].type == "console-error"
    assert out[0].payload["level"] == "error"


def test_exception_thrown_uses_exception_description() -> None:
    n, out = _normalizer()
    n.handle(
        "T1",
        "Runtime.exceptionThrown",
        {"exceptionDetails": {"text": "Uncaught", "exception": {"description": "TypeError: x is undefined"}}},
    )
    rec = out[0].to_dict()
    assert rec["type"] == "console-error"
    assert rec["message"] == "TypeError: x is undefined"
    assert rec["level"] == "error"


def test_exception_thrown_without_description_serialises_details() -> None:
    n, out = _normalizer()
    n.handle("T1", "Runtime.exceptionThrown", {"exceptionDetails": {"text": "Uncaught"}})
    assert '"text":"Uncaught"' in out[0].payload["message"]


def test_events_from_other_targets_are_dropped() -> None:
    n, out = _normalizer("T1")
    assert n.handle("T2", "Runtime.consoleAPICalled", {"type": "log", "args": []}) is None
    assert out == []


def test_unknown_methods_are_ignored() -> None:
    n, out = _normalizer()
    assert n.handle("T1", "Page.loadEventFired", {}) is None
    assert out == []


# ═══════════════════════════════════════════════════════════════════════════════
# WEBSOCKET
# ═══════════════════════════════════════════════════════════════════════════════


def test_ws_lifecycle_enriches_frames_and_forgets_connection_on_close() -> None:
    n, out = _normalizer()
    n.handle("T1", "Network.webSocketCreated", {"requestId": "w1", "url": "wss://x/y"})
    n.handle(
        "T1",
        "Network.webSocketFrameReceived",
        {"requestId": "w1", "response": {"opcode": 1, "payloadData": "hi"}},
    )
    n.handle("T1", "Network.webSocketFrameSent", {"requestId": "w1", "response": {"opcode": 1, "payloadData": "yo"}})
    assert "w1" in n.table
    n.handle("T1", "Network.webSocketClosed", {"requestId": "w1"})

    types = [r.type for r in out]
    assert types == ["ws-created", "ws-frame-received", "ws-frame-sent", "ws-closed"]
    assert all(r.endpoint == WEBSOCKET_ENDPOINT for r in out)

    received = out[1].to_dict()
    assert received["direction"] == "incoming"
    assert received["url"] == "wss://x/y"
    assert received["opcode"] == 1
    assert received["payloadData"] == "hi"
    assert out[2].to_dict()["direction"] == "outgoing"
    assert out[3].to_dict()["url"] == "wss://x/y"
    assert "w1" not in n.table
    assert len(n.table) == 0


def test_frame_for_unknown_connection_has_no_url() -> None:
    n, out = _normalizer()
    n.handle("T1", "Network.webSocketFrameReceived", {"requestId": "zz", "response": {"opcode": 1, "payloadData": "x"}})
    rec = out[0].to_dict()
    assert rec["type"] == "ws-frame-received"
    assert "url" not in rec
    assert rec["payloadData"] == "x"


def test_frame_after_close_loses_url() -> None:
    n, out = _normalizer()
    n.handle("T1", "Network.webSocketCreated", {"requestId": "w1", "url": "wss://x/y"})
    n.handle("T1", "Network.webSocketClosed", {"requestId": "w1"})
    n.handle("T1", "Network.webSocketFrameReceived", {"requestId": "w1", "response": {"opcode": 1, "payloadData": "late"}})
    assert "url" not in out[-1].to_dict()


def test_ws_handshake_and_error_records() -> None:
    n, out = _normalizer()
    n.handle(
        "T1",
        "Network.webSocketHandshakeResponseReceived",
        {"requestId": "w1", "response": {"status": 101, "headers": {"Upgrade": "websocket"}}},
    )
    n.handle("T1", "Network.webSocketFrameError", {"requestId": "w1", "errorMessage": "bad frame"})
    handshake, error = (r.to_dict() for r in out)
    assert handshake["type"] == "ws-handshake"
    assert handshake["status"] == 101
    assert handshake["headers"] == {"Upgrade": "websocket"}
    assert error["type"] == "ws-error"
    assert error["errorMessage"] == "bad frame"


def test_shared_correlation_table_is_bounded() -> None:
    table = WebSocketCorrelationTable(max_entries=2)
    table.create("a", "wss://a")
    table.create("b", "wss://b")
    table.create("c", "wss://c")
    assert len(table) == 2
    assert "a" not in table
    assert table.get("c") is not None and table.get("c").url == "wss://c"
    assert table.get(None) is None


# ═══════════════════════════════════════════════════════════════════════════════
# NETWORK + NAVIGATION
# ═══════════════════════════════════════════════════════════════════════════════


def test_xhr_request_emits_network_record_on_finish() -> None:
    n, out = _normalizer()
    n.handle(
        "T1",
        "Network.requestWillBeSent",
        {
            "requestId": "r1",
            "type": "XHR",
            "request": {"url": "https://api.example/v1", "method": "POST", "headers": {"A": "1"}, "postData": "{}"},
        },
    )
    n.handle("T1", "Network.responseReceived", {"requestId": "r1", "response": {"status": 201, "headers": {"B": "2"}}})
    assert out == []
    n.handle("T1", "Network.loadingFinished", {"requestId": "r1"})

    rec = out[0].to_dict()
    assert out[0].endpoint == NETWORK_ENDPOINT
    assert rec["type"] == "network-request"
    assert rec["method"] == "POST"
    assert rec["status"] == 201
    assert rec["requestHeaders"] == {"A": "1"}
    assert rec["responseHeaders"] == {"B": "2"}
    assert rec["requestBody"] == "{}"
    assert rec["responseBody"] == ""


def test_document_requests_are_not_reported() -> None:
    n, out = _normalizer()
    n.handle("T1", "Network.requestWillBeSent", {"requestId": "d1", "type": "Document", "request": {"url": "https://a"}})
    n.handle("T1", "Network.loadingFinished", {"requestId": "d1"})
    assert out == []


def test_loading_failed_reports_network_error() -> None:
    n, out = _normalizer()
    n.handle("T1", "Network.requestWillBeSent", {"requestId": "r1", "type": "Script", "request": {"url": "https://cdn/x.js"}})
    n.handle("T1", "Network.loadingFailed", {"requestId": "r1", "errorText": "net::ERR_FAILED"})
    rec = out[0].to_dict()
    assert rec["type"] == "network-error"
    assert rec["url"] == "https://cdn/x.js"
    assert rec["error"] == "net::ERR_FAILED"
    assert rec["tabId"] == "T1"
    assert out[0].endpoint == LOG_ENDPOINT


def test_top_level_navigation_calls_hook_but_subframes_do_not() -> None:
    seen: list[str] = []
    n, out = _normalizer(on_navigated=seen.append)
    n.handle("T1", "Page.frameNavigated", {"frame": {"id": "f2", "parentId": "f1", "url": "https://ads"}})
    n.handle("T1", "Page.frameNavigated", {"frame": {"id": "f1", "url": "https://site/next"}})
    assert seen == ["https://site/next"]
    assert out == []


# ═══════════════════════════════════════════════════════════════════════════════
# BUFFER
# ═══════════════════════════════════════════════════════════════════════════════


def test_buffer_keeps_most_recent_records() -> None:
    buf = TelemetryBuffer(limit=2)
    for i in range(3):
        buf.append(TelemetryRecord("console-log", {"message": str(i)}))
    assert [r["message"] for r in buf.items()] == ["1", "2"]
    buf.clear()
    assert len(buf) == 0
