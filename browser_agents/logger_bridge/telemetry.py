"""Protocol telemetry: normalise raw CDP events into controller records.

Goal:
- One dispatch point per debugging session, keyed by CDP method name.
- Records are emitted in the order the channel delivers events (no buffering).
- WebSocket frames are enriched from a correlation table keyed by requestId;
  unknown connections degrade to absent fields, never to errors.
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

LOG_ENDPOINT = "/log"
NETWORK_ENDPOINT = "/network"
WEBSOCKET_ENDPOINT = "/websocket"
LOGS_ENDPOINT = "/logs"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _json(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def render_console_arg(arg: Any) -> str:
    """Render one CDP RemoteObject console argument as text."""
    if not isinstance(arg, dict):
        return _json(arg)
    if arg.get("type") == "string":
        return str(arg.get("value", ""))
    if arg.get("type") == "object" and arg.get("preview"):
        return _json(arg["preview"])
    if arg.get("description"):
        return str(arg["description"])
    value = arg.get("value")
    if value is not None and value is not False and value != "" and value != 0:
        return value if isinstance(value, str) else _json(value)
    return _json(arg)


@dataclass(frozen=True, slots=True)
class TelemetryRecord:
    """One normalized, timestamped unit of reported activity."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=_now_ms)
    endpoint: str = LOG_ENDPOINT

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        for k, v in self.payload.items():
            if v is not None:
                out[k] = v
        out["timestamp"] = self.timestamp
        return out


@dataclass(slots=True)
class WebSocketConnection:
    connection_id: str
    url: str | None
    initiator: Any | None
    created_at: int


class WebSocketCorrelationTable:
    """Ephemeral map from connection id to WebSocket metadata (bounded, insertion ordered)."""

    def __init__(self, max_entries: int = 512) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, WebSocketConnection] = OrderedDict()

    def create(self, connection_id: str, url: str | None, initiator: Any | None = None) -> WebSocketConnection:
        entry = WebSocketConnection(connection_id, url, initiator, _now_ms())
        self._entries[connection_id] = entry
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return entry

    def get(self, connection_id: Any) -> WebSocketConnection | None:
        if not isinstance(connection_id, str):
            return None
        return self._entries.get(connection_id)

    def pop(self, connection_id: Any) -> WebSocketConnection | None:
        if not isinstance(connection_id, str):
            return None
        return self._entries.pop(connection_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class TelemetryBuffer:
    """Bounded in-memory ring buffer of emitted records, for local inspection only."""

    def __init__(self, limit: int = 1000) -> None:
        self._items: deque[dict[str, Any]] = deque(maxlen=max(1, int(limit)))

    def append(self, record: TelemetryRecord) -> None:
        self._items.append(record.to_dict())

    def items(self) -> list[dict[str, Any]]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


EmitFunc = Callable[[TelemetryRecord], None]


class ProtocolEventNormalizer:
    """Unified debugging-event listener for one target."""

    def __init__(
        self,
        target_id: str,
        emit: EmitFunc,
        *,
        table: WebSocketCorrelationTable | None = None,
        on_navigated: Callable[[str], None] | None = None,
        max_requests: int = 800,
    ) -> None:
        self.target_id = target_id
        self.table = table if table is not None else WebSocketCorrelationTable()
        self._emit = emit
        self._on_navigated = on_navigated
        # requestId -> XHR/Fetch request metadata, until loadingFinished/loadingFailed.
        self._requests: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._max_requests = max_requests
        self._handlers: dict[str, Callable[[dict[str, Any]], TelemetryRecord | None]] = {
            "Runtime.exceptionThrown": self._exception_thrown,
            "Runtime.consoleAPICalled": self._console_api_called,
            "Network.webSocketCreated": self._ws_created,
            "Network.webSocketHandshakeResponseReceived": self._ws_handshake,
            "Network.webSocketFrameReceived": self._ws_frame_received,
            "Network.webSocketFrameSent": self._ws_frame_sent,
            "Network.webSocketClosed": self._ws_closed,
            "Network.webSocketFrameError": self._ws_error,
            "Network.requestWillBeSent": self._request_will_be_sent,
            "Network.responseReceived": self._response_received,
            "Network.loadingFinished": self._loading_finished,
            "Network.loadingFailed": self._loading_failed,
            "Page.frameNavigated": self._frame_navigated,
        }

    def handle(self, source_target: str, method: str, params: dict[str, Any] | None) -> TelemetryRecord | None:
        """Process one raw event; returns the emitted record (if any)."""
        if source_target != self.target_id:
            return None
        handler = self._handlers.get(method)
        if handler is None:
            return None
        record = handler(params if isinstance(params, dict) else {})
        if record is not None:
            self._emit(record)
        return record

    # ──────────────────────────────────────────────────────────────────
    # Console
    # ──────────────────────────────────────────────────────────────────

    def _exception_thrown(self, params: dict[str, Any]) -> TelemetryRecord:
        details = params.get("exceptionDetails")
        exception = details.get("exception") if isinstance(details, dict) else None
        message = exception.get("description") if isinstance(exception, dict) else None
        if not message:
            message = _json(details if details is not None else params)
        return TelemetryRecord("console-error", {"message": str(message), "level": "error"})

    def _console_api_called(self, params: dict[str, Any]) -> TelemetryRecord:
        args = params.get("args")
        message = " ".join(render_console_arg(a) for a in args) if isinstance(args, list) else ""
        level = params.get("type")
        rtype = "console-error" if level == "error" else "console-log"
        return TelemetryRecord(rtype, {"level": level, "message": message})

    # ──────────────────────────────────────────────────────────────────
    # WebSocket lifecycle
    # ──────────────────────────────────────────────────────────────────

    def _ws_created(self, params: dict[str, Any]) -> TelemetryRecord:
        request_id = params.get("requestId")
        if isinstance(request_id, str) and request_id:
            self.table.create(request_id, params.get("url"), params.get("initiator"))
        return TelemetryRecord(
            "ws-created",
            {"requestId": request_id, "url": params.get("url")},
            endpoint=WEBSOCKET_ENDPOINT,
        )

    def _ws_handshake(self, params: dict[str, Any]) -> TelemetryRecord:
        response = params.get("response") if isinstance(params.get("response"), dict) else {}
        return TelemetryRecord(
            "ws-handshake",
            {
                "requestId": params.get("requestId"),
                "status": response.get("status"),
                "headers": response.get("headers"),
            },
            endpoint=WEBSOCKET_ENDPOINT,
        )

    def _ws_frame(self, params: dict[str, Any], rtype: str, direction: str) -> TelemetryRecord:
        info = self.table.get(params.get("requestId"))
        frame = params.get("response") if isinstance(params.get("response"), dict) else {}
        return TelemetryRecord(
            rtype,
            {
                "direction": direction,
                "requestId": params.get("requestId"),
                "url": info.url if info is not None else None,
                "opcode": frame.get("opcode"),
                "payloadData": frame.get("payloadData"),
            },
            endpoint=WEBSOCKET_ENDPOINT,
        )

    def _ws_frame_received(self, params: dict[str, Any]) -> TelemetryRecord:
        return self._ws_frame(params, "ws-frame-received", "incoming")

    def _ws_frame_sent(self, params: dict[str, Any]) -> TelemetryRecord:
        return self._ws_frame(params, "ws-frame-sent", "outgoing")

    def _ws_closed(self, params: dict[str, Any]) -> TelemetryRecord:
        info = self.table.get(params.get("requestId"))
        record = TelemetryRecord(
            "ws-closed",
            {"requestId": params.get("requestId"), "url": info.url if info is not None else None},
            endpoint=WEBSOCKET_ENDPOINT,
        )
        self.table.pop(params.get("requestId"))
        return record

    def _ws_error(self, params: dict[str, Any]) -> TelemetryRecord:
        return TelemetryRecord(
            "ws-error",
            {"requestId": params.get("requestId"), "errorMessage": params.get("errorMessage")},
            endpoint=WEBSOCKET_ENDPOINT,
        )

    # ──────────────────────────────────────────────────────────────────
    # Network (XHR/Fetch requests + failures)
    # ──────────────────────────────────────────────────────────────────

    def _request_will_be_sent(self, params: dict[str, Any]) -> None:
        request_id = params.get("requestId")
        req = params.get("request")
        if not isinstance(request_id, str) or not isinstance(req, dict):
            return None
        meta: dict[str, Any] = {
            "url": req.get("url"),
            "method": req.get("method"),
            "resourceType": params.get("type"),
        }
        if params.get("type") in {"XHR", "Fetch"}:
            meta["requestHeaders"] = req.get("headers") if isinstance(req.get("headers"), dict) else {}
            meta["requestBody"] = req.get("postData") or ""
        self._requests[request_id] = meta
        while len(self._requests) > self._max_requests:
            self._requests.popitem(last=False)
        return None

    def _response_received(self, params: dict[str, Any]) -> None:
        meta = self._requests.get(params.get("requestId")) if isinstance(params.get("requestId"), str) else None
        response = params.get("response")
        if meta is not None and isinstance(response, dict):
            meta["status"] = response.get("status")
            meta["responseHeaders"] = response.get("headers") if isinstance(response.get("headers"), dict) else {}
        return None

    def _loading_finished(self, params: dict[str, Any]) -> TelemetryRecord | None:
        request_id = params.get("requestId")
        meta = self._requests.pop(request_id, None) if isinstance(request_id, str) else None
        if meta is None or meta.get("resourceType") not in {"XHR", "Fetch"}:
            return None
        return TelemetryRecord(
            "network-request",
            {
                "url": meta.get("url"),
                "method": meta.get("method"),
                "status": meta.get("status"),
                "requestHeaders": meta.get("requestHeaders", {}),
                "responseHeaders": meta.get("responseHeaders", {}),
                "requestBody": meta.get("requestBody", ""),
                "responseBody": "",
            },
            endpoint=NETWORK_ENDPOINT,
        )

    def _loading_failed(self, params: dict[str, Any]) -> TelemetryRecord:
        request_id = params.get("requestId")
        meta = self._requests.pop(request_id, None) if isinstance(request_id, str) else None
        return TelemetryRecord(
            "network-error",
            {
                "url": (meta or {}).get("url"),
                "error": params.get("errorText"),
                "tabId": self.target_id,
            },
        )

    # ──────────────────────────────────────────────────────────────────
    # Navigation
    # ──────────────────────────────────────────────────────────────────

    def _frame_navigated(self, params: dict[str, Any]) -> None:
        frame = params.get("frame")
        if not isinstance(frame, dict) or frame.get("parentId"):
            return None
        self._requests.clear()
        if self._on_navigated is not None:
            self._on_navigated(str(frame.get("url") or ""))
        return None


__all__ = [
    "LOGS_ENDPOINT",
    "LOG_ENDPOINT",
    "NETWORK_ENDPOINT",
    "WEBSOCKET_ENDPOINT",
    "ProtocolEventNormalizer",
    "TelemetryBuffer",
    "TelemetryRecord",
    "WebSocketConnection",
    "WebSocketCorrelationTable",
    "render_console_arg",
]
