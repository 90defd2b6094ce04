"""Raw CDP plumbing.

- CdpConnection: one CDP WebSocket (websocket-client), request/response plus an event sink.
- cdp_http_json: the CDP HTTP endpoints (/json/list, /json/version, /json/new, ...).
"""

from __future__ import annotations

import json
import socket
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import websocket

from .http_client import HttpClientError, http_request


def cdp_http_json(base_url: str, path: str, *, method: str = "GET", timeout: float = 2.0) -> Any:
    """Fetch JSON from a CDP HTTP endpoint. Raises HttpClientError on any failure."""
    status, body = http_request(method, base_url + path, timeout=timeout)
    if not 200 <= status < 300:
        raise HttpClientError(f"CDP endpoint {path} answered HTTP {status}")
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # /json/activate and /json/close answer with plain text.
        return text


def _is_timeout(exc: Exception) -> bool:
    if isinstance(exc, (TimeoutError, socket.timeout, websocket.WebSocketTimeoutException)):
        return True
    return "timed out" in str(exc).lower()


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws_url: str, timeout: float = 5.0):
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        except Exception as exc:  # noqa: BLE001
            raise HttpClientError(f"CDP connect failed: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        self._event_sink: Callable[[dict[str, Any]], None] | None = None

    def set_event_sink(self, sink: Callable[[dict[str, Any]], None] | None) -> None:
        """Attach a sink called for every received CDP event, in delivery order."""
        self._event_sink = sink

    def _push_event(self, event: dict[str, Any]) -> None:
        sink = self._event_sink
        if sink is None:
            return
        with suppress(Exception):
            # Telemetry must never break protocol traffic.
            sink(event)

    def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Send CDP command and wait for its response."""
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        if session_id:
            msg["sessionId"] = session_id

        try:
            with suppress(Exception):
                self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise HttpClientError(str(exc)) from exc

        return self._recv_until(msg_id)

    def _recv_until(self, expected_id: int) -> dict[str, Any]:
        """Wait for the response with a specific id; events seen meanwhile go to the sink."""
        deadline = time.time() + self.timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise HttpClientError("CDP response timed out")

            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                if _is_timeout(exc):
                    continue
                raise HttpClientError(str(exc)) from exc

            try:
                data = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                continue
            if not isinstance(data, dict):
                continue

            if isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                continue

            if data.get("id") == expected_id:
                if "error" in data:
                    err = data["error"]
                    message = err.get("message") if isinstance(err, dict) else None
                    raise HttpClientError(str(message or err))
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    def poll_events(self, *, timeout: float = 0.2, max_messages: int = 50) -> int:
        """Read already-arriving events for up to `timeout` seconds and push them to the sink."""
        received = 0
        deadline = time.time() + max(0.0, float(timeout))
        for _ in range(max(1, int(max_messages))):
            remaining = deadline - time.time()
            if remaining <= 0 and received:
                break
            try:
                self.ws.settimeout(max(0.01, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                if _is_timeout(exc):
                    break
                raise HttpClientError(str(exc)) from exc

            try:
                data = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                continue
            if isinstance(data, dict) and isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                received += 1
        return received

    def evaluate(self, expression: str, *, context_id: int | None = None, timeout: float | None = None) -> Any:
        """Runtime.evaluate returning the by-value result; script exceptions raise HttpClientError."""
        params: dict[str, Any] = {"expression": expression, "returnByValue": True, "awaitPromise": True}
        if context_id is not None:
            params["contextId"] = context_id
        old_timeout = self.timeout
        if timeout is not None:
            self.timeout = float(timeout)
        try:
            result = self.send("Runtime.evaluate", params)
        finally:
            self.timeout = old_timeout

        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") if isinstance(details.get("exception"), dict) else {}
            message = exc.get("description") or details.get("text") or "Script error"
            raise HttpClientError(str(message))

        remote = result.get("result")
        if not isinstance(remote, dict):
            return None
        if remote.get("type") == "undefined" or remote.get("subtype") == "null":
            return None
        return remote.get("value")

    def abort(self) -> None:
        """Hard break of the underlying socket (websocket-client close() can hang)."""
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(Exception):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(Exception):
                sock.close()

    def close(self) -> None:
        with suppress(Exception):
            self.abort()

    def __enter__(self) -> CdpConnection:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


__all__ = ["CdpConnection", "cdp_http_json"]
