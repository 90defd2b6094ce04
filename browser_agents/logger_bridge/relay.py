"""Execution relay: typed request/response messages into the live page context."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from .http_client import HttpClientError
from .page_agent import PAGE_AGENT_SOURCE

logger = logging.getLogger("logger_bridge.relay")

NO_RESPONSE = "No response from page"

REQUEST_TYPES = frozenset(
    {"GET_DOM", "GET_ELEMENT", "CLICK", "TYPE", "SCROLL", "GET_STORAGE", "SET_STORAGE", "EXECUTE"}
)


def build_relay_expression(message: dict[str, Any]) -> str:
    """Install the page agent (idempotent) and hand it one request."""
    payload = json.dumps(message)
    return f"({PAGE_AGENT_SOURCE.strip()}, globalThis.__loggerBridge.handle({payload}))"


class ExecutionRelay:
    def __init__(self, open_page: Callable[[str], Any], *, timeout: float = 5.0) -> None:
        self._open_page = open_page
        self.timeout = timeout

    def request(self, target_id: str, message: dict[str, Any]) -> dict[str, Any]:
        """Send one request to the page; always returns a `{success, ...}` dict."""
        msg_type = message.get("type")
        if msg_type not in REQUEST_TYPES:
            return {"success": False, "error": f"Unknown request type: {msg_type}"}

        conn = None
        try:
            conn = self._open_page(target_id)
            response = conn.evaluate(build_relay_expression(message), timeout=self.timeout)
        except HttpClientError as exc:
            logger.info("relay_no_response target=%s type=%s error=%s", target_id, msg_type, exc)
            return {"success": False, "error": NO_RESPONSE, "detail": str(exc)}
        finally:
            if conn is not None:
                with suppress(Exception):
                    conn.close()

        if not isinstance(response, dict) or "success" not in response:
            return {"success": False, "error": NO_RESPONSE}
        return response


__all__ = ["NO_RESPONSE", "REQUEST_TYPES", "ExecutionRelay", "build_relay_expression"]
