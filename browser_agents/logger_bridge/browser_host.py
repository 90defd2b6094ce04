"""One-shot browser operations over the CDP HTTP endpoints and short-lived tab connections.

This is the agent's view of the browser's tab/cookie/scripting API. Every method
either returns its value or raises HttpClientError; callers turn that into a
result record. Nothing here touches the long-lived debugging session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

from .config import BridgeConfig
from .http_client import HttpClientError
from .session_cdp import CdpConnection, cdp_http_json

logger = logging.getLogger("logger_bridge.host")

ConnectFunc = Callable[[str, float], Any]


class BrowserHost:
    def __init__(self, config: BridgeConfig, connect: ConnectFunc | None = None) -> None:
        self.config = config
        self._connect: ConnectFunc = connect or (lambda ws_url, timeout: CdpConnection(ws_url, timeout=timeout))

    # ─────────────────────────────────────────────────────────────────────────
    # Targets
    # ─────────────────────────────────────────────────────────────────────────

    def _http(self, path: str, *, method: str = "GET") -> Any:
        return cdp_http_json(self.config.cdp_url, path, method=method, timeout=self.config.http_timeout)

    def list_targets(self) -> list[dict[str, Any]]:
        """Page targets, most recently focused first (the order Chrome reports them)."""
        raw = self._http("/json/list")
        if not isinstance(raw, list):
            return []
        return [t for t in raw if isinstance(t, dict) and t.get("type") == "page" and t.get("id")]

    def list_tabs(self) -> list[dict[str, Any]]:
        targets = self.list_targets()
        tabs: list[dict[str, Any]] = []
        for i, t in enumerate(targets):
            tabs.append(
                {
                    "id": str(t.get("id")),
                    "url": str(t.get("url") or ""),
                    "title": str(t.get("title") or ""),
                    "active": i == 0,
                }
            )
        return tabs

    def active_target_id(self) -> str | None:
        try:
            targets = self.list_targets()
        except HttpClientError as exc:
            logger.debug("active_target_lookup_failed error=%s", exc)
            return None
        if not targets:
            return None
        return str(targets[0].get("id"))

    def resolve_target(self, tab_id: Any | None) -> str | None:
        """Explicit target if given, else the active one; None when nothing resolves."""
        if tab_id is not None and str(tab_id).strip():
            return str(tab_id).strip()
        return self.active_target_id()

    def target_url(self, target_id: str) -> str | None:
        for t in self.list_targets():
            if str(t.get("id")) == str(target_id):
                return str(t.get("url") or "") or None
        return None

    def browser_ws_url(self) -> str:
        version = self._http("/json/version")
        ws_url = version.get("webSocketDebuggerUrl") if isinstance(version, dict) else None
        if not ws_url:
            raise HttpClientError("CDP browser WebSocket URL not found")
        return str(ws_url)

    def open_browser(self) -> Any:
        return self._connect(self.browser_ws_url(), self.config.cdp_timeout)

    def open_page(self, target_id: str) -> Any:
        for t in self.list_targets():
            if str(t.get("id")) == str(target_id):
                ws_url = t.get("webSocketDebuggerUrl")
                if not ws_url:
                    # Another client (e.g. an open DevTools window) owns the page socket.
                    raise HttpClientError(f"Target {target_id} has no debugger URL")
                return self._connect(str(ws_url), self.config.cdp_timeout)
        raise HttpClientError(f"Target {target_id} not found")

    # ─────────────────────────────────────────────────────────────────────────
    # Tabs
    # ─────────────────────────────────────────────────────────────────────────

    def navigate(self, target_id: str, url: str) -> None:
        conn = self.open_page(target_id)
        try:
            res = conn.send("Page.navigate", {"url": url})
        finally:
            conn.close()
        error_text = res.get("errorText") if isinstance(res, dict) else None
        if error_text:
            raise HttpClientError(str(error_text))

    def create_tab(self, url: str | None = None) -> dict[str, Any]:
        path = "/json/new"
        if url:
            path += "?" + quote(url, safe=":/?&=#%")
        created = self._http(path, method="PUT")
        if not isinstance(created, dict) or not created.get("id"):
            raise HttpClientError("Failed to create browser tab")
        return {"id": str(created["id"]), "url": str(created.get("url") or url or "")}

    def close_tab(self, target_id: str) -> None:
        self._http(f"/json/close/{target_id}")

    def activate_tab(self, target_id: str) -> None:
        self._http(f"/json/activate/{target_id}")

    def capture_screenshot(self, target_id: str) -> str:
        """Capture the target's viewport as a PNG data URL."""
        conn = self.open_page(target_id)
        try:
            res = conn.send("Page.captureScreenshot", {"format": "png"})
        finally:
            conn.close()
        data = res.get("data") if isinstance(res, dict) else None
        if not data:
            raise HttpClientError("Screenshot data is empty")
        return "data:image/png;base64," + str(data)

    # ─────────────────────────────────────────────────────────────────────────
    # Cookies
    # ─────────────────────────────────────────────────────────────────────────

    def get_cookies(self, target_id: str, url: str | None = None) -> list[dict[str, Any]]:
        conn = self.open_page(target_id)
        try:
            params = {"urls": [url]} if url else None
            res = conn.send("Network.getCookies", params)
        finally:
            conn.close()
        cookies = res.get("cookies") if isinstance(res, dict) else None
        return cookies if isinstance(cookies, list) else []

    def set_cookie(self, target_id: str, cookie: dict[str, Any]) -> None:
        params = {k: v for k, v in cookie.items() if v is not None}
        if not params.get("name"):
            raise HttpClientError("Cookie name is required")
        conn = self.open_page(target_id)
        try:
            res = conn.send("Network.setCookie", params)
        finally:
            conn.close()
        if isinstance(res, dict) and res.get("success") is False:
            raise HttpClientError("Browser rejected the cookie")

    # ─────────────────────────────────────────────────────────────────────────
    # Scripting
    # ─────────────────────────────────────────────────────────────────────────

    def evaluate_isolated(self, target_id: str, code: str) -> Any:
        """Evaluate code in an isolated world of the target's main frame."""
        conn = self.open_page(target_id)
        try:
            tree = conn.send("Page.getFrameTree")
            frame = (tree.get("frameTree") or {}).get("frame") or {}
            frame_id = frame.get("id")
            if not frame_id:
                raise HttpClientError("Main frame not found")
            world = conn.send(
                "Page.createIsolatedWorld",
                {"frameId": frame_id, "worldName": "logger-bridge", "grantUniveralAccess": False},
            )
            context_id = world.get("executionContextId")
            if not isinstance(context_id, int):
                raise HttpClientError("Isolated world was not created")
            return conn.evaluate(code, context_id=context_id)
        finally:
            conn.close()


__all__ = ["BrowserHost"]
