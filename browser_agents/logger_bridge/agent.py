"""Agent composition: one debugging session, one command loop, one controller."""

from __future__ import annotations

import atexit
import logging
import threading
from contextlib import suppress
from typing import Any

from .browser_host import BrowserHost
from .config import BridgeConfig
from .dispatcher import SCREENSHOT_ENDPOINT, CommandDispatcher
from .http_client import ControllerClient, HttpClientError
from .loops import CommandPoller, PeriodicLoop, TabInventoryPusher, VersionWatcher
from .relay import ExecutionRelay
from .session_registry import SessionRegistry
from .telemetry import (
    LOGS_ENDPOINT,
    ProtocolEventNormalizer,
    TelemetryBuffer,
    TelemetryRecord,
    WebSocketCorrelationTable,
)

logger = logging.getLogger("logger_bridge.agent")

ELEMENT_ENDPOINT = "/element"


class BridgeAgent:
    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        client: ControllerClient | None = None,
        host: BrowserHost | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.client = client or ControllerClient(self.config)
        self.host = host or BrowserHost(self.config)
        self.relay = ExecutionRelay(self.host.open_page, timeout=self.config.relay_timeout)
        self.registry = registry or SessionRegistry(
            self.host.open_browser, enable_page=self.config.clear_on_navigate
        )
        self.buffer = TelemetryBuffer(self.config.log_limit)
        self.table = WebSocketCorrelationTable()
        self.dispatcher = CommandDispatcher(self.host, self.relay, self.client)

        self.poller = CommandPoller(self.client, self.dispatcher)
        self.watcher = VersionWatcher(self.client, lambda _version: self.reload())
        self.tabs_pusher = TabInventoryPusher(self.host, self.client)
        self.loops = [
            PeriodicLoop("version", self.config.version_interval, self.watcher.tick),
            PeriodicLoop("tabs", self.config.tabs_interval, self.tabs_pusher.tick),
            PeriodicLoop("commands", self.config.command_interval, self.poller.tick),
        ]

        self.target_id: str | None = None
        self.normalizer: ProtocolEventNormalizer | None = None
        self._lock = threading.Lock()
        self._started = False
        self._atexit_registered = False

    # ─────────────────────────────────────────────────────────────────────────
    # Telemetry
    # ─────────────────────────────────────────────────────────────────────────

    def _emit(self, record: TelemetryRecord) -> None:
        self.buffer.append(record)
        self.client.post(record.endpoint, record.to_dict())

    def _on_navigated(self, url: str) -> None:
        if not self.config.clear_on_navigate:
            return
        logger.debug("page_navigated url=%s", url)
        self.client.post(LOGS_ENDPOINT, {"action": "clear"})

    def attach(self, target_id: str | None = None) -> bool:
        """Attach the debugging session to the configured, given or active target."""
        with self._lock:
            target = target_id or self.config.target_id or self.host.active_target_id()
            if not target:
                logger.warning("no_target_to_attach")
                return False
            if self.target_id is not None and self.target_id != target:
                self.registry.detach(self.target_id)
            self.table.clear()
            normalizer = ProtocolEventNormalizer(
                target, self._emit, table=self.table, on_navigated=self._on_navigated
            )
            if not self.registry.attach(target, normalizer.handle):
                return False
            self.target_id = target
            self.normalizer = normalizer
            return True

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start the agent. Returns True when the debugging session attached."""
        if self.client.check_identity():
            logger.info("controller_identified url=%s", self.config.controller_url)
        else:
            logger.warning("controller_identity_unverified url=%s", self.config.controller_url)

        attached = self.attach()
        if not self._atexit_registered:
            atexit.register(self.stop)
            self._atexit_registered = True
        for loop in self.loops:
            loop.start()
        self._started = True
        logger.info("agent_started target=%s attached=%s", self.target_id, attached)
        return attached

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        for loop in self.loops:
            loop.stop()
        with suppress(Exception):
            self.registry.detach_all()
        logger.info("agent_stopped")

    def reload(self) -> bool:
        """Re-attach the debugging session (hot reload)."""
        logger.info("agent_reload target=%s", self.target_id)
        return self.attach(self.target_id)

    @property
    def running(self) -> bool:
        return self._started

    def status(self) -> dict[str, Any]:
        return {
            "target": self.target_id,
            "attached": bool(self.target_id) and self.registry.is_attached(str(self.target_id)),
            "sessions": self.registry.status(),
            "buffered": len(self.buffer),
            "websockets": len(self.table),
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Local operations
    # ─────────────────────────────────────────────────────────────────────────

    def capture_screenshot(self, target_id: str | None = None) -> str | None:
        """Capture a screenshot and post it to the controller. Returns the data URL."""
        target = self.host.resolve_target(target_id or self.target_id)
        if target is None:
            return None
        try:
            data_url = self.host.capture_screenshot(target)
        except HttpClientError as exc:
            logger.warning("screenshot_failed target=%s error=%s", target, exc)
            return None
        record = TelemetryRecord("screenshot", {"tabId": target, "data": data_url}, endpoint=SCREENSHOT_ENDPOINT)
        self.client.post(record.endpoint, record.to_dict())
        return data_url

    def report_selected_element(self, selector: str, target_id: str | None = None) -> dict[str, Any] | None:
        """Describe an element in the page and post it as a `selected-element` record."""
        target = self.host.resolve_target(target_id or self.target_id)
        if target is None:
            return None
        response = self.relay.request(target, {"type": "GET_ELEMENT", "selector": selector})
        if not response.get("success"):
            logger.info("element_lookup_failed selector=%s error=%s", selector, response.get("error"))
            return None
        element = response.get("element")
        record = TelemetryRecord(
            "selected-element",
            {"selector": selector, "tabId": target, "element": element},
            endpoint=ELEMENT_ENDPOINT,
        )
        self._emit(record)
        return element if isinstance(element, dict) else None

    def logs(self) -> list[dict[str, Any]]:
        return self.buffer.items()

    def clear_logs(self) -> None:
        self.buffer.clear()

    def __enter__(self) -> BridgeAgent:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


__all__ = ["ELEMENT_ENDPOINT", "BridgeAgent"]
