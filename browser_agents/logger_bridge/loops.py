"""Timer-driven background loops.

Each loop runs on its own daemon thread so a slow controller call in one loop
never stalls another. Within a loop, ticks never overlap: the next tick starts
only after the previous one (including its acknowledgement) returned.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .dispatcher import ActionResult, Command
from .http_client import HttpClientError
from .telemetry import TelemetryRecord

if TYPE_CHECKING:
    from .browser_host import BrowserHost
    from .dispatcher import CommandDispatcher
    from .http_client import ControllerClient

logger = logging.getLogger("logger_bridge.loops")


class PeriodicLoop:
    """Run `tick` at a fixed cadence until stopped. Tick failures are logged and skipped."""

    def __init__(self, name: str, interval: float, tick: Callable[[], Any]) -> None:
        self.name = name
        self.interval = max(0.05, float(interval))
        self._tick = tick
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"logger-bridge-{self.name}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self._tick()
            except Exception:  # noqa: BLE001
                logger.exception("loop_tick_failed loop=%s", self.name)
            elapsed = time.monotonic() - started
            self._stop.wait(max(0.0, self.interval - elapsed))


class CommandPoller:
    """Pull one pending command, dispatch it, then always clear the command slot."""

    def __init__(self, client: ControllerClient, dispatcher: CommandDispatcher) -> None:
        self.client = client
        self.dispatcher = dispatcher

    def tick(self) -> ActionResult | None:
        payload = self.client.fetch_command()
        if payload is None:
            return None
        command = Command.from_payload(payload)
        if command is None:
            return None
        try:
            return self.dispatcher.dispatch(command)
        finally:
            self.client.ack_command()


class VersionWatcher:
    """Hot-reload trigger: call `on_change` when the controller's version changes."""

    def __init__(self, client: ControllerClient, on_change: Callable[[str], None]) -> None:
        self.client = client
        self.on_change = on_change
        self.last_version: str | None = None

    def tick(self) -> bool:
        version = self.client.get_version()
        if version is None:
            return False
        previous, self.last_version = self.last_version, version
        if previous is not None and previous != version:
            logger.info("controller_version_changed old=%s new=%s", previous, version)
            self.on_change(version)
            return True
        return False


class TabInventoryPusher:
    """Periodically push the tab list to the controller."""

    def __init__(self, host: BrowserHost, client: ControllerClient) -> None:
        self.host = host
        self.client = client

    def tick(self) -> bool:
        try:
            tabs = self.host.list_tabs()
        except HttpClientError as exc:
            logger.debug("tab_inventory_unavailable error=%s", exc)
            return False
        record = TelemetryRecord("tabs", {"tabs": tabs, "count": len(tabs)}, endpoint="/tabs")
        return self.client.post(record.endpoint, record.to_dict())


__all__ = ["CommandPoller", "PeriodicLoop", "TabInventoryPusher", "VersionWatcher"]
