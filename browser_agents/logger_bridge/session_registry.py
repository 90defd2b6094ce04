"""Debugging-session lifecycle (one flattened CDP session per target).

The registry exclusively owns the browser-level CDP connection used for
telemetry. Attach/detach/enable and event reading are serialised through one
lock, so command responses never interleave with event delivery and events
reach the listener in channel order.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .http_client import HttpClientError

logger = logging.getLogger("logger_bridge.session")

Listener = Callable[[str, str, dict[str, Any]], None]

REQUIRED_DOMAINS = ("Runtime.enable", "Network.enable")


class SessionState(str, Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"


@dataclass
class Session:
    target_id: str
    session_id: str | None = None
    state: SessionState = SessionState.DETACHED

    @property
    def attached(self) -> bool:
        return self.state is SessionState.ATTACHED and self.session_id is not None


class _SessionEventPump:
    """Background reader for the debugging channel."""

    def __init__(self, registry: SessionRegistry, *, idle_sleep: float = 0.2) -> None:
        self._registry = registry
        self._idle_sleep = idle_sleep
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="logger-bridge-session-pump", daemon=True)

    def start(self) -> None:
        if self._thread.is_alive():
            return
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                busy = self._registry.pump_once()
            except Exception:  # noqa: BLE001
                logger.exception("session_pump_failed")
                busy = False
            if not busy:
                self._stop.wait(self._idle_sleep)


class SessionRegistry:
    def __init__(
        self,
        open_browser: Callable[[], Any],
        *,
        enable_page: bool = False,
        poll_timeout: float = 0.2,
        start_pump: bool = True,
    ) -> None:
        self._open_browser = open_browser
        self._domains = REQUIRED_DOMAINS + (("Page.enable",) if enable_page else ())
        self._poll_timeout = poll_timeout
        self._start_pump = start_pump

        self._lock = threading.RLock()
        self._conn: Any | None = None
        self._sessions: dict[str, Session] = {}
        self._targets_by_session: dict[str, str] = {}
        self._listeners: dict[str, Listener] = {}
        # Routed events waiting for delivery outside the lock.
        self._pending: list[tuple[Listener, str, str, dict[str, Any]]] = []
        self._pump: _SessionEventPump | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Channel
    # ─────────────────────────────────────────────────────────────────────────

    def _connection(self) -> Any:
        if self._conn is None:
            conn = self._open_browser()
            conn.set_event_sink(self._route_event)
            self._conn = conn
        return self._conn

    def _drop_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            with suppress(Exception):
                conn.close()
        for session in self._sessions.values():
            session.state = SessionState.DETACHED
            session.session_id = None
        self._targets_by_session.clear()

    def _live_attached(self, conn: Any, target_id: str) -> bool:
        """Ask the browser whether a debugger is attached to the target right now."""
        res = conn.send("Target.getTargets")
        infos = res.get("targetInfos") if isinstance(res, dict) else None
        for info in infos or []:
            if isinstance(info, dict) and str(info.get("targetId")) == target_id:
                return bool(info.get("attached"))
        return False

    def _forget_session(self, session: Session) -> None:
        if session.session_id is not None:
            self._targets_by_session.pop(session.session_id, None)
        session.session_id = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def attach(self, target_id: str, listener: Listener) -> bool:
        """Attach (or cleanly re-attach) to a target and register its event listener."""
        with self._lock:
            session = self._sessions.setdefault(target_id, Session(target_id))
            session.state = SessionState.ATTACHING
            try:
                conn = self._connection()
                if self._live_attached(conn, target_id):
                    # Reset instead of reusing: domain enables must be re-issued on a fresh session.
                    self._listeners.pop(target_id, None)
                    if session.session_id is not None:
                        try:
                            conn.send("Target.detachFromTarget", {"sessionId": session.session_id})
                        except HttpClientError as exc:
                            logger.info("detach_before_attach_failed target=%s error=%s", target_id, exc)
                    self._forget_session(session)

                res = conn.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
                session_id = res.get("sessionId") if isinstance(res, dict) else None
                if not session_id:
                    raise HttpClientError("attachToTarget returned no sessionId")
            except HttpClientError as exc:
                logger.error("attach_failed target=%s error=%s", target_id, exc)
                self._forget_session(session)
                session.state = SessionState.DETACHED
                return False

            session.session_id = str(session_id)
            self._targets_by_session[session.session_id] = target_id
            self._listeners[target_id] = listener
            session.state = SessionState.ATTACHED

            for method in self._domains:
                try:
                    conn.send(method, session_id=session.session_id)
                except HttpClientError as exc:
                    logger.error("enable_failed target=%s method=%s error=%s", target_id, method, exc)

            logger.info("debugger_attached target=%s", target_id)
            self._ensure_pump()
            return True

    def detach(self, target_id: str) -> bool:
        """Detach from a target. Returns True when the session ends up detached."""
        with self._lock:
            # Stop delivering events before tearing down.
            self._listeners.pop(target_id, None)
            session = self._sessions.get(target_id)
            if session is None:
                return True
            session.state = SessionState.DETACHING

            conn = self._conn
            ok = True
            try:
                if conn is not None and session.session_id is not None and self._live_attached(conn, target_id):
                    conn.send("Target.detachFromTarget", {"sessionId": session.session_id})
            except HttpClientError as exc:
                logger.warning("detach_failed target=%s error=%s", target_id, exc)
                ok = False
            finally:
                self._forget_session(session)
                session.state = SessionState.DETACHED
            logger.info("debugger_detached target=%s", target_id)
            return ok

    def detach_all(self) -> None:
        """Teardown: detach every session, stop the pump, close the channel."""
        with self._lock:
            for target_id in list(self._sessions):
                self.detach(target_id)
            pump, self._pump = self._pump, None
            conn, self._conn = self._conn, None
        if pump is not None:
            pump.stop()
        if conn is not None:
            with suppress(Exception):
                conn.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────────────

    def is_attached(self, target_id: str) -> bool:
        """Live check; marks the session stale if it was detached out-of-band."""
        with self._lock:
            session = self._sessions.get(target_id)
            if session is None or not session.attached or self._conn is None:
                return False
            try:
                live = self._live_attached(self._conn, target_id)
            except HttpClientError:
                live = False
            if not live:
                self._listeners.pop(target_id, None)
                self._forget_session(session)
                session.state = SessionState.DETACHED
            return live

    def state(self, target_id: str) -> SessionState:
        with self._lock:
            session = self._sessions.get(target_id)
            return session.state if session is not None else SessionState.DETACHED

    def status(self) -> dict[str, str]:
        with self._lock:
            return {tid: s.state.value for tid, s in self._sessions.items()}

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def _route_event(self, event: dict[str, Any]) -> None:
        method = event.get("method")
        params = event.get("params") if isinstance(event.get("params"), dict) else {}

        if method == "Target.detachedFromTarget":
            session_id = params.get("sessionId")
            target_id = self._targets_by_session.pop(session_id, None) if isinstance(session_id, str) else None
            if target_id is not None:
                session = self._sessions.get(target_id)
                if session is not None:
                    session.session_id = None
                    session.state = SessionState.DETACHED
                self._listeners.pop(target_id, None)
                logger.info("debugger_detached_externally target=%s", target_id)
            return

        session_id = event.get("sessionId")
        if not isinstance(session_id, str) or not isinstance(method, str):
            return
        target_id = self._targets_by_session.get(session_id)
        if target_id is None:
            return
        listener = self._listeners.get(target_id)
        if listener is not None:
            # Delivered by pump_once after the lock is released.
            self._pending.append((listener, target_id, method, params))

    def _deliver(self, batch: list[tuple[Listener, str, str, dict[str, Any]]]) -> None:
        for listener, target_id, method, params in batch:
            if self._listeners.get(target_id) is not listener:
                # Detached or re-attached since the event was read.
                continue
            try:
                listener(target_id, method, params)
            except Exception:  # noqa: BLE001
                logger.exception("listener_failed target=%s method=%s", target_id, method)

    def _ensure_pump(self) -> None:
        if not self._start_pump:
            return
        if self._pump is None or not self._pump.alive:
            self._pump = _SessionEventPump(self)
            self._pump.start()

    def pump_once(self) -> bool:
        """Read pending events once and deliver them.

        Only reading and routing hold the lock; listeners run after it is
        released, so a slow listener never blocks attach/detach/status. The
        pump is the only deliverer, which keeps channel order.
        Returns False when there is nothing to read from.
        """
        with self._lock:
            conn = self._conn
            if conn is None or not self._listeners:
                batch, self._pending = self._pending, []
                busy = False
            else:
                busy = True
                try:
                    conn.poll_events(timeout=self._poll_timeout)
                except HttpClientError as exc:
                    logger.warning("debugging_channel_lost error=%s", exc)
                    self._listeners.clear()
                    self._drop_connection()
                    busy = False
                batch, self._pending = self._pending, []
        self._deliver(batch)
        return busy


__all__ = ["REQUIRED_DOMAINS", "Session", "SessionRegistry", "SessionState"]
