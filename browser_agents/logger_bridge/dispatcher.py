"""
Command dispatch: controller commands -> action handlers -> result records.

Dispatch table keyed by action name (no if/elif chain). Unknown actions and
commands whose target cannot be resolved are silent no-ops; every other
dispatched command produces exactly one result record, success or failure.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .http_client import HttpClientError
from .redaction import redact_command_for_log

if TYPE_CHECKING:
    from .browser_host import BrowserHost
    from .http_client import ControllerClient
    from .relay import ExecutionRelay

logger = logging.getLogger("logger_bridge.dispatcher")

ACTION_ENDPOINT = "/action"
DOM_ENDPOINT = "/dom"
EXECUTE_ENDPOINT = "/execute"
STORAGE_ENDPOINT = "/storage"
SCREENSHOT_ENDPOINT = "/screenshot"
TABS_ENDPOINT = "/tabs"

_COOKIE_FIELDS = ("name", "value", "url", "domain", "path", "secure", "httpOnly", "sameSite", "expires")


@dataclass(slots=True)
class Command:
    """One pending controller command (lives for a single poll cycle)."""

    action: str
    tab_id: Any | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> Command | None:
        if not isinstance(payload, dict):
            return None
        action = payload.get("action")
        if not isinstance(action, str) or not action.strip():
            return None
        fields = {k: v for k, v in payload.items() if k not in {"action", "tabId"}}
        return cls(action=action.strip(), tab_id=payload.get("tabId"), fields=fields)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass(slots=True)
class ActionResult:
    """Outcome of one dispatched command, as posted to the controller."""

    action: str
    success: bool
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, action: str, **data: Any) -> ActionResult:
        return cls(action=action, success=True, data=data)

    @classmethod
    def fail(cls, action: str, error: str, **data: Any) -> ActionResult:
        return cls(action=action, success=False, error=error, data=data)

    @classmethod
    def from_relay(cls, action: str, response: dict[str, Any], **extra: Any) -> ActionResult:
        data = {k: v for k, v in response.items() if k not in {"success", "error"}}
        data.update(extra)
        if response.get("success"):
            return cls(action=action, success=True, data=data)
        return cls(action=action, success=False, error=str(response.get("error") or "Unknown error"), data=data)

    def to_dict(self) -> dict[str, Any]:
        # Payload first: page answers must not override the outcome fields.
        out: dict[str, Any] = dict(self.data)
        out["success"] = self.success
        out["action"] = self.action
        if self.error is not None:
            out["error"] = self.error
        else:
            out.pop("error", None)
        out["timestamp"] = int(time.time() * 1000)
        return out


HandlerFunc = Callable[[Command, Any], ActionResult]


class CommandDispatcher:
    """Routes commands to handlers and reports every outcome."""

    def __init__(self, host: BrowserHost, relay: ExecutionRelay, client: ControllerClient) -> None:
        self.host = host
        self.relay = relay
        self.client = client
        # action -> (handler, result endpoint, requires a target)
        self._handlers: dict[str, tuple[HandlerFunc, str, bool]] = {
            "screenshot": (self._screenshot, SCREENSHOT_ENDPOINT, True),
            "get_tabs": (self._get_tabs, TABS_ENDPOINT, False),
            "get_dom": (self._get_dom, DOM_ENDPOINT, True),
            "execute": (self._execute, EXECUTE_ENDPOINT, True),
            "click": (self._click, ACTION_ENDPOINT, True),
            "type": (self._type, ACTION_ENDPOINT, True),
            "scroll": (self._scroll, ACTION_ENDPOINT, True),
            "navigate": (self._navigate, ACTION_ENDPOINT, True),
            "get_cookies": (self._get_cookies, STORAGE_ENDPOINT, True),
            "set_cookie": (self._set_cookie, STORAGE_ENDPOINT, True),
            "get_storage": (self._get_storage, STORAGE_ENDPOINT, True),
            "set_storage": (self._set_storage, STORAGE_ENDPOINT, True),
            "close_tab": (self._close_tab, ACTION_ENDPOINT, True),
            "new_tab": (self._new_tab, ACTION_ENDPOINT, False),
            "activate_tab": (self._activate_tab, ACTION_ENDPOINT, True),
        }

    @property
    def actions(self) -> list[str]:
        return list(self._handlers)

    def has(self, action: str) -> bool:
        return action in self._handlers

    def endpoint_for(self, action: str) -> str | None:
        entry = self._handlers.get(action)
        return entry[1] if entry is not None else None

    def dispatch(self, command: Command) -> ActionResult | None:
        """Run one command. Returns the posted result, or None for silent no-ops."""
        entry = self._handlers.get(command.action)
        if entry is None:
            logger.debug("command_ignored action=%s", command.action)
            return None
        handler, endpoint, needs_target = entry

        target_id: str | None = None
        if needs_target:
            target_id = self.host.resolve_target(command.tab_id)
            if target_id is None:
                logger.info("command_no_target action=%s", command.action)
                return None

        logger.info("command action=%s target=%s args=%s", command.action, target_id, redact_command_for_log(command.fields))
        try:
            result = handler(command, target_id)
        except HttpClientError as exc:
            result = ActionResult.fail(command.action, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("command_failed action=%s", command.action)
            result = ActionResult.fail(command.action, str(exc) or exc.__class__.__name__)

        if not result.success:
            logger.info("command_error action=%s error=%s", command.action, result.error)
        self.client.post(endpoint, result.to_dict())
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Direct browser actions
    # ─────────────────────────────────────────────────────────────────────────

    def _screenshot(self, command: Command, target_id: str | None) -> ActionResult:
        data_url = self.host.capture_screenshot(str(target_id))
        return ActionResult.ok(command.action, type="screenshot", tabId=target_id, data=data_url)

    def _get_tabs(self, command: Command, target_id: str | None) -> ActionResult:  # noqa: ARG002
        return ActionResult.ok(command.action, tabs=self.host.list_tabs())

    def _navigate(self, command: Command, target_id: str | None) -> ActionResult:
        url = command.get("url")
        if not isinstance(url, str) or not url:
            return ActionResult.fail(command.action, "Missing url")
        self.host.navigate(str(target_id), url)
        return ActionResult.ok(command.action, url=url, tabId=target_id)

    def _get_cookies(self, command: Command, target_id: str | None) -> ActionResult:
        url = command.get("url")
        cookies = self.host.get_cookies(str(target_id), url if isinstance(url, str) and url else None)
        return ActionResult.ok(command.action, tabId=target_id, cookies=cookies)

    def _set_cookie(self, command: Command, target_id: str | None) -> ActionResult:
        raw = command.get("cookie")
        source = raw if isinstance(raw, dict) else command.fields
        cookie = {k: source[k] for k in _COOKIE_FIELDS if k in source}
        if not cookie.get("name"):
            return ActionResult.fail(command.action, "Missing cookie name")
        if not cookie.get("url") and not cookie.get("domain"):
            url = self.host.target_url(str(target_id))
            if url:
                cookie["url"] = url
        self.host.set_cookie(str(target_id), cookie)
        return ActionResult.ok(command.action, tabId=target_id, name=cookie["name"])

    def _close_tab(self, command: Command, target_id: str | None) -> ActionResult:
        self.host.close_tab(str(target_id))
        return ActionResult.ok(command.action, tabId=target_id)

    def _new_tab(self, command: Command, target_id: str | None) -> ActionResult:  # noqa: ARG002
        url = command.get("url")
        created = self.host.create_tab(url if isinstance(url, str) and url else None)
        return ActionResult.ok(command.action, tabId=created["id"], url=created["url"])

    def _activate_tab(self, command: Command, target_id: str | None) -> ActionResult:
        self.host.activate_tab(str(target_id))
        return ActionResult.ok(command.action, tabId=target_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Page-context actions (via the execution relay)
    # ─────────────────────────────────────────────────────────────────────────

    def _relay(self, command: Command, target_id: str | None, message: dict[str, Any]) -> ActionResult:
        response = self.relay.request(str(target_id), message)
        return ActionResult.from_relay(command.action, response, tabId=target_id)

    def _get_dom(self, command: Command, target_id: str | None) -> ActionResult:
        return self._relay(command, target_id, {"type": "GET_DOM", "selector": command.get("selector")})

    def _click(self, command: Command, target_id: str | None) -> ActionResult:
        selector = command.get("selector")
        if not isinstance(selector, str) or not selector:
            return ActionResult.fail(command.action, "Missing selector")
        return self._relay(command, target_id, {"type": "CLICK", "selector": selector})

    def _type(self, command: Command, target_id: str | None) -> ActionResult:
        selector = command.get("selector")
        if not isinstance(selector, str) or not selector:
            return ActionResult.fail(command.action, "Missing selector")
        message = {"type": "TYPE", "selector": selector, "text": command.get("text", "")}
        if "clear" in command.fields:
            message["clear"] = bool(command.get("clear"))
        return self._relay(command, target_id, message)

    def _scroll(self, command: Command, target_id: str | None) -> ActionResult:
        message: dict[str, Any] = {"type": "SCROLL"}
        for key in ("selector", "x", "y", "direction"):
            if command.get(key) is not None:
                message[key] = command.get(key)
        return self._relay(command, target_id, message)

    def _get_storage(self, command: Command, target_id: str | None) -> ActionResult:
        return self._relay(command, target_id, {"type": "GET_STORAGE", "storage": command.get("storage")})

    def _set_storage(self, command: Command, target_id: str | None) -> ActionResult:
        message = {
            "type": "SET_STORAGE",
            "storage": command.get("storage", "local"),
            "key": command.get("key"),
            "value": command.get("value"),
        }
        return self._relay(command, target_id, message)

    def _execute(self, command: Command, target_id: str | None) -> ActionResult:
        code = command.get("code")
        if not isinstance(code, str) or not code.strip():
            code = command.get("script")
        if not isinstance(code, str) or not code.strip():
            return ActionResult.fail(command.action, "Missing code")

        try:
            value = self.host.evaluate_isolated(str(target_id), code)
        except HttpClientError as exc:
            logger.info("execute_isolated_failed target=%s error=%s; falling back to page context", target_id, exc)
        else:
            return ActionResult.ok(command.action, tabId=target_id, result=value, context="isolated")

        response = self.relay.request(str(target_id), {"type": "EXECUTE", "code": code})
        return ActionResult.from_relay(command.action, response, tabId=target_id, context="page")


__all__ = ["ActionResult", "Command", "CommandDispatcher"]
