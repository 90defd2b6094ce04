from __future__ import annotations

import os
from dataclasses import dataclass

IDENTITY_SIGNATURE = "browser-logger-24x7"


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except Exception:
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass
class BridgeConfig:
    controller_host: str = "127.0.0.1"
    controller_port: int = 20847
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    target_id: str | None = None
    identity_signature: str = IDENTITY_SIGNATURE
    http_timeout: float = 3.0
    command_timeout: float = 2.0
    cdp_timeout: float = 5.0
    relay_timeout: float = 5.0
    command_interval: float = 1.0
    version_interval: float = 5.0
    tabs_interval: float = 30.0
    log_limit: int = 1000
    clear_on_navigate: bool = True

    @property
    def controller_url(self) -> str:
        return f"http://{self.controller_host}:{self.controller_port}"

    @property
    def cdp_url(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        target = (os.environ.get("LOGGER_BRIDGE_TARGET") or "").strip() or None
        return cls(
            controller_host=(os.environ.get("LOGGER_BRIDGE_HOST") or "127.0.0.1").strip(),
            controller_port=_env_int("LOGGER_BRIDGE_PORT", 20847),
            cdp_host=(os.environ.get("LOGGER_BRIDGE_CDP_HOST") or "127.0.0.1").strip(),
            cdp_port=_env_int("LOGGER_BRIDGE_CDP_PORT", 9222),
            target_id=target,
            identity_signature=os.environ.get("LOGGER_BRIDGE_SIGNATURE") or IDENTITY_SIGNATURE,
            http_timeout=max(0.5, min(_env_float("LOGGER_BRIDGE_HTTP_TIMEOUT", 3.0), 5.0)),
            command_timeout=max(0.5, min(_env_float("LOGGER_BRIDGE_COMMAND_TIMEOUT", 2.0), 5.0)),
            cdp_timeout=_env_float("LOGGER_BRIDGE_CDP_TIMEOUT", 5.0),
            relay_timeout=_env_float("LOGGER_BRIDGE_RELAY_TIMEOUT", 5.0),
            command_interval=_env_float("LOGGER_BRIDGE_COMMAND_INTERVAL", 1.0),
            version_interval=_env_float("LOGGER_BRIDGE_VERSION_INTERVAL", 5.0),
            tabs_interval=_env_float("LOGGER_BRIDGE_TABS_INTERVAL", 30.0),
            log_limit=max(1, _env_int("LOGGER_BRIDGE_LOG_LIMIT", 1000)),
            clear_on_navigate=_env_flag("LOGGER_BRIDGE_CLEAR_ON_NAVIGATE", True),
        )
