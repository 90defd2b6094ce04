from __future__ import annotations

import pytest

from browser_agents.logger_bridge.config import IDENTITY_SIGNATURE, BridgeConfig
from browser_agents.logger_bridge.redaction import is_sensitive_key, redact_command_for_log, redact_url

_ENV_KEYS = (
    "LOGGER_BRIDGE_HOST",
    "LOGGER_BRIDGE_PORT",
    "LOGGER_BRIDGE_CDP_HOST",
    "LOGGER_BRIDGE_CDP_PORT",
    "LOGGER_BRIDGE_TARGET",
    "LOGGER_BRIDGE_SIGNATURE",
    "LOGGER_BRIDGE_HTTP_TIMEOUT",
    "LOGGER_BRIDGE_COMMAND_INTERVAL",
    "LOGGER_BRIDGE_VERSION_INTERVAL",
    "LOGGER_BRIDGE_TABS_INTERVAL",
    "LOGGER_BRIDGE_LOG_LIMIT",
    "LOGGER_BRIDGE_CLEAR_ON_NAVIGATE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIG TESTS
# ═══════════════════════════════════════════════════════════════════════════════


def test_config_defaults() -> None:
    cfg = BridgeConfig.from_env()
    assert cfg.controller_url == "http://127.0.0.1:20847"
    assert cfg.cdp_url == "http://127.0.0.1:9222"
    assert cfg.identity_signature == IDENTITY_SIGNATURE == "browser-logger-24x7"
    assert cfg.target_id is None
    assert cfg.command_interval == 1.0
    assert cfg.version_interval == 5.0
    assert cfg.tabs_interval == 30.0
    assert cfg.clear_on_navigate is True


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOGGER_BRIDGE_HOST", "10.0.0.2")
    monkeypatch.setenv("LOGGER_BRIDGE_PORT", "3000")
    monkeypatch.setenv("LOGGER_BRIDGE_CDP_PORT", "9333")
    monkeypatch.setenv("LOGGER_BRIDGE_TARGET", " ABC ")
    monkeypatch.setenv("LOGGER_BRIDGE_LOG_LIMIT", "50")
    monkeypatch.setenv("LOGGER_BRIDGE_CLEAR_ON_NAVIGATE", "no")
    cfg = BridgeConfig.from_env()
    assert cfg.controller_url == "http://10.0.0.2:3000"
    assert cfg.cdp_port == 9333
    assert cfg.target_id == "ABC"
    assert cfg.log_limit == 50
    assert cfg.clear_on_navigate is False


def test_config_clamps_timeouts_and_ignores_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOGGER_BRIDGE_HTTP_TIMEOUT", "60")
    monkeypatch.setenv("LOGGER_BRIDGE_PORT", "not-a-port")
    cfg = BridgeConfig.from_env()
    assert cfg.http_timeout == 5.0
    assert cfg.controller_port == 20847


# ═══════════════════════════════════════════════════════════════════════════════
# REDACTION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


def test_sensitive_keys() -> None:
    assert is_sensitive_key("access_token")
    assert is_sensitive_key("Authorization")
    assert is_sensitive_key("auth")
    assert not is_sensitive_key("author")
    assert not is_sensitive_key("")


def test_redact_url_keeps_normal_query() -> None:
    url = "https://example.com/search?q=hello&sort=asc"
    assert redact_url(url) == url


def test_redact_url_redacts_sensitive_query_and_fragment() -> None:
    out = redact_url("https://user:pw@example.com/cb?token=abc&q=1#access_token=xyz&state=2")
    assert "token=abc" not in out
    assert "access_token=xyz" not in out
    assert "q=1" in out and "state=2" in out
    assert "user:pw" not in out


def test_command_log_hides_code_text_and_cookie_values() -> None:
    fields = {
        "code": "document.cookie",
        "text": "hunter2",
        "cookie": {"name": "sid", "value": "secret"},
        "selector": "#login",
        "url": "https://example.com/?session=abc",
    }
    out = redact_command_for_log(fields)
    assert out["selector"] == "#login"
    assert out["code"] == "<redacted str len=15>"
    assert out["text"] == "<redacted str len=7>"
    assert out["cookie"] == "<redacted dict keys=2>"
    assert "abc" not in out["url"]
    # Input is not mutated.
    assert fields["text"] == "hunter2"
