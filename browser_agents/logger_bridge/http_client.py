from __future__ import annotations

import json
import logging
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import BridgeConfig

logger = logging.getLogger("logger_bridge.http")

_USER_AGENT = "browser-logger-bridge/2.2"
_MAX_BODY_BYTES = 8_000_000


class HttpClientError(Exception):
    pass


def http_request(
    method: str,
    url: str,
    *,
    payload: Any | None = None,
    timeout: float = 3.0,
) -> tuple[int, bytes]:
    """Perform one HTTP request and return (status, body).

    Non-2xx statuses are returned, not raised. Network faults and timeouts raise
    HttpClientError.
    """
    data = None
    headers = {"User-Agent": _USER_AGENT}
    if payload is not None:
        # ASCII-escaped so lone surrogates from page text survive as \uXXXX.
        try:
            data = json.dumps(payload).encode("ascii")
        except (TypeError, ValueError) as exc:
            raise HttpClientError(f"Unserializable payload: {exc}") from exc
        headers["Content-Type"] = "application/json"
    try:
        req = Request(url, data=data, headers=headers, method=method)
        with urlopen(req, timeout=timeout) as resp:
            return int(resp.status), resp.read(_MAX_BODY_BYTES)
    except HTTPError as exc:
        try:
            body = exc.read(_MAX_BODY_BYTES)
        except Exception:
            body = b""
        return int(exc.code), body
    except (TimeoutError, URLError, OSError, ValueError) as exc:
        raise HttpClientError(str(exc)) from exc


def _decode_json(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return None


class ControllerClient:
    """Best-effort transport to the remote controller.

    Every call is bounded by a short timeout. A fault of any kind means
    "controller unreachable this cycle": posts and deletes return False and reads
    return None. Nothing is retried here; the next scheduled tick is the retry.
    """

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config
        self.base_url = config.controller_url

    def _url(self, path: str) -> str:
        return self.base_url + (path if path.startswith("/") else "/" + path)

    def get_json(self, path: str, *, timeout: float | None = None) -> Any | None:
        try:
            status, body = http_request("GET", self._url(path), timeout=timeout or self.config.http_timeout)
        except HttpClientError as exc:
            logger.debug("controller_get_failed path=%s error=%s", path, exc)
            return None
        if not 200 <= status < 300:
            logger.debug("controller_get_status path=%s status=%s", path, status)
            return None
        return _decode_json(body)

    def post(self, path: str, record: Any, *, timeout: float | None = None) -> bool:
        try:
            status, _ = http_request(
                "POST", self._url(path), payload=record, timeout=timeout or self.config.http_timeout
            )
        except HttpClientError as exc:
            logger.debug("controller_post_failed path=%s error=%s", path, exc)
            return False
        if not 200 <= status < 300:
            logger.debug("controller_post_status path=%s status=%s", path, status)
            return False
        return True

    def delete(self, path: str, *, timeout: float | None = None) -> bool:
        try:
            status, _ = http_request("DELETE", self._url(path), timeout=timeout or self.config.http_timeout)
        except HttpClientError as exc:
            logger.debug("controller_delete_failed path=%s error=%s", path, exc)
            return False
        return 200 <= status < 300

    # Handshake / hot-reload

    def check_identity(self) -> bool:
        """True only if /.identity answers with the exact configured signature."""
        data = self.get_json("/.identity")
        if not isinstance(data, dict):
            return False
        return data.get("signature") == self.config.identity_signature

    def get_version(self) -> str | None:
        data = self.get_json("/version")
        if not isinstance(data, dict):
            return None
        version = data.get("version")
        if version is None:
            return None
        return str(version)

    # Command slot

    def fetch_command(self) -> dict[str, Any] | None:
        data = self.get_json("/command", timeout=self.config.command_timeout)
        return data if isinstance(data, dict) else None

    def ack_command(self) -> bool:
        return self.delete("/command", timeout=self.config.command_timeout)

    # Read-backs for the status command

    def fetch_stats(self) -> dict[str, Any] | None:
        logs = self.get_json("/logs")
        network = self.get_json("/network")
        if logs is None and network is None:
            return None
        out: dict[str, Any] = {}
        if isinstance(logs, list):
            out["logs"] = len(logs)
            out["errors"] = len([e for e in logs if isinstance(e, dict) and e.get("level") == "error"])
        if isinstance(network, list):
            out["network"] = len(network)
        return out

    def clear(self) -> bool:
        return self.delete("/clear")


__all__ = ["ControllerClient", "HttpClientError", "http_request"]
