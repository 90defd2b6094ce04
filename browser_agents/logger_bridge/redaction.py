"""Redaction for log lines.

Only the agent's own log output is redacted; records sent to the controller are not.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "pwd",
    "authorization",
    "cookie",
    "session",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

_SENSITIVE_EXACT = {
    # Avoid false-positives like "author"/"authorship".
    "auth",
}

# Command fields whose values are never logged, whatever their name looks like.
_OPAQUE_FIELDS = {"code", "script", "text", "value", "cookie"}


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def redact_url(url: str) -> str:
    """Redact sensitive query values and userinfo; other URLs are returned unchanged."""
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    query = parts.query
    fragment = parts.fragment
    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True

    if query:
        query, redacted = _redact_query(query)
        changed = changed or redacted
    # OAuth-style callbacks carry tokens in the fragment.
    if "=" in fragment:
        fragment, redacted = _redact_query(fragment)
        changed = changed or redacted

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def _redact_query(query: str) -> tuple[str, bool]:
    pairs = parse_qsl(query, keep_blank_values=True)
    out_pairs: list[tuple[str, str]] = []
    redacted = False
    for k, v in pairs:
        if is_sensitive_key(k) and v:
            out_pairs.append((k, "<redacted>"))
            redacted = True
        else:
            out_pairs.append((k, v))
    if not redacted:
        return query, False
    return urlencode(out_pairs, doseq=True), True


def _redacted_summary(value: Any) -> str:
    if value is None:
        return "<redacted>"
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    if isinstance(value, (list, tuple, set)):
        return f"<redacted list len={len(value)}>"
    if isinstance(value, dict):
        return f"<redacted dict keys={len(value)}>"
    return "<redacted>"


def redact_command_for_log(fields: dict[str, Any]) -> dict[str, Any]:
    """Copy of command fields safe to write to the agent log."""
    out: dict[str, Any] = {}
    for k, v in (fields or {}).items():
        key = str(k)
        if key in _OPAQUE_FIELDS or is_sensitive_key(key):
            out[key] = _redacted_summary(v)
        elif key == "url" and isinstance(v, str):
            out[key] = redact_url(v)
        else:
            out[key] = v
    return out


__all__ = ["is_sensitive_key", "redact_command_for_log", "redact_url"]
