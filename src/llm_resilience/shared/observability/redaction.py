"""Secret redaction for log events and error text.

API keys reach log lines through exception messages (httpx puts the full
request URL into ``HTTPStatusError``), so every string value of every event
is scanned before rendering.
"""

from __future__ import annotations

import re
from typing import Any, MutableMapping

REDACTED = "****"

# key=..., api_key: ..., Authorization: Bearer ..., x-api-key=...
_SECRET_PATTERN = re.compile(
    r"(?i)(?:"
    r"[?&](?:key|api_?key|access_token|token)="
    r"|(?:x-goog-api-key|x-api-key|api[_-]?key|access[_-]?token|secret|password)['\"]?[\s:=]+"
    r"|authorization['\"]?[\s:=]+(?:bearer\s+)?"
    r"|bearer\s+"
    r")['\"]?([^\s'\"&,;]{4,})"
)

# Provider-issued keys that show up bare (sk-..., sk-ant-..., sk-or-v1-..., AIza...)
_BARE_KEY_PATTERN = re.compile(r"\b(?:sk-[A-Za-z0-9_\-]{8,}|AIza[0-9A-Za-z_\-]{20,})")

SENSITIVE_FIELDS = frozenset(
    {
        "api_key",
        "apikey",
        "authorization",
        "x-api-key",
        "x-goog-api-key",
        "access_token",
        "token",
        "secret",
        "password",
    }
)


def redact_secrets(text: str) -> str:
    """Replace API keys and bearer tokens in ``text`` with ``****``."""
    if not text:
        return text

    def _mask(match: re.Match[str]) -> str:
        full = match.group(0)
        return full.replace(match.group(1), REDACTED)

    text = _SECRET_PATTERN.sub(_mask, text)
    return _BARE_KEY_PATTERN.sub(REDACTED, text)


def redact_event(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: masks sensitive fields and secrets inside strings."""
    for field, value in event_dict.items():
        if field.lower() in SENSITIVE_FIELDS and value:
            event_dict[field] = REDACTED
        elif isinstance(value, str):
            event_dict[field] = redact_secrets(value)
    return event_dict
