from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "***REDACTED***"

_SENSITIVE_PARTS = (
    "api_key",
    "apikey",
    "api_secret",
    "secret",
    "signature",
    "authorization",
    "password",
    "token",
    "x_mbx_apikey",
)

_PLAIN_SECRET_PATTERNS = (
    re.compile(r"(?im)(x-mbx-apikey\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(binance_api_key\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(binance_api_secret\s*[:=]\s*)([^\s,;]+)"),
)
_QUERY_PARAM_PATTERN = re.compile(r"([?&]?)(signature|apiKey|secret)=([^&\s\"']+)", re.IGNORECASE)


def _is_sensitive_key(key: object) -> bool:
    normalized = str(key).replace("-", "_").casefold()
    return any(part in normalized for part in _SENSITIVE_PARTS)


def _mask_secret(value: str) -> str:
    if not value:
        return REDACTED
    if len(value) > 8:
        return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"
    return "*" * len(value)


def sanitize_text(text: str, known_secrets: Iterable[str] = ()) -> str:
    redacted = str(text)
    for secret in known_secrets:
        if secret:
            redacted = redacted.replace(secret, _mask_secret(secret))
    for pattern in _PLAIN_SECRET_PATTERNS:
        redacted = pattern.sub(lambda m: f"{m.group(1)}[REDACTED]", redacted)
    return _QUERY_PARAM_PATTERN.sub(
        lambda m: f"{m.group(1)}{m.group(2)}={_mask_secret(m.group(3))}", redacted
    )


def sanitize_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        key_str = str(key)
        if _is_sensitive_key(key_str):
            sanitized[key_str] = _mask_secret(str(value)) if value is not None else REDACTED
        else:
            sanitized[key_str] = redact_data(value)
    return sanitized


def redact_data(value: Any) -> Any:
    if isinstance(value, Mapping):
        return sanitize_mapping(value)
    if isinstance(value, list):
        return [redact_data(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_data(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
