"""Credential scrubbing for error text before it is logged or persisted."""
from __future__ import annotations

import re

_SENSITIVE_PATTERNS = [
    # Bearer tokens
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]+", re.IGNORECASE), "Bearer ***"),
    # OpenAI-style secret keys
    (re.compile(r"sk-[A-Za-z0-9\-_]{8,}"), "sk-***"),
    # api-key headers / params
    (re.compile(r"api[-_]?key[\"']?\s*[:=]\s*[\"']?[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "api_key=***"),
    (re.compile(r"access_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "access_token=***"),
    (re.compile(r"refresh_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "refresh_token=***"),
    (re.compile(r"client_secret=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "client_secret=***"),
    # Generic long opaque tokens (40+ chars)
    (re.compile(r"[A-Za-z0-9\-_]{40,}"), "***TOKEN***"),
]


def sanitize(text: str | None) -> str | None:
    """Strip credentials and tokens from error messages / response text."""
    if not text:
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def error_text(exc: BaseException | str, limit: int = 500) -> str:
    """Sanitised, bounded message for an exception (falls back to its type name)."""
    if isinstance(exc, str):
        raw = exc
    else:
        raw = str(exc) or type(exc).__name__
    return (sanitize(raw) or "")[:limit]
