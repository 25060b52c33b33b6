"""Secret masking for anything that crosses the process boundary (logs, alerts, API errors)."""

from __future__ import annotations

import re
from typing import Any, Iterable

from ..config import settings

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)
_SENSITIVE_KEYS = frozenset({
    "password", "secret", "client_secret", "token", "access_token",
    "authorization", "api_key", "smtp_password",
})


def _mask(value: str) -> str:
    return value[:4] + "****" + value[-3:]


def mask_secrets(text: str, secrets: Iterable[str] | None = None) -> str:
    """Replace configured secret values and bearer tokens in *text*.

    ``"MySecretValue12345678"`` becomes ``"MySe****678"``.
    """
    if not text:
        return text
    result = text
    for secret in settings.secret_values if secrets is None else secrets:
        if secret and secret in result:
            result = result.replace(secret, _mask(secret))
    return _BEARER_RE.sub(r"\1****", result)


def mask_object(obj: Any, secrets: Iterable[str] | None = None) -> Any:
    """Recursively mask strings in dicts/lists; values under sensitive keys are fully redacted."""
    if isinstance(obj, str):
        return mask_secrets(obj, secrets)
    if isinstance(obj, list):
        return [mask_object(v, secrets) for v in obj]
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in _SENSITIVE_KEYS else mask_object(v, secrets)
            for k, v in obj.items()
        }
    return obj
