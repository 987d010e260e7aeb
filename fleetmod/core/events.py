from __future__ import annotations

from typing import Any


MASK = "***REDACTED***"

# Exact key names that always hold secrets in this domain.
REDACT_KEYS = frozenset(
    {
        "password",
        "secret",
        "token",
        "authorization",
        "key",
        "value",
        "secure_default_config",
        "secure_current_config",
    }
)

# Any key ending like this is masked too (db_key, api_key, access_token, ...).
REDACT_SUFFIXES = ("_key", "_token", "_secret", "_password")


def is_sensitive_key(key: Any) -> bool:
    k = str(key).lower()
    return k in REDACT_KEYS or k.endswith(REDACT_SUFFIXES)


def redact(obj: Any) -> Any:
    """
    Copy of obj with every sensitive mapping value replaced by MASK.

    Used for error context and log payloads; secure parameter values must never
    leave the process in plaintext through either.
    """
    if isinstance(obj, dict):
        return {k: (MASK if is_sensitive_key(k) else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj
