from __future__ import annotations

import json
from typing import Any, Dict, Optional

REDACTED = "[REDACTED]"

SENSITIVE_KEY_PARTS = (
    "password",
    "passwordhash",
    "mfasecret",
    "keyhash",
    "token",
    "accesstoken",
    "refreshtoken",
    "apikey",
    "secret",
    "ssn",
)


def _normalize_key(key: str) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def is_sensitive_key(key: str) -> bool:
    k = _normalize_key(key)
    return any(part in k for part in SENSITIVE_KEY_PARTS)


def sanitize_for_log(value: Any) -> Any:
    """Recursively replace values under sensitive keys with a redaction marker."""
    if isinstance(value, dict):
        return {k: (REDACTED if is_sensitive_key(k) else sanitize_for_log(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_for_log(v) for v in value]
    return value


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def compute_diff(
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
) -> Dict[str, Optional[Dict[str, Any]]]:
    """
    Keep only the keys whose JSON form differs between `before` and `after`.
    Both sides are sanitized. A side with no changed keys comes back as None.
    """
    b = before or {}
    a = after or {}

    changed_before: Dict[str, Any] = {}
    changed_after: Dict[str, Any] = {}
    for key in list(dict.fromkeys(list(b) + list(a))):
        if _canonical(b.get(key)) != _canonical(a.get(key)):
            if key in b:
                changed_before[key] = b[key]
            if key in a:
                changed_after[key] = a[key]

    return {
        "before": sanitize_for_log(changed_before) if changed_before else None,
        "after": sanitize_for_log(changed_after) if changed_after else None,
    }
