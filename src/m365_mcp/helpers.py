"""Small helpers for building log lines."""

import json
from typing import Any

DEFAULT_MAX_LENGTH = 4000
TRUNCATION_SUFFIX = " ...[truncated]"


def safe_json(value: Any, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Serialize a value for logging without ever raising.

    Strings are passed through, everything else goes through ``json.dumps``
    (falling back to ``str``). Output longer than ``max_length`` is cut and
    suffixed with ``" ...[truncated]"``.
    """
    try:
        output = value if isinstance(value, str) else json.dumps(value, default=str)
    except Exception:  # noqa: BLE001 - default=str may call a failing __str__
        try:
            output = str(value)
        except Exception:  # noqa: BLE001
            return "[unprintable]"

    if len(output) > max_length:
        return f"{output[:max_length]}{TRUNCATION_SUFFIX}"
    return output


def mask_fields(data: dict[str, Any], masks: dict[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with present, truthy fields replaced by a mask.

    Args:
        data: Tool input to mask.
        masks: Mapping of field name to replacement text, e.g. ``{"body": "[redacted]"}``.
    """
    masked = dict(data)
    for key, replacement in masks.items():
        if masked.get(key):
            masked[key] = replacement
        else:
            masked.pop(key, None)
    return masked
