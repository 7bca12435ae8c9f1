from __future__ import annotations

import json


def load_json(raw, default=None):
    """Parse a Text column holding JSON, tolerating blanks and junk."""
    fallback = {} if default is None else default
    text = (raw or "").strip() if isinstance(raw, str) else ""
    if not text:
        return fallback
    try:
        data = json.loads(text)
    except Exception:
        return fallback
    if isinstance(fallback, dict) and not isinstance(data, dict):
        return fallback
    if isinstance(fallback, list) and not isinstance(data, list):
        return fallback
    return data


def dump_json(value) -> str:
    try:
        return json.dumps(value if value is not None else {}, separators=(",", ":"), default=str)
    except Exception:
        return "{}"
