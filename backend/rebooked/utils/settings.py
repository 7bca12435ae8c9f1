from __future__ import annotations

import os
from types import SimpleNamespace

from flask import current_app, has_app_context

# app.config key -> (env var, default)
_SETTINGS = {
    "integrations_mode": ("INTEGRATIONS_MODE", "sandbox"),
    "payments_provider": ("PAYMENTS_PROVIDER", "mock"),
    "courier_provider": ("COURIER_PROVIDER", "mock"),
    "email_provider": ("EMAIL_PROVIDER", "mock"),
    "frontend_url": ("FRONTEND_URL", "http://localhost:5173"),
    "notify_queue": ("NOTIFY_QUEUE", "0"),
}


def _config_key(name: str) -> str:
    return name.upper()


def get_settings() -> SimpleNamespace:
    """Integration switches, app.config first so tests can override env."""
    values = {}
    for name, (env_key, default) in _SETTINGS.items():
        value = None
        if has_app_context():
            value = current_app.config.get(_config_key(name))
        if value is None:
            value = os.getenv(env_key)
        if value is None or (isinstance(value, str) and not value.strip()):
            value = default
        values[name] = value.strip().lower() if isinstance(value, str) and name != "frontend_url" else value
    values["notify_queue"] = str(values.get("notify_queue") or "").strip().lower() in ("1", "true", "yes", "on")
    values["frontend_url"] = str(values.get("frontend_url") or "").rstrip("/")
    return SimpleNamespace(**values)


def config_int(name: str, default: int, *, minimum: int = 0, maximum: int = 10_000_000) -> int:
    raw = None
    if has_app_context():
        raw = current_app.config.get(name)
    if raw is None:
        raw = os.getenv(name)
    try:
        value = int(str(raw).strip()) if raw is not None and str(raw).strip() else int(default)
    except Exception:
        value = int(default)
    return max(minimum, min(maximum, value))
