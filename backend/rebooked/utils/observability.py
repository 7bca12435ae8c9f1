from __future__ import annotations

import hashlib
import json
import os
import time
import uuid
from datetime import datetime

from flask import g, has_request_context, request

# Headers that must never reach Sentry.
SCRUBBED_HEADERS = ("authorization", "cookie", "set-cookie", "x-paystack-signature", "x-bobgo-signature")

# Per-request values that must not survive into the next request on a reused app context.
_REQUEST_SCOPED = ("auth_user", "auth_user_id", "auth_role", "log_context")

# Domain ids a service may attach to the access log line.
LOG_CONTEXT_KEYS = ("order_id", "seller_id", "buyer_id", "book_id", "payout_id")


def _hash_ip(ip: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{ip or ''}".encode("utf-8")).hexdigest()[:16]


def get_request_id() -> str:
    if not has_request_context():
        return ""
    return getattr(g, "request_id", "")


def bind_log_context(**fields) -> None:
    """Attach order/seller ids to the current request's access log line. No-op outside a request."""
    if not has_request_context():
        return
    context = g.setdefault("log_context", {})
    for key, value in fields.items():
        if key in LOG_CONTEXT_KEYS and value not in (None, ""):
            context[key] = str(value)


def _sample_rate(raw: str | None) -> float:
    try:
        rate = float((raw or "0.0").strip())
    except ValueError:
        return 0.0
    return max(0.0, min(rate, 1.0))


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("REBOOKED_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=_sample_rate(os.getenv("SENTRY_TRACES_SAMPLE_RATE")),
            before_send=_scrub_event,
        )
        app.logger.info("sentry_enabled")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def _scrub_event(event, hint):
    req = event.get("request")
    if isinstance(req, dict) and isinstance(req.get("headers"), dict):
        headers = req["headers"]
        for key in list(headers.keys()):
            if key.lower() in SCRUBBED_HEADERS:
                headers[key] = "[REDACTED]"
    return event


def _access_log_line(response, *, salt: str) -> dict:
    started = getattr(g, "request_started_at", None)
    latency_ms = round((time.perf_counter() - float(started)) * 1000.0, 2) if started is not None else None
    line = {
        "ts": datetime.utcnow().isoformat(),
        "request_id": getattr(g, "request_id", ""),
        "path": request.path,
        "method": request.method,
        "status": int(response.status_code),
        "latency_ms": latency_ms,
        "user_id": getattr(g, "auth_user_id", None),
        "role": getattr(g, "auth_role", None),
        "ip_hash": _hash_ip(request.headers.get("X-Forwarded-For", request.remote_addr or ""), salt),
    }
    line.update(getattr(g, "log_context", None) or {})
    return line


def install_request_observers(app) -> None:
    @app.before_request
    def _start_request_log():
        # g outlives the request when an app context was already pushed.
        for key in _REQUEST_SCOPED:
            g.pop(key, None)
        g.request_id = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _finish_request_log(response):
        if not getattr(g, "request_id", ""):
            g.request_id = uuid.uuid4().hex
        response.headers["X-Request-Id"] = g.request_id
        line = _access_log_line(response, salt=app.config.get("SECRET_KEY", "rebooked"))
        app.logger.info(json.dumps(line))
        return response
