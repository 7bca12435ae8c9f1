from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError

from rebooked.extensions import db
from rebooked.models import PlatformEvent
from rebooked.utils.observability import get_request_id


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


def _safe_json(data: Any) -> str:
    normalized = _safe_value(data if isinstance(data, dict) else {"value": data})
    try:
        return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)
    except Exception:
        return json.dumps({"raw": str(normalized)})


def log_event(
    event_type: str,
    *,
    actor_user_id: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    severity: str = "INFO",
    request_id: str | None = None,
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Best-effort audit event.

    Runs in a savepoint so a failure never poisons the caller's transaction;
    callers still own the outer commit.
    """
    key = (idempotency_key or "").strip()[:180] or None
    try:
        if key:
            existing = PlatformEvent.query.filter_by(idempotency_key=key).first()
            if existing:
                return existing

        event = PlatformEvent(
            event_type=(event_type or "unknown").strip()[:80],
            actor_user_id=str(actor_user_id)[:36] if actor_user_id else None,
            subject_type=(subject_type or "").strip()[:80] or None,
            subject_id=str(subject_id)[:120] if subject_id is not None else None,
            request_id=(request_id or get_request_id() or "").strip()[:80] or None,
            idempotency_key=key,
            severity=(severity or "INFO").strip().upper()[:16] or "INFO",
            metadata_json=_safe_json(metadata or {}),
        )
        with db.session.begin_nested():
            db.session.add(event)
        return event
    except IntegrityError:
        if key:
            return PlatformEvent.query.filter_by(idempotency_key=key).first()
        return None
    except Exception as e:
        current_app.logger.warning("platform_event_failed type=%s err=%s", event_type, e)
        return None
