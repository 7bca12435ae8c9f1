from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from rebooked.integrations.email.base import EmailMessageSpec
from rebooked.integrations.email.factory import build_email_provider
from rebooked.utils.settings import get_settings


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff, capped at 15 minutes.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


@shared_task(bind=True, name="rebooked.tasks.notification_tasks.send_email", max_retries=5)
def send_email_task(
    self,
    *,
    to: str,
    subject: str,
    html: str,
    text: str = "",
    reference: str = "",
    trace_id: str = "",
):
    started = time.perf_counter()
    try:
        result = build_email_provider(get_settings()).send(
            EmailMessageSpec(to=str(to or ""), subject=str(subject or ""), html=str(html or ""), text=str(text or ""))
        )
        detail = f"{result.code}:{result.message}"
        ok = bool(result.ok)
    except Exception as exc:
        ok, detail = False, str(exc)

    if ok:
        _task_log("send_email", status="ok", started_at=started, trace_id=trace_id, reference=reference)
        return {"ok": True, "reference": reference}

    if int(self.request.retries or 0) < int(self.max_retries or 0):
        countdown = _retry_countdown(int(self.request.retries or 0))
        _task_log(
            "send_email",
            status="retrying",
            started_at=started,
            trace_id=trace_id,
            reference=reference,
            detail=detail,
            countdown=countdown,
        )
        raise self.retry(exc=RuntimeError(detail or "email_send_failed"), countdown=countdown)

    _task_log("send_email", status="failed", started_at=started, trace_id=trace_id, reference=reference, detail=detail)
    return {"ok": False, "detail": detail}
