from __future__ import annotations

import time

from celery import shared_task

from rebooked.jobs.commit_deadline_runner import run_commit_deadline_sweep
from rebooked.tasks.notification_tasks import _task_log


@shared_task(name="rebooked.tasks.order_tasks.expire_overdue_commitments")
def expire_overdue_commitments_task(trace_id: str = ""):
    started = time.perf_counter()
    result = run_commit_deadline_sweep()
    _task_log(
        "expire_overdue_commitments",
        status="ok" if result.get("ok") else "failed",
        started_at=started,
        trace_id=trace_id,
        expired=len(result.get("expired") or []),
        released=len(result.get("released") or []),
    )
    return result
