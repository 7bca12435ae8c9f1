from __future__ import annotations

from datetime import datetime

from flask import current_app

from rebooked.extensions import db
from rebooked.services.order_lifecycle_service import expire_overdue_commitments, release_abandoned_checkouts


def run_commit_deadline_sweep(now: datetime | None = None, *, limit: int = 200) -> dict:
    """Cancel and refund orders whose seller missed the commit window,
    then free books held by checkouts that were never paid.

    Shared by the Celery beat task and the `flask expire-commitments` command.
    """
    now = now or datetime.utcnow()
    try:
        summary = expire_overdue_commitments(now, limit=limit)
        summary["released"] = release_abandoned_checkouts(now, limit=limit)["released"]
        return summary
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("commit_deadline_sweep_failed")
        return {"ok": False, "error": str(e)[:240], "expired": [], "skipped": [], "released": []}
