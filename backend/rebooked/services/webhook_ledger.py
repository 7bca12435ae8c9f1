from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from rebooked.extensions import db
from rebooked.models import WebhookEvent
from rebooked.utils.observability import get_request_id

# A delivery in one of these states is never applied again.
SETTLED_STATUSES = ("processed", "ignored")


def claim_webhook(provider: str, event_id: str, *, reference: str | None = None, payload_hash: str = "") -> WebhookEvent | None:
    """Record an inbound event before applying it.

    Returns None when the event has already been settled. A row left `received` or
    `failed` by an earlier delivery is handed back so the retry can apply it.
    """
    event_id = (event_id or "")[:160]
    row = WebhookEvent.query.filter_by(provider=provider, event_id=event_id).first()
    if row is not None:
        if (row.status or "") in SETTLED_STATUSES:
            return None
        current_app.logger.info("webhook_retry provider=%s event_id=%s prior=%s", provider, event_id, row.status)
        row.status = "received"
        row.error = None
        row.request_id = get_request_id() or row.request_id
        db.session.commit()
        return row

    row = WebhookEvent(
        provider=provider,
        event_id=event_id,
        reference=reference,
        status="received",
        request_id=get_request_id() or None,
        payload_hash=payload_hash or None,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        # Another delivery of the same event got here first.
        db.session.rollback()
        return None
    return row


def settle_webhook(row: WebhookEvent, status: str, *, error: str | None = None) -> None:
    row.status = status
    row.error = error
    row.processed_at = datetime.utcnow()
    db.session.commit()


def fail_webhook(row: WebhookEvent, exc: Exception) -> None:
    """Roll back the partial work and leave the row retryable."""
    db.session.rollback()
    row.status = "failed"
    row.error = f"{type(exc).__name__}: {exc}"[:500]
    db.session.commit()
