from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from rebooked.extensions import db
from rebooked.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    IntegrationRequestError,
)
from rebooked.integrations.courier.base import CourierProvider, TrackingUpdate
from rebooked.integrations.courier.factory import build_courier_provider
from rebooked.integrations.payments.base import PaymentsProvider
from rebooked.integrations.payments.factory import build_payments_provider
from rebooked.models import Book, BuyerFeedback, Notification, Order, User, WalletTransaction
from rebooked.models.order import COMMITTABLE_STATUSES, DISPATCHED_STATES, TERMINAL_STATUSES
from rebooked.services.errors import Forbidden, InvalidState, OrderNotFound, Unauthorized
from rebooked.services.notification_service import OrderNotifier
from rebooked.services.wallet_service import credit_on_collection
from rebooked.utils.events import log_event
from rebooked.utils.observability import bind_log_context
from rebooked.utils.settings import config_int, get_settings

CANCELLABLE_STATUSES = ("pending", "paid", "committed")
RECEIPT_STATUSES = ("delivered", "in_transit")

# Courier status spellings -> delivery_status
_COURIER_STATUS_ALIASES = {
    "pending_collection": "created",
    "submitted": "created",
    "created": "created",
    "collected": "collected",
    "picked_up": "picked_up",
    "collection_assigned": "created",
    "in_transit": "in_transit",
    "at_hub": "in_transit",
    "at_destination_hub": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "collection_failed": "pickup_failed",
    "failed_collection": "pickup_failed",
    "pickup_failed": "pickup_failed",
    "collection_rescheduled": "rescheduled_by_seller",
    "rescheduled_by_seller": "rescheduled_by_seller",
}


def _load_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id) if order_id else None
    if order is None:
        raise OrderNotFound()
    bind_log_context(order_id=order.id, seller_id=order.seller_id)
    return order


def _payments_for(order: Order, payments: PaymentsProvider | None) -> PaymentsProvider:
    if payments is not None:
        return payments
    return build_payments_provider(get_settings(), provider=order.payment_provider or None)


def refund_order(order: Order, *, reason: str, payments: PaymentsProvider | None = None) -> str:
    """Refund a paid order through its gateway. Returns the refund_status written."""
    if (order.payment_status or "") != "paid" or not order.payment_reference:
        return order.refund_status or ""
    if order.refund_status == "refunded":
        return "refunded"

    try:
        result = _payments_for(order, payments).refund(
            reference=order.payment_reference,
            amount_minor=int(order.amount or 0),
            reason=reason,
        )
        ok, code = bool(result.ok), result.code
    except (IntegrationDisabledError, IntegrationMisconfiguredError, IntegrationRequestError) as e:
        ok, code = False, getattr(e, "code", "REFUND_FAILED")

    order.refund_status = "refunded" if ok else "failed"
    if ok:
        order.refunded_at = datetime.utcnow()
        order.payment_status = "refunded"
    else:
        current_app.logger.warning("refund_failed order_id=%s code=%s", order.id, code)
    log_event(
        "order_refunded" if ok else "order_refund_failed",
        subject_type="order",
        subject_id=order.id,
        severity="INFO" if ok else "WARN",
        idempotency_key=f"refund:{order.id}" if ok else None,
        metadata={"amount_minor": int(order.amount or 0), "code": code, "reason": reason},
    )
    return order.refund_status


def release_reservation(book_id: str | None) -> None:
    """Put a book held by an unpaid checkout back on the shelf. Sold books are left alone."""
    if not book_id:
        return
    db.session.execute(
        update(Book)
        .where(Book.id == book_id, Book.sold.is_(False), Book.availability == "reserved")
        .values(availability="available", updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )


def _relist_book(order: Order, *, was_paid: bool = True) -> None:
    if not was_paid:
        release_reservation(order.book_id)
        return
    book = db.session.get(Book, order.book_id) if order.book_id else None
    if book is not None:
        book.relist()


def _cancel_shipment(order: Order, *, courier: CourierProvider | None, reason: str) -> None:
    shipment_id = order.delivery_data().get("shipment_id") or ""
    if not shipment_id and not order.tracking_number:
        return
    try:
        courier = courier or build_courier_provider(get_settings())
        result = courier.cancel_shipment(
            shipment_id=shipment_id,
            tracking_number=order.tracking_number or "",
            reason=reason,
        )
        if not result.ok:
            current_app.logger.warning("shipment_cancel_rejected order_id=%s code=%s", order.id, result.code)
    except Exception as e:
        current_app.logger.warning("shipment_cancel_failed order_id=%s err=%s", order.id, e)


def _mark_cancelled(order: Order, *, from_statuses, reason: str, decline_reason: str | None = None) -> None:
    now = datetime.utcnow()
    values = {"status": "cancelled", "cancellation_reason": reason, "cancelled_at": now, "updated_at": now}
    if decline_reason is not None:
        values["decline_reason"] = decline_reason
    moved = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status.in_(tuple(from_statuses)), Order.commit_attempt_id.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        db.session.rollback()
        raise InvalidState("Order changed while it was being cancelled")
    db.session.refresh(order)


def decline_commit(
    order_id: str,
    actor_id: str,
    reason: str = "",
    *,
    payments: PaymentsProvider | None = None,
    notifier: OrderNotifier | None = None,
) -> Order:
    order = _load_order(order_id)
    if not actor_id or str(actor_id) != str(order.seller_id):
        raise Unauthorized("Only the seller can decline this order")
    if not order.is_committable:
        raise InvalidState(f"Order cannot be declined while {order.status}")

    reason = (reason or "").strip()[:500] or "Seller declined the order"
    was_paid = order.status != "pending"
    _mark_cancelled(order, from_statuses=COMMITTABLE_STATUSES, reason=reason, decline_reason=reason)
    refund_order(order, reason="seller_declined", payments=payments)
    _relist_book(order, was_paid=was_paid)
    log_event("commit_declined", actor_user_id=actor_id, subject_type="order", subject_id=order.id, metadata={"reason": reason})
    db.session.commit()
    current_app.logger.info("commit_declined order_id=%s refund=%s", order.id, order.refund_status or "none")

    (notifier or OrderNotifier()).order_cancelled(order, reason=reason)
    return order


def cancel_order(
    order_id: str,
    actor: User | None,
    reason: str = "",
    *,
    payments: PaymentsProvider | None = None,
    courier: CourierProvider | None = None,
    notifier: OrderNotifier | None = None,
) -> Order:
    if actor is None:
        raise Unauthorized()
    order = _load_order(order_id)
    if actor.id not in (order.buyer_id, order.seller_id) and not actor.is_admin:
        raise Forbidden()
    if order.status in TERMINAL_STATUSES:
        raise InvalidState(f"Order is already {order.status}")
    if order.status in DISPATCHED_STATES or (order.delivery_status or "") in DISPATCHED_STATES:
        raise InvalidState("Order has already been collected by the courier")
    if order.status not in CANCELLABLE_STATUSES:
        raise InvalidState(f"Order cannot be cancelled while {order.status}")

    reason = (reason or "").strip()[:500] or "Cancelled by user"
    had_shipment = order.status == "committed"
    was_paid = order.status != "pending"
    _mark_cancelled(order, from_statuses=CANCELLABLE_STATUSES, reason=reason)
    if had_shipment:
        _cancel_shipment(order, courier=courier, reason=reason)
    refund_order(order, reason="order_cancelled", payments=payments)
    _relist_book(order, was_paid=was_paid)
    log_event("order_cancelled", actor_user_id=actor.id, subject_type="order", subject_id=order.id, metadata={"reason": reason})
    db.session.commit()

    (notifier or OrderNotifier()).order_cancelled(order, reason=reason)
    return order


def expire_overdue_commitments(
    now: datetime | None = None,
    *,
    payments: PaymentsProvider | None = None,
    notifier: OrderNotifier | None = None,
    limit: int = 200,
) -> dict:
    """Cancel paid/pending orders whose commit deadline has passed."""
    now = now or datetime.utcnow()
    rows = (
        Order.query.filter(
            Order.status.in_(COMMITTABLE_STATUSES),
            Order.commit_deadline.isnot(None),
            Order.commit_deadline < now,
        )
        .order_by(Order.commit_deadline.asc())
        .limit(max(1, int(limit)))
        .all()
    )
    expired, skipped = [], []
    notifier = notifier or OrderNotifier()
    for order in rows:
        was_paid = order.status != "pending"
        try:
            _mark_cancelled(order, from_statuses=COMMITTABLE_STATUSES, reason="commit_deadline_missed")
        except InvalidState:
            skipped.append(order.id)
            continue
        refund_order(order, reason="commit_deadline_missed", payments=payments)
        _relist_book(order, was_paid=was_paid)
        log_event(
            "commit_deadline_missed",
            subject_type="order",
            subject_id=order.id,
            idempotency_key=f"commit_expired:{order.id}",
        )
        db.session.commit()
        expired.append(order.id)
        notifier.order_cancelled(order, reason="Seller did not commit within the allowed time")

    if expired:
        current_app.logger.info("commit_deadline_sweep expired=%s skipped=%s", len(expired), len(skipped))
    return {"ok": True, "expired": expired, "skipped": skipped, "checked": len(rows)}


def release_abandoned_checkouts(now: datetime | None = None, *, limit: int = 200) -> dict:
    """Cancel unpaid checkouts older than CHECKOUT_HOLD_MINUTES and put their books back."""
    now = now or datetime.utcnow()
    hold = config_int("CHECKOUT_HOLD_MINUTES", 60, minimum=5, maximum=1440)
    rows = (
        Order.query.filter(
            Order.status == "pending",
            Order.payment_status.in_(("pending", "failed")),
            Order.created_at < now - timedelta(minutes=hold),
        )
        .order_by(Order.created_at.asc())
        .limit(max(1, int(limit)))
        .all()
    )
    released = []
    for order in rows:
        try:
            _mark_cancelled(order, from_statuses=("pending",), reason="checkout_abandoned")
        except InvalidState:
            continue
        release_reservation(order.book_id)
        log_event("checkout_abandoned", subject_type="order", subject_id=order.id, metadata={"book_id": order.book_id})
        db.session.commit()
        released.append(order.id)

    if released:
        current_app.logger.info("checkout_hold_sweep released=%s", len(released))
    return {"ok": True, "released": released}


def normalize_courier_status(raw: str) -> str:
    key = (raw or "").strip().lower().replace("-", "_").replace(" ", "_")
    return _COURIER_STATUS_ALIASES.get(key, key)


def _find_order_for_tracking(update_: TrackingUpdate) -> Order | None:
    if update_.shipment_id:
        for order in Order.query.filter(Order.delivery_data_json.contains(update_.shipment_id)).limit(5).all():
            if order.delivery_data().get("shipment_id") == update_.shipment_id:
                return order
    if update_.tracking_number:
        return Order.query.filter_by(tracking_number=update_.tracking_number).first()
    return None


def apply_courier_tracking(update_: TrackingUpdate, *, notifier: OrderNotifier | None = None) -> Order | None:
    order = _find_order_for_tracking(update_)
    if order is None:
        current_app.logger.info(
            "tracking_update_unmatched event=%s shipment_id=%s tracking=%s",
            update_.event_type,
            update_.shipment_id,
            update_.tracking_number,
        )
        return None

    event_type = (update_.event_type or "").strip().lower()
    now = datetime.utcnow()
    became_delivered = False

    if event_type in ("shipment.created", "shipment.submitted"):
        if update_.tracking_number:
            order.tracking_number = update_.tracking_number
        if order.delivery_status in (None, "", "scheduled"):
            order.delivery_status = "submitted"
    else:
        status = "delivered" if event_type == "shipment.delivered" else normalize_courier_status(update_.status)
        if status:
            tracking = order.tracking_data()
            events = list(tracking.get("events") or [])
            events.append({"status": status, "raw_status": update_.status, "event": event_type, "at": now.isoformat()})
            tracking["events"] = events[-100:]
            tracking["last_status"] = status
            order.set_tracking_data(tracking)
            order.delivery_status = status

            if status in ("collected", "picked_up", "in_transit", "out_for_delivery") and order.status == "committed":
                order.status = "in_transit"
            elif status == "delivered" and order.status in ("committed", "in_transit", "pending_delivery"):
                order.status = "delivered"
                became_delivered = True

    order.updated_at = now
    log_event(
        "courier_tracking",
        subject_type="order",
        subject_id=order.id,
        metadata={"event": event_type, "status": update_.status, "delivery_status": order.delivery_status},
    )
    db.session.commit()

    if became_delivered:
        (notifier or OrderNotifier()).delivery_confirmation_needed(order)
    return order


def confirm_receipt(
    order_id: str,
    buyer_id: str,
    received: bool,
    feedback: str = "",
    *,
    notifier: OrderNotifier | None = None,
) -> dict:
    order = _load_order(order_id)
    if not buyer_id or str(buyer_id) != str(order.buyer_id):
        raise Forbidden("Only the buyer can confirm receipt")
    if order.status not in RECEIPT_STATUSES:
        raise InvalidState(f"Receipt cannot be confirmed while the order is {order.status}")
    if BuyerFeedback.query.filter_by(order_id=order.id).first():
        raise InvalidState("Receipt was already confirmed for this order")

    notifier = notifier or OrderNotifier()
    row = BuyerFeedback(
        order_id=order.id,
        buyer_id=order.buyer_id,
        seller_id=order.seller_id,
        book_id=order.book_id,
        buyer_status="received" if received else "not_received",
        buyer_feedback=(feedback or "").strip()[:2000] or None,
        order_amount=int(order.amount or 0),
        order_total_amount=order.total_amount or 0,
        order_status=order.status,
        delivery_status=order.delivery_status,
        tracking_number=order.tracking_number,
    )
    db.session.add(row)

    if not received:
        log_event(
            "receipt_disputed",
            actor_user_id=buyer_id,
            subject_type="order",
            subject_id=order.id,
            severity="WARN",
            metadata={"feedback": (feedback or "")[:500]},
        )
        db.session.commit()
        notifier.receipt_disputed(order, feedback=feedback)
        return {"feedback": row.to_dict(), "credit": None}

    order.status = "completed"
    order.delivery_status = "delivered"
    order.updated_at = datetime.utcnow()
    log_event("receipt_confirmed", actor_user_id=buyer_id, subject_type="order", subject_id=order.id)
    db.session.commit()

    credit = None
    gross = order.items_subtotal_minor()
    if gross > 0:
        credit = credit_on_collection(order.id, order.seller_id, gross)
        if not credit.duplicate:
            notifier.wallet_credited(order, credit_minor=credit.credit_amount, new_balance_minor=credit.new_balance)
    return {"feedback": row.to_dict(), "credit": credit.to_dict() if credit else None}


def delete_order(order_id: str, actor: User | None) -> None:
    if actor is None:
        raise Unauthorized()
    if not actor.is_admin:
        raise Forbidden("Admin access required")
    order = _load_order(order_id)

    settled = WalletTransaction.query.filter_by(reference_order_id=order.id, status="completed").count()
    if settled:
        raise InvalidState("Order has settled wallet transactions and cannot be deleted")

    Notification.query.filter_by(order_id=order.id).delete(synchronize_session=False)
    BuyerFeedback.query.filter_by(order_id=order.id).delete(synchronize_session=False)
    db.session.delete(order)
    log_event("order_deleted", actor_user_id=actor.id, subject_type="order", subject_id=order_id, severity="WARN")
    db.session.commit()
    current_app.logger.warning("order_deleted order_id=%s admin_id=%s", order_id, actor.id)
