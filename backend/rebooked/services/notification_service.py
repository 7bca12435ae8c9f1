from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from rebooked.extensions import db
from rebooked.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rebooked.integrations.email.base import EmailMessageSpec, EmailProvider
from rebooked.integrations.email.factory import build_email_provider
from rebooked.models import Notification, Order
from rebooked.services import email_templates
from rebooked.services.errors import NotificationFailed
from rebooked.utils.observability import get_request_id
from rebooked.utils.settings import config_int, get_settings


@dataclass
class FanoutReport:
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {"sent": list(self.sent), "failed": list(self.failed)}


def create_notification(
    *,
    user_id: str,
    title: str,
    message: str,
    type: str = "info",
    order_id: str | None = None,
    meta: dict | None = None,
) -> Notification:
    row = Notification(user_id=user_id, order_id=order_id, type=type, title=title[:160], message=message)
    if meta:
        row.set_meta(meta)
    try:
        db.session.add(row)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        raise NotificationFailed(f"notification insert failed: {e}") from e
    return row


class OrderNotifier:
    """Best-effort email + in-app fan-out for order transitions.

    Every dispatch is guarded on its own; nothing here raises to the caller.
    """

    def __init__(self, email_provider: EmailProvider | None = None):
        self._email_provider = email_provider

    def _provider(self) -> EmailProvider:
        if self._email_provider is None:
            self._email_provider = build_email_provider(get_settings())
        return self._email_provider

    def send_email(self, message: EmailMessageSpec, *, reference: str = "") -> None:
        if not (message.to or "").strip():
            raise NotificationFailed("missing recipient")
        settings = get_settings()
        if settings.notify_queue and self._email_provider is None:
            from rebooked.tasks.notification_tasks import send_email_task

            send_email_task.delay(
                to=message.to,
                subject=message.subject,
                html=message.html,
                text=message.text,
                reference=reference,
                trace_id=get_request_id(),
            )
            return
        try:
            result = self._provider().send(message)
        except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
            raise NotificationFailed(str(e)) from e
        if not result.ok:
            raise NotificationFailed(f"{result.code}:{result.message}")

    def _attempt(self, report: FanoutReport, label: str, fn, *, order_id: str = "") -> None:
        try:
            fn()
            report.sent.append(label)
        except Exception as e:
            report.failed.append(label)
            current_app.logger.warning("notification_failed kind=%s order_id=%s err=%s", label, order_id, e)

    def _frontend_url(self) -> str:
        return get_settings().frontend_url

    def order_committed(self, order: Order, *, pickup_type: str, delivery_type: str) -> FanoutReport:
        report = FanoutReport()
        tracking = order.tracking_number or "TBA"
        front = self._frontend_url()
        self._attempt(
            report,
            "buyer_email",
            lambda: self.send_email(
                email_templates.buyer_commit_confirmation(order, delivery_type=delivery_type, frontend_url=front),
                reference=f"commit:{order.id}:buyer",
            ),
            order_id=order.id,
        )
        self._attempt(
            report,
            "seller_email",
            lambda: self.send_email(
                email_templates.seller_commit_confirmation(order, pickup_type=pickup_type, frontend_url=front),
                reference=f"commit:{order.id}:seller",
            ),
            order_id=order.id,
        )

        self._attempt(
            report,
            "buyer_notification",
            lambda: create_notification(
                user_id=order.buyer_id,
                order_id=order.id,
                type="success",
                title="Order Confirmed",
                message=f"Your order has been confirmed and pickup is scheduled. Tracking: {tracking}",
            ),
            order_id=order.id,
        )
        self._attempt(
            report,
            "seller_notification",
            lambda: create_notification(
                user_id=order.seller_id,
                order_id=order.id,
                type="success",
                title="Order Committed",
                message=f"You committed to the sale. The courier pickup is scheduled. Tracking: {tracking}",
            ),
            order_id=order.id,
        )
        return report

    def seller_new_order(self, order: Order) -> FanoutReport:
        report = FanoutReport()
        hours = config_int("COMMIT_WINDOW_HOURS", 48, minimum=1, maximum=720)
        self._attempt(
            report,
            "seller_email",
            lambda: self.send_email(
                email_templates.seller_new_order(order, window_hours=hours, frontend_url=self._frontend_url()),
                reference=f"paid:{order.id}:seller",
            ),
            order_id=order.id,
        )
        self._attempt(
            report,
            "seller_notification",
            lambda: create_notification(
                user_id=order.seller_id,
                order_id=order.id,
                type="warning",
                title="New Order - Commit Required",
                message=f"A buyer paid for your book. Commit within {hours} hours to avoid cancellation.",
            ),
            order_id=order.id,
        )
        return report

    def order_cancelled(self, order: Order, *, reason: str) -> FanoutReport:
        report = FanoutReport()
        for role in ("buyer", "seller"):
            self._attempt(
                report,
                f"{role}_email",
                lambda role=role: self.send_email(
                    email_templates.order_cancelled(order, recipient=role, reason=reason),
                    reference=f"cancel:{order.id}:{role}",
                ),
                order_id=order.id,
            )

        self._attempt(
            report,
            "buyer_notification",
            lambda: create_notification(
                user_id=order.buyer_id,
                order_id=order.id,
                type="order_cancelled",
                title="Order Cancelled",
                message=f"Your order has been cancelled. Reason: {reason or 'Not specified'}. Any payment will be refunded.",
            ),
            order_id=order.id,
        )
        self._attempt(
            report,
            "seller_notification",
            lambda: create_notification(
                user_id=order.seller_id,
                order_id=order.id,
                type="order_cancelled",
                title="Order Cancelled",
                message=f"An order has been cancelled. Reason: {reason or 'Not specified'}",
            ),
            order_id=order.id,
        )
        return report

    def delivery_confirmation_needed(self, order: Order) -> FanoutReport:
        report = FanoutReport()
        self._attempt(
            report,
            "notifications",
            lambda: create_notification(
                user_id=order.buyer_id,
                order_id=order.id,
                type="delivery_confirmation_needed",
                title="Your Book Has Arrived!",
                message="Your book has been delivered. Please confirm receipt to complete the transaction.",
            ),
            order_id=order.id,
        )
        return report

    def receipt_disputed(self, order: Order, *, feedback: str) -> FanoutReport:
        report = FanoutReport()
        self._attempt(
            report,
            "notifications",
            lambda: create_notification(
                user_id=order.seller_id,
                order_id=order.id,
                type="warning",
                title="Buyer Reported Non-Receipt",
                message="The buyer reported that the order was not received. Our team will be in touch.",
                meta={"feedback": (feedback or "")[:500]},
            ),
            order_id=order.id,
        )
        return report

    def wallet_credited(self, order: Order, *, credit_minor: int, new_balance_minor: int) -> FanoutReport:
        report = FanoutReport()
        self._attempt(
            report,
            "seller_email",
            lambda: self.send_email(
                email_templates.seller_wallet_credit(order, credit_minor=credit_minor, new_balance_minor=new_balance_minor),
                reference=f"credit:{order.id}",
            ),
            order_id=order.id,
        )
        self._attempt(
            report,
            "notifications",
            lambda: create_notification(
                user_id=order.seller_id,
                order_id=order.id,
                type="success",
                title="Funds Added to Wallet",
                message="The buyer confirmed receipt. Your earnings are now available in your wallet.",
                meta={"credit_minor": int(credit_minor)},
            ),
            order_id=order.id,
        )
        return report

    def payout_updated(self, *, user, payout) -> FanoutReport:
        report = FanoutReport()
        self._attempt(
            report,
            "user_email",
            lambda: self.send_email(
                email_templates.payout_status(
                    to=user.email,
                    name=user.full_name,
                    status=payout.status,
                    amount_minor=payout.amount,
                    notes=payout.admin_notes or "",
                ),
                reference=f"payout:{payout.id}:{payout.status}",
            ),
        )
        self._attempt(
            report,
            "notifications",
            lambda: create_notification(
                user_id=user.id,
                type="info",
                title=f"Payout {payout.status.capitalize()}",
                message=f"Your payout request is now {payout.status}.",
                meta={"payout_id": payout.id},
            ),
        )
        return report
