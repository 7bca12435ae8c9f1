from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from rebooked.extensions import db
from rebooked.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    IntegrationRequestError,
)
from rebooked.integrations.courier.base import CourierProvider, RateQuote
from rebooked.integrations.payments.base import CallbackUrls, PaymentsProvider, PaymentWebhookEvent
from rebooked.integrations.payments.factory import build_payments_provider
from rebooked.models import Book, Order, User
from rebooked.models.json_columns import dump_json
from rebooked.services.address_vault import AddressVault
from rebooked.services.delivery_quote_service import (
    build_rate_request,
    normalize_delivery_type,
    quote_delivery,
    select_quote,
)
from rebooked.services.errors import (
    AddressEncryptionFailed,
    BookUnavailable,
    CheckoutError,
    InvalidDeliveryOption,
    OrderNotFound,
    PaymentInitializationFailed,
    Unauthorized,
)
from rebooked.services.notification_service import OrderNotifier
from rebooked.services.order_lifecycle_service import refund_order, release_reservation
from rebooked.services.webhook_ledger import claim_webhook, fail_webhook, settle_webhook
from rebooked.utils.events import log_event
from rebooked.utils.money import (
    DEFAULT_PLATFORM_FEE_MINOR,
    checkout_totals_minor,
    money_major_to_minor,
    money_minor_to_major,
)
from rebooked.utils.observability import bind_log_context
from rebooked.utils.settings import config_int, get_settings

# Gateway failure code -> what the buyer sees
PAYMENT_ERROR_MESSAGES = {
    "PROVIDER_TIMEOUT": "The payment provider took too long to respond. Please try again.",
    "PAYSTACK_AUTH_FAILED": "Payments are temporarily unavailable. Please try again later.",
    "PAYSTACK_RATE_LIMITED": "Too many payment attempts. Please wait a moment and retry.",
    "PAYSTACK_INIT_FAILED": "We could not start your payment. Please try again.",
    "PAYSTACK_PROVIDER_DOWN": "The payment provider is unavailable right now. Please try again later.",
    "BOBPAY_AUTH_FAILED": "Payments are temporarily unavailable. Please try again later.",
    "BOBPAY_RATE_LIMITED": "Too many payment attempts. Please wait a moment and retry.",
    "BOBPAY_INIT_FAILED": "We could not start your payment. Please try again.",
    "BOBPAY_PROVIDER_DOWN": "The payment provider is unavailable right now. Please try again later.",
    "INTEGRATION_DISABLED": "Payments are disabled in this environment.",
    "INTEGRATION_MISCONFIGURED": "Payments are not configured. Please contact support.",
}
DEFAULT_PAYMENT_ERROR = "Payment could not be started. Please try again."

SUCCESS_STATUSES = ("success",)
FAILED_STATUSES = ("failed", "cancelled")


@dataclass
class CheckoutSession:
    order: Order
    authorization_url: str
    reference: str
    provider: str
    access_code: str = ""

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "payment": {
                "provider": self.provider,
                "reference": self.reference,
                "authorization_url": self.authorization_url,
                "access_code": self.access_code,
            },
        }


@dataclass
class OrderConfirmation:
    order_id: str
    book_id: str | None
    buyer_id: str
    seller_id: str
    book_titles: list[str]
    amount_minor: int
    total_amount: str
    status: str
    payment_reference: str
    created_at: str | None
    commit_deadline: str | None = None
    already_confirmed: bool = False

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "book_id": self.book_id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "book_titles": list(self.book_titles),
            "amount_minor": self.amount_minor,
            "total_amount": self.total_amount,
            "status": self.status,
            "payment_reference": self.payment_reference,
            "created_at": self.created_at,
            "commit_deadline": self.commit_deadline,
            "already_confirmed": self.already_confirmed,
        }


def payment_error_message(code: str) -> str:
    key = (code or "").split(":", 1)[0].strip().upper()
    return PAYMENT_ERROR_MESSAGES.get(key, DEFAULT_PAYMENT_ERROR)


def _new_reference() -> str:
    return f"RB-{uuid.uuid4().hex[:20].upper()}"


def _callback_urls(order_id: str) -> CallbackUrls:
    front = get_settings().frontend_url
    return CallbackUrls(
        success_url=f"{front}/checkout/success?order_id={order_id}",
        cancel_url=f"{front}/checkout/cancelled?order_id={order_id}",
        notify_url=f"{front}/api/webhooks/{get_settings().payments_provider}",
        pending_url=f"{front}/checkout/pending?order_id={order_id}",
    )


def _fire_affiliate_hook(order: Order) -> None:
    try:
        log_event(
            "affiliate_earning_requested",
            actor_user_id=order.buyer_id,
            subject_type="order",
            subject_id=order.id,
            metadata={"book_id": order.book_id, "amount_minor": int(order.amount or 0)},
        )
    except Exception as e:
        current_app.logger.warning("affiliate_hook_failed order_id=%s err=%s", order.id, e)


def _reserve_book(book: Book) -> None:
    """Take the book off the shelf for this checkout, or raise BookUnavailable."""
    held = db.session.execute(
        update(Book)
        .where(Book.id == book.id, Book.sold.is_(False), Book.availability == "available")
        .values(availability="reserved", updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if held.rowcount != 1:
        db.session.rollback()
        raise BookUnavailable()


def get_delivery_quotes(
    book_id: str,
    *,
    shipping_address: dict | None = None,
    delivery_type: str = "door",
    delivery_locker: dict | None = None,
    courier: CourierProvider | None = None,
    vault: AddressVault | None = None,
) -> list[RateQuote]:
    book = db.session.get(Book, book_id) if book_id else None
    if book is None or book.sold or (book.availability or "available") != "available":
        raise BookUnavailable()
    request = build_rate_request(
        book,
        delivery_type=delivery_type,
        shipping_address=shipping_address,
        delivery_locker=delivery_locker,
        vault=vault,
    )
    return quote_delivery(request, courier=courier)


def create_checkout(
    buyer_id: str,
    book_id: str,
    *,
    shipping_address: dict | None = None,
    delivery_type: str = "door",
    delivery_locker: dict | None = None,
    courier_slug: str = "",
    service_code: str = "",
    payments: PaymentsProvider | None = None,
    courier: CourierProvider | None = None,
    vault: AddressVault | None = None,
) -> CheckoutSession:
    buyer = db.session.get(User, buyer_id) if buyer_id else None
    if buyer is None:
        raise Unauthorized()
    book = db.session.get(Book, book_id) if book_id else None
    if book is None or book.sold or (book.availability or "available") != "available":
        raise BookUnavailable()
    if book.seller_id == buyer.id:
        raise BookUnavailable("You cannot buy your own book")
    seller = db.session.get(User, book.seller_id)

    delivery_type = normalize_delivery_type(delivery_type)
    locker = delivery_locker if isinstance(delivery_locker, dict) else {}
    if delivery_type == "locker" and not (locker.get("id") or locker.get("location_id")):
        raise CheckoutError("Select a delivery locker")
    if delivery_type != "locker" and not shipping_address:
        raise CheckoutError("A shipping address is required")
    courier_slug = (courier_slug or "").strip()
    service_code = (service_code or "").strip()
    if not courier_slug or not service_code:
        raise InvalidDeliveryOption("Choose a delivery option")

    vault = vault or AddressVault()
    encrypted, version = None, None
    if shipping_address:
        try:
            encrypted, version = vault.encrypt(shipping_address)
        except Exception as e:
            current_app.logger.warning("checkout_address_encrypt_failed buyer_id=%s err=%s", buyer.id, e)
            raise AddressEncryptionFailed() from e

    # The delivery price always comes from a fresh quote, never from the client.
    rate_request = build_rate_request(
        book,
        delivery_type=delivery_type,
        shipping_address=shipping_address,
        delivery_locker=locker,
        vault=vault,
    )
    quote = select_quote(quote_delivery(rate_request, courier=courier), courier_slug, service_code)

    totals = checkout_totals_minor(
        book_price_minor=money_major_to_minor(book.price),
        delivery_fee_minor=int(quote.amount_minor),
        platform_fee_minor=config_int("PLATFORM_FEE_MINOR", DEFAULT_PLATFORM_FEE_MINOR, minimum=0),
    )
    _reserve_book(book)
    order = Order(
        buyer_id=buyer.id,
        seller_id=book.seller_id,
        book_id=book.id,
        buyer_full_name=buyer.full_name,
        buyer_email=buyer.email,
        buyer_phone_number=buyer.phone_number,
        seller_full_name=seller.full_name if seller else None,
        seller_email=seller.email if seller else None,
        seller_phone_number=seller.phone_number if seller else None,
        amount=totals["total_minor"],
        total_amount=totals["total_major"],
        book_price_minor=totals["book_price_minor"],
        delivery_fee_minor=totals["delivery_fee_minor"],
        platform_fee_minor=totals["platform_fee_minor"],
        status="pending",
        payment_status="pending",
        delivery_type=delivery_type,
        delivery_option=quote.service_name or quote.service_level_code,
        selected_courier_slug=quote.provider_slug,
        selected_service_code=quote.service_level_code,
        selected_shipping_cost=money_minor_to_major(totals["delivery_fee_minor"]),
        shipping_address_encrypted=encrypted,
        address_encryption_version=version,
    )
    order.set_items([{"book_id": book.id, "title": book.title, "price": float(book.price or 0), "quantity": 1}])
    if delivery_type == "locker":
        order.delivery_locker_location_id = str(locker.get("id") or locker.get("location_id"))
        order.delivery_locker_provider_slug = str(locker.get("provider_slug") or "pargo")
        order.delivery_locker_data_json = dump_json(locker)
    db.session.add(order)
    db.session.commit()
    bind_log_context(order_id=order.id, book_id=book.id, seller_id=order.seller_id)
    current_app.logger.info("checkout_order_created order_id=%s total_minor=%s", order.id, order.amount)

    _fire_affiliate_hook(order)

    reference = _new_reference()
    try:
        provider = payments or build_payments_provider(get_settings())
        result = provider.initialize(
            order_id=order.id,
            amount_minor=int(order.amount),
            email=buyer.email,
            reference=reference,
            callback_urls=_callback_urls(order.id),
            item_name=book.title,
            metadata={"order_id": order.id, "book_id": book.id, "buyer_id": buyer.id},
        )
    except (IntegrationDisabledError, IntegrationMisconfiguredError, IntegrationRequestError) as e:
        code = getattr(e, "code", "") or str(e)
        order.payment_status = "failed"
        release_reservation(order.book_id)
        log_event(
            "payment_init_failed",
            actor_user_id=buyer.id,
            subject_type="order",
            subject_id=order.id,
            severity="WARN",
            metadata={"code": code},
        )
        db.session.commit()
        current_app.logger.warning("payment_init_failed order_id=%s code=%s", order.id, code)
        raise PaymentInitializationFailed(payment_error_message(code), cause_code=code) from e

    order.payment_provider = result.provider
    order.payment_reference = result.reference or reference
    db.session.commit()
    return CheckoutSession(
        order=order,
        authorization_url=result.authorization_url,
        reference=order.payment_reference,
        provider=result.provider,
        access_code=result.access_code,
    )


def _confirmation(order: Order, *, already: bool) -> OrderConfirmation:
    return OrderConfirmation(
        order_id=order.id,
        book_id=order.book_id,
        buyer_id=order.buyer_id,
        seller_id=order.seller_id,
        book_titles=[str(i.get("title") or "Book") for i in order.items()],
        amount_minor=int(order.amount or 0),
        total_amount=str(money_minor_to_major(order.amount)),
        status=order.status,
        payment_reference=order.payment_reference or "",
        created_at=order.created_at.isoformat() if order.created_at else None,
        commit_deadline=order.commit_deadline.isoformat() if order.commit_deadline else None,
        already_confirmed=already,
    )


def _sell_book(book_id: str, now: datetime) -> bool:
    sold = db.session.execute(
        update(Book)
        .where(Book.id == book_id, Book.sold.is_(False))
        .values(sold=True, availability="sold", sold_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return sold.rowcount == 1


def _refund_orphaned_payment(order: Order, *, reason: str) -> None:
    """Money arrived for an order that can no longer be fulfilled: give it back."""
    order.payment_status = "paid"
    refund_order(order, reason=reason)
    log_event(
        "orphaned_payment_refunded",
        actor_user_id=order.buyer_id,
        subject_type="order",
        subject_id=order.id,
        severity="WARN",
        idempotency_key=f"orphaned_payment:{order.id}",
        metadata={"reason": reason, "refund_status": order.refund_status or ""},
    )
    db.session.commit()
    current_app.logger.warning(
        "orphaned_payment order_id=%s reason=%s refund=%s", order.id, reason, order.refund_status or "none"
    )


def _reject_payment_for_sold_book(order: Order, *, notifier: OrderNotifier | None) -> OrderConfirmation:
    now = datetime.utcnow()
    moved = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == "pending")
        .values(
            status="cancelled",
            cancellation_reason="book_already_sold",
            cancelled_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        db.session.rollback()
        db.session.refresh(order)
        return _confirmation(order, already=True)
    db.session.commit()
    db.session.refresh(order)
    _refund_orphaned_payment(order, reason="book_already_sold")
    (notifier or OrderNotifier()).order_cancelled(order, reason="This book was sold to another buyer first")
    return _confirmation(order, already=False)


def confirm_payment(
    reference: str,
    provider_status: str,
    amount_minor: int | None = None,
    *,
    notifier: OrderNotifier | None = None,
) -> OrderConfirmation:
    """Apply a gateway verdict to the order. Safe to call repeatedly."""
    order = Order.query.filter_by(payment_reference=(reference or "").strip()).first() if reference else None
    if order is None:
        raise OrderNotFound("No order for that payment reference")

    status = (provider_status or "").strip().lower()
    if status in SUCCESS_STATUSES:
        if amount_minor and int(amount_minor) != int(order.amount or 0):
            current_app.logger.warning(
                "payment_amount_mismatch order_id=%s expected=%s got=%s", order.id, order.amount, amount_minor
            )
            log_event(
                "payment_amount_mismatch",
                subject_type="order",
                subject_id=order.id,
                severity="WARN",
                metadata={"expected": int(order.amount or 0), "received": int(amount_minor)},
            )
        now = datetime.utcnow()
        hours = config_int("COMMIT_WINDOW_HOURS", 48, minimum=1, maximum=720)
        moved = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == "pending")
            .values(
                status="paid",
                payment_status="paid",
                paid_at=now,
                commit_deadline=now + timedelta(hours=hours),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            db.session.rollback()
            db.session.refresh(order)
            if order.status == "cancelled" and (order.payment_status or "") in ("pending", "failed"):
                _refund_orphaned_payment(order, reason="payment_after_cancellation")
            return _confirmation(order, already=True)

        if order.book_id and not _sell_book(order.book_id, now):
            db.session.rollback()
            return _reject_payment_for_sold_book(order, notifier=notifier)
        log_event(
            "payment_confirmed",
            actor_user_id=order.buyer_id,
            subject_type="order",
            subject_id=order.id,
            idempotency_key=f"payment_confirmed:{order.id}",
            metadata={"reference": order.payment_reference, "amount_minor": int(amount_minor or order.amount or 0)},
        )
        db.session.commit()
        db.session.refresh(order)
        current_app.logger.info("payment_confirmed order_id=%s deadline=%s", order.id, order.commit_deadline)
        (notifier or OrderNotifier()).seller_new_order(order)
        return _confirmation(order, already=False)

    if status in FAILED_STATUSES:
        now = datetime.utcnow()
        moved = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == "pending")
            .values(
                status="cancelled",
                payment_status="failed",
                cancellation_reason=f"payment_{status}",
                cancelled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount == 1:
            release_reservation(order.book_id)
            log_event("payment_failed", subject_type="order", subject_id=order.id, metadata={"status": status})
        db.session.commit()
        db.session.refresh(order)
        return _confirmation(order, already=moved.rowcount != 1)

    db.session.refresh(order)
    return _confirmation(order, already=False)


def verify_payment(
    reference: str,
    actor_id: str,
    *,
    payments: PaymentsProvider | None = None,
    notifier: OrderNotifier | None = None,
) -> OrderConfirmation:
    """Client callback: ask the gateway again rather than trusting the browser."""
    order = Order.query.filter_by(payment_reference=(reference or "").strip()).first() if reference else None
    if order is None:
        raise OrderNotFound("No order for that payment reference")
    if str(order.buyer_id) != str(actor_id or ""):
        raise Unauthorized()
    if order.status != "pending":
        return _confirmation(order, already=True)

    try:
        provider = payments or build_payments_provider(get_settings(), provider=order.payment_provider or None)
        verdict = provider.verify(order.payment_reference)
    except (IntegrationDisabledError, IntegrationMisconfiguredError, IntegrationRequestError) as e:
        code = getattr(e, "code", "") or str(e)
        raise PaymentInitializationFailed(payment_error_message(code), cause_code=code) from e
    return confirm_payment(order.payment_reference, verdict.status, verdict.amount_minor or None, notifier=notifier)


def _payload_hash(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body or b"").hexdigest()


def handle_payment_webhook(
    provider_name: str,
    *,
    raw_body: bytes,
    headers,
    payments: PaymentsProvider | None = None,
    notifier: OrderNotifier | None = None,
) -> tuple[dict, int]:
    """Verify, dedupe and apply a gateway callback. Returns (body, http_status)."""
    try:
        payload = json.loads((raw_body or b"{}").decode("utf-8") or "{}")
    except (ValueError, UnicodeDecodeError):
        return {"ok": False, "error": "INVALID_JSON"}, 400
    if not isinstance(payload, dict):
        return {"ok": False, "error": "INVALID_JSON"}, 400

    try:
        provider = payments or build_payments_provider(get_settings(), provider=provider_name)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        current_app.logger.error("payment_webhook_provider_unavailable provider=%s err=%s", provider_name, e)
        return {"ok": False, "error": e.code}, 503

    try:
        verified = provider.verify_webhook(raw_body=raw_body or b"", headers=headers, payload=payload)
    except IntegrationRequestError as e:
        current_app.logger.warning("payment_webhook_verify_error provider=%s code=%s", provider_name, e.code)
        verified = False
    if not verified:
        log_event(
            "payment_webhook_rejected",
            subject_type="webhook",
            subject_id=provider_name,
            severity="WARN",
            metadata={"payload_hash": _payload_hash(raw_body)},
        )
        db.session.commit()
        return {"ok": False, "error": "INVALID_SIGNATURE"}, 401

    event: PaymentWebhookEvent | None = provider.parse_webhook(payload)
    if event is None:
        return {"ok": True, "ignored": True}, 200

    row = claim_webhook(provider_name, event.event_id, reference=event.reference, payload_hash=_payload_hash(raw_body))
    if row is None:
        return {"ok": True, "duplicate": True}, 200

    try:
        confirmation = confirm_payment(event.reference, event.status, event.amount_minor or None, notifier=notifier)
    except OrderNotFound:
        settle_webhook(row, "ignored", error="ORDER_NOT_FOUND")
        return {"ok": True, "ignored": True}, 200
    except Exception as e:
        fail_webhook(row, e)
        raise

    settle_webhook(row, "processed")
    return {"ok": True, "order_id": confirmation.order_id, "status": confirmation.status}, 200
