from __future__ import annotations

import os

from jinja2 import Environment, FileSystemLoader, select_autoescape

from rebooked.integrations.email.base import EmailMessageSpec
from rebooked.models import Order
from rebooked.utils.money import PLATFORM_COMMISSION_BPS, money_minor_to_major

_templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates", "email")
_jinja_env = Environment(
    loader=FileSystemLoader(_templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
)

APP_NAME = os.getenv("APP_NAME", "ReBooked Solutions")


def render_email(template_name: str, **context) -> str:
    base = {"app_name": APP_NAME, "action_url": "", "action_label": ""}
    base.update(context or {})
    return _jinja_env.get_template(template_name).render(**base)


def _titles(order: Order) -> str:
    titles = [str(item.get("title") or "Book") for item in order.items()]
    return ", ".join(titles) or "your book"


def _tracking(order: Order) -> str:
    return order.tracking_number or "TBA"


def _order_url(frontend_url: str, order: Order) -> str:
    return f"{(frontend_url or '').rstrip('/')}/orders/{order.id}"


def buyer_commit_confirmation(order: Order, *, delivery_type: str, frontend_url: str) -> EmailMessageSpec:
    method = "to your selected locker" if delivery_type == "locker" else "to your address"
    html = render_email(
        "buyer_commit_confirmation.html",
        heading="Your Order is Confirmed!",
        name=order.buyer_full_name or "Customer",
        titles=_titles(order),
        method=method,
        tracking=_tracking(order),
        action_url=_order_url(frontend_url, order),
        action_label="View your order",
    )
    text = (
        f"Hi {order.buyer_full_name or 'Customer'}, the seller committed to your order for {_titles(order)}. "
        f"Delivery {method}. Tracking number: {_tracking(order)}."
    )
    return EmailMessageSpec(
        to=order.buyer_email or "",
        subject="Order Confirmed - Pickup Scheduled",
        html=html,
        text=text,
    )


def seller_commit_confirmation(order: Order, *, pickup_type: str, frontend_url: str) -> EmailMessageSpec:
    if pickup_type == "locker":
        instructions = "Drop the parcel at your selected locker within the courier's window."
    else:
        instructions = "A courier will collect the parcel from your pickup address. Please have it packaged and ready."
    html = render_email(
        "seller_commit_confirmation.html",
        heading="Commitment Confirmed",
        name=order.seller_full_name or "Seller",
        titles=_titles(order),
        instructions=instructions,
        tracking=_tracking(order),
        action_url=_order_url(frontend_url, order),
        action_label="Open the order",
    )
    text = f"Thank you for committing to sell {_titles(order)}. {instructions} Tracking number: {_tracking(order)}."
    return EmailMessageSpec(
        to=order.seller_email or "",
        subject="Order Commitment Confirmed - Prepare for Pickup",
        html=html,
        text=text,
    )


def seller_new_order(order: Order, *, window_hours: int, frontend_url: str) -> EmailMessageSpec:
    html = render_email(
        "seller_new_order.html",
        heading="New Order - Action Required",
        name=order.seller_full_name or "Seller",
        titles=_titles(order),
        window_hours=int(window_hours),
        action_url=_order_url(frontend_url, order),
        action_label="Commit to sale",
    )
    return EmailMessageSpec(
        to=order.seller_email or "",
        subject=f"New Order - Commit Within {int(window_hours)} Hours",
        html=html,
        text=f"A buyer has paid for {_titles(order)}. Commit within {int(window_hours)} hours.",
    )


def order_cancelled(order: Order, *, recipient: str, reason: str) -> EmailMessageSpec:
    to_buyer = recipient == "buyer"
    name = order.buyer_full_name if to_buyer else order.seller_full_name
    refund_line = "Any payment you made will be refunded to your original payment method." if to_buyer else ""
    html = render_email(
        "order_cancelled.html",
        heading="Order Cancelled",
        name=name or ("Customer" if to_buyer else "Seller"),
        titles=_titles(order),
        reason=reason or "Not specified",
        refund_line=refund_line,
    )
    return EmailMessageSpec(
        to=(order.buyer_email if to_buyer else order.seller_email) or "",
        subject="Order Cancelled",
        html=html,
        text=f"The order for {_titles(order)} has been cancelled. Reason: {reason or 'Not specified'}. {refund_line}".strip(),
    )


def seller_wallet_credit(order: Order, *, credit_minor: int, new_balance_minor: int) -> EmailMessageSpec:
    credit = money_minor_to_major(credit_minor)
    balance = money_minor_to_major(new_balance_minor)
    html = render_email(
        "seller_wallet_credit.html",
        heading="Payment Received",
        name=order.seller_full_name or "Seller",
        titles=_titles(order),
        credit=credit,
        balance=balance,
        commission_percent=PLATFORM_COMMISSION_BPS // 100,
    )
    return EmailMessageSpec(
        to=order.seller_email or "",
        subject="Payment Received - Funds Added to Your Wallet",
        html=html,
        text=f"R{credit} was added to your wallet. Available balance: R{balance}.",
    )


def payout_status(*, to: str, name: str, status: str, amount_minor: int, notes: str = "") -> EmailMessageSpec:
    amount = money_minor_to_major(amount_minor)
    headline = {
        "approved": "Your payout request was approved",
        "denied": "Your payout request was declined",
        "paid": "Your payout has been paid",
    }.get(status, f"Payout request {status}")
    return EmailMessageSpec(
        to=to,
        subject=f"Payout {status.capitalize()}",
        html=render_email(
            "payout_status.html",
            heading="Payout Update",
            name=name or "there",
            headline=headline,
            amount=amount,
            notes=notes,
        ),
        text=f"{headline}: R{amount}. {notes}".strip(),
    )
