from __future__ import annotations

from flask import Blueprint, jsonify, request

from rebooked.services.checkout_service import create_checkout, get_delivery_quotes, verify_payment
from rebooked.utils.auth import current_user

checkout_bp = Blueprint("checkout_bp", __name__, url_prefix="/api")


def _delivery_fields(data: dict) -> dict:
    return {
        "shipping_address": data.get("shipping_address") if isinstance(data.get("shipping_address"), dict) else None,
        "delivery_type": str(data.get("delivery_type") or "door"),
        "delivery_locker": data.get("delivery_locker") if isinstance(data.get("delivery_locker"), dict) else None,
    }


@checkout_bp.post("/delivery/quotes")
def delivery_quotes():
    user = current_user()
    if user is None:
        return jsonify({"ok": False, "message": "Unauthorized"}), 401

    data = request.get_json(silent=True) or {}
    book_id = str(data.get("book_id") or "").strip()
    if not book_id:
        return jsonify({"ok": False, "message": "book_id is required"}), 400
    quotes = get_delivery_quotes(book_id, **_delivery_fields(data))
    return jsonify({"ok": True, "quotes": [q.to_dict() for q in quotes]}), 200


@checkout_bp.post("/checkout")
def checkout():
    user = current_user()
    if user is None:
        return jsonify({"ok": False, "message": "Unauthorized"}), 401

    data = request.get_json(silent=True) or {}
    book_id = str(data.get("book_id") or "").strip()
    if not book_id:
        return jsonify({"ok": False, "message": "book_id is required"}), 400

    # Only the chosen option is read from the client; its price is re-quoted.
    delivery = data.get("delivery") if isinstance(data.get("delivery"), dict) else {}
    session = create_checkout(
        user.id,
        book_id,
        courier_slug=str(delivery.get("provider_slug") or delivery.get("courier") or ""),
        service_code=str(delivery.get("service_level_code") or delivery.get("service_code") or ""),
        **_delivery_fields(data),
    )
    return jsonify({"ok": True, **session.to_dict()}), 201


@checkout_bp.post("/payments/verify")
def payments_verify():
    user = current_user()
    if user is None:
        return jsonify({"ok": False, "message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    reference = str(data.get("reference") or "").strip()
    if not reference:
        return jsonify({"ok": False, "message": "reference is required"}), 400
    confirmation = verify_payment(reference, user.id)
    return jsonify({"ok": True, "order": confirmation.to_dict()}), 200
