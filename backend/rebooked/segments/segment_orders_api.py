from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from rebooked.extensions import db
from rebooked.models import Order
from rebooked.services.delivery_progress import delivery_progress
from rebooked.services.order_lifecycle_service import cancel_order, confirm_receipt, delete_order
from rebooked.utils.auth import current_user

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


def _unauthorized():
    return jsonify({"ok": False, "message": "Unauthorized"}), 401


def _order_payload(order: Order) -> dict:
    payload = order.to_dict()
    payload["progress"] = delivery_progress(order.status, order.delivery_status)
    return payload


@orders_bp.get("/orders/mine")
def my_orders():
    user = current_user()
    if user is None:
        return _unauthorized()
    rows = (
        Order.query.filter(or_(Order.buyer_id == user.id, Order.seller_id == user.id))
        .order_by(Order.created_at.desc())
        .limit(100)
        .all()
    )
    return jsonify(
        {
            "ok": True,
            "buying": [_order_payload(o) for o in rows if o.buyer_id == user.id],
            "selling": [_order_payload(o) for o in rows if o.seller_id == user.id],
        }
    ), 200


@orders_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    user = current_user()
    if user is None:
        return _unauthorized()
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"ok": False, "message": "Not found"}), 404
    if user.id not in (order.buyer_id, order.seller_id) and not user.is_admin:
        return jsonify({"ok": False, "message": "Forbidden"}), 403
    return jsonify({"ok": True, "order": _order_payload(order)}), 200


@orders_bp.post("/orders/<order_id>/cancel")
def cancel_order_route(order_id: str):
    user = current_user()
    if user is None:
        return _unauthorized()
    data = request.get_json(silent=True) or {}
    order = cancel_order(order_id, user, str(data.get("reason") or ""))
    return jsonify({"ok": True, "order": _order_payload(order)}), 200


@orders_bp.post("/orders/<order_id>/confirm-receipt")
def confirm_receipt_route(order_id: str):
    user = current_user()
    if user is None:
        return _unauthorized()
    data = request.get_json(silent=True) or {}
    received = data.get("received")
    if not isinstance(received, bool):
        received = str(data.get("buyer_status") or "received").strip().lower() == "received"
    result = confirm_receipt(order_id, user.id, received, str(data.get("feedback") or ""))
    return jsonify({"ok": True, **result}), 200


@orders_bp.delete("/admin/orders/<order_id>")
def admin_delete_order(order_id: str):
    user = current_user()
    if user is None:
        return _unauthorized()
    delete_order(order_id, user)
    return jsonify({"ok": True, "deleted": order_id}), 200
