from __future__ import annotations

from flask import Blueprint, jsonify, request

from rebooked.services.notification_service import OrderNotifier
from rebooked.services.wallet_service import (
    approve_payout,
    deny_payout,
    mark_payout_paid,
    payout_owner,
    request_payout,
    wallet_summary,
)
from rebooked.utils.auth import current_user
from rebooked.utils.money import money_major_to_minor

wallet_bp = Blueprint("wallet_bp", __name__, url_prefix="/api")


def _unauthorized():
    return jsonify({"ok": False, "message": "Unauthorized"}), 401


@wallet_bp.get("/wallet")
def get_wallet():
    user = current_user()
    if user is None:
        return _unauthorized()
    limit = request.args.get("limit", type=int) or 50
    return jsonify({"ok": True, **wallet_summary(user.id, limit=limit)}), 200


@wallet_bp.post("/wallet/payouts")
def create_payout():
    user = current_user()
    if user is None:
        return _unauthorized()
    data = request.get_json(silent=True) or {}
    if data.get("amount_minor") is not None:
        try:
            amount = int(data.get("amount_minor"))
        except (TypeError, ValueError):
            amount = 0
    else:
        amount = money_major_to_minor(data.get("amount"))
    payout = request_payout(user.id, amount, str(data.get("notes") or ""))
    return jsonify({"ok": True, "payout": payout.to_dict()}), 201


def _admin_transition(payout_id: str, action):
    user = current_user()
    if user is None:
        return _unauthorized()
    if not user.is_admin:
        return jsonify({"ok": False, "message": "Forbidden"}), 403
    data = request.get_json(silent=True) or {}
    payout = action(payout_id, user.id, str(data.get("notes") or ""))
    owner = payout_owner(payout)
    if owner is not None:
        OrderNotifier().payout_updated(user=owner, payout=payout)
    return jsonify({"ok": True, "payout": payout.to_dict()}), 200


@wallet_bp.post("/admin/payouts/<payout_id>/approve")
def admin_approve_payout(payout_id: str):
    return _admin_transition(payout_id, approve_payout)


@wallet_bp.post("/admin/payouts/<payout_id>/deny")
def admin_deny_payout(payout_id: str):
    return _admin_transition(payout_id, deny_payout)


@wallet_bp.post("/admin/payouts/<payout_id>/paid")
def admin_mark_payout_paid(payout_id: str):
    return _admin_transition(payout_id, mark_payout_paid)
