from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from rebooked.extensions import db
from rebooked.services.commit_service import commit_to_sale
from rebooked.services.errors import ServiceError, Unauthorized
from rebooked.services.order_lifecycle_service import decline_commit
from rebooked.utils.auth import current_user

commit_bp = Blueprint("commit_bp", __name__, url_prefix="/api")


def _failure(error: ServiceError):
    # The seller app only distinguishes auth failures from everything else.
    status = 401 if isinstance(error, Unauthorized) else 400
    return jsonify(error.to_dict()), status


@commit_bp.post("/commit-to-sale")
def commit_to_sale_route():
    user = current_user()
    if user is None:
        return jsonify({"success": False, "error": "Unauthorized"}), 401

    data = request.get_json(silent=True) or {}
    order_id = str(data.get("order_id") or "").strip()
    if not order_id:
        return jsonify({"success": False, "error": "order_id is required"}), 400

    try:
        result = commit_to_sale(order_id, user.id)
    except ServiceError as e:
        db.session.rollback()
        current_app.logger.info("commit_rejected order_id=%s user_id=%s code=%s", order_id, user.id, e.code)
        return _failure(e)
    return jsonify(result.to_dict()), 200


@commit_bp.post("/decline-commit")
def decline_commit_route():
    user = current_user()
    if user is None:
        return jsonify({"success": False, "error": "Unauthorized"}), 401

    data = request.get_json(silent=True) or {}
    order_id = str(data.get("order_id") or "").strip()
    if not order_id:
        return jsonify({"success": False, "error": "order_id is required"}), 400

    try:
        order = decline_commit(order_id, user.id, str(data.get("reason") or ""))
    except ServiceError as e:
        db.session.rollback()
        return _failure(e)
    return jsonify({"success": True, "order": order.to_dict()}), 200
