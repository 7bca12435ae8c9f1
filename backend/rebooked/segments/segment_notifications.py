from __future__ import annotations

from flask import Blueprint, jsonify

from rebooked.extensions import db
from rebooked.models import Notification
from rebooked.utils.auth import current_user

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")


@notifications_bp.get("/notifications")
def list_notifications():
    user = current_user()
    if user is None:
        return jsonify({"ok": False, "message": "Unauthorized"}), 401
    rows = (
        Notification.query.filter_by(user_id=user.id)
        .order_by(Notification.created_at.desc())
        .limit(80)
        .all()
    )
    return jsonify({"ok": True, "items": [x.to_dict() for x in rows]}), 200


@notifications_bp.post("/notifications/<notification_id>/read")
def mark_notification_read(notification_id: str):
    user = current_user()
    if user is None:
        return jsonify({"ok": False, "message": "Unauthorized"}), 401
    row = Notification.query.filter_by(id=str(notification_id).strip(), user_id=user.id).first()
    if row is None:
        return jsonify({"ok": False, "message": "Not found"}), 404
    stamped = row.mark_read()
    db.session.commit()
    return jsonify({"ok": True, "id": row.id, "read": True, "read_at": stamped.isoformat()}), 200
