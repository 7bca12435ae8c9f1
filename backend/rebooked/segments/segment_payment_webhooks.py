from __future__ import annotations

import hashlib
import json

from flask import Blueprint, current_app, jsonify, request

from rebooked.extensions import db
from rebooked.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rebooked.integrations.courier.factory import build_courier_provider
from rebooked.services.checkout_service import handle_payment_webhook
from rebooked.services.order_lifecycle_service import apply_courier_tracking
from rebooked.services.webhook_ledger import claim_webhook, fail_webhook, settle_webhook
from rebooked.utils.observability import get_request_id
from rebooked.utils.settings import get_settings

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")


def _handler_failed(label: str):
    db.session.rollback()
    current_app.logger.exception("%s_webhook_failed", label)
    # Non-2xx makes the gateway retry later; the event row stays retryable.
    return jsonify({"ok": False, "error": "WEBHOOK_HANDLER_FAILED", "trace_id": get_request_id()}), 500


def _payment_webhook(provider_name: str):
    try:
        body, status = handle_payment_webhook(provider_name, raw_body=request.get_data() or b"", headers=request.headers)
    except Exception:
        return _handler_failed(provider_name)
    return jsonify(body), int(status)


@webhooks_bp.post("/paystack")
def paystack_webhook():
    return _payment_webhook("paystack")


@webhooks_bp.post("/bobpay")
def bobpay_webhook():
    return _payment_webhook("bobpay")


@webhooks_bp.post("/bobgo")
def bobgo_webhook():
    raw = request.get_data() or b""
    try:
        courier = build_courier_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        return jsonify({"ok": False, "error": e.code}), 503

    if not courier.verify_webhook(raw_body=raw, headers=request.headers):
        current_app.logger.warning("bobgo_webhook_bad_signature trace_id=%s", get_request_id())
        return jsonify({"ok": False, "error": "INVALID_SIGNATURE"}), 401

    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except (ValueError, UnicodeDecodeError):
        return jsonify({"ok": False, "error": "INVALID_JSON"}), 400
    if not isinstance(payload, dict):
        return jsonify({"ok": False, "error": "INVALID_JSON"}), 400

    digest = hashlib.sha256(raw).hexdigest()
    update = courier.parse_webhook(payload)
    event_id = f"bobgo:{payload.get('id') or payload.get('event_id') or digest}"
    row = claim_webhook(
        "bobgo",
        event_id,
        reference=update.tracking_number or update.shipment_id or None,
        payload_hash=digest,
    )
    if row is None:
        return jsonify({"ok": True, "duplicate": True}), 200

    try:
        order = apply_courier_tracking(update)
    except Exception as e:
        fail_webhook(row, e)
        return _handler_failed("bobgo")
    settle_webhook(row, "processed" if order is not None else "ignored")
    return jsonify({"ok": True, "order_id": order.id if order else None}), 200
