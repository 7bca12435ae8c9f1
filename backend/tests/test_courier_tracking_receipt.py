from __future__ import annotations

import hashlib
import hmac
import json
import os
import unittest
from unittest import mock

from _support import AppTestCase
from rebooked.extensions import db
from rebooked.integrations.courier.base import TrackingUpdate
from rebooked.integrations.courier.bobgo_provider import BobGoCourierProvider
from rebooked.models import BuyerFeedback, Notification, WalletTransaction, WebhookEvent
from rebooked.models.json_columns import dump_json
from rebooked.services.errors import Forbidden, InvalidState
from rebooked.services.order_lifecycle_service import (
    apply_courier_tracking,
    confirm_receipt,
    normalize_courier_status,
)
from rebooked.services.wallet_service import get_or_create_wallet

WEBHOOK_SECRET = "bobgo-webhook-secret"


class CourierTrackingTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("S1")
        self.buyer = self.make_user("B1")
        self.make_order(
            self.seller,
            self.buyer,
            order_id="O1",
            status="committed",
            tracking_number="TRK1",
            delivery_status="scheduled",
            delivery_data_json=dump_json({"shipment_id": "SH1", "provider": "bobgo"}),
        )

    def test_status_aliases_normalise(self):
        self.assertEqual(normalize_courier_status("Collection-Failed"), "pickup_failed")
        self.assertEqual(normalize_courier_status("at hub"), "in_transit")
        self.assertEqual(normalize_courier_status("delivered"), "delivered")

    def test_collection_moves_order_in_transit(self):
        order = apply_courier_tracking(TrackingUpdate(event_type="shipment.updated", shipment_id="SH1", status="collected"))

        self.assertEqual(order.status, "in_transit")
        self.assertEqual(order.delivery_status, "collected")
        self.assertEqual(order.tracking_data()["events"][-1]["status"], "collected")

    def test_delivery_asks_buyer_to_confirm(self):
        apply_courier_tracking(TrackingUpdate(event_type="shipment.delivered", tracking_number="TRK1"))

        order = self.reload("O1")
        self.assertEqual(order.status, "delivered")
        note = Notification.query.filter_by(user_id="B1", order_id="O1").one()
        self.assertEqual(note.type, "delivery_confirmation_needed")

    def test_created_event_only_records_tracking(self):
        apply_courier_tracking(TrackingUpdate(event_type="shipment.created", shipment_id="SH1", tracking_number="TRK9"))
        order = self.reload("O1")
        self.assertEqual(order.status, "committed")
        self.assertEqual(order.tracking_number, "TRK9")
        self.assertEqual(order.delivery_status, "submitted")

    def test_unmatched_update_is_ignored(self):
        self.assertIsNone(apply_courier_tracking(TrackingUpdate(event_type="shipment.updated", tracking_number="NOPE")))

    def _post_bobgo(self, payload: dict, *, secret: str = WEBHOOK_SECRET):
        raw = json.dumps(payload).encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
        self.app.config["COURIER_PROVIDER"] = "bobgo"
        env = {"BOBGO_API_KEY": "key", "BOBGO_WEBHOOK_SECRET": WEBHOOK_SECRET}
        with mock.patch.dict(os.environ, env):
            return self.client.post(
                "/api/webhooks/bobgo",
                data=raw,
                headers={"X-Bobgo-Signature": signature, "Content-Type": "application/json"},
            )

    def test_signed_webhook_updates_order_once(self):
        payload = {"id": "evt-1", "event_type": "shipment.updated", "data": {"shipment_id": "SH1", "status": "in_transit"}}

        res = self._post_bobgo(payload)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order_id"], "O1")
        self.assertEqual(self.reload("O1").status, "in_transit")

        res = self._post_bobgo(payload)
        self.assertTrue(res.get_json()["duplicate"])
        self.assertEqual(len(self.reload("O1").tracking_data()["events"]), 1)

    def test_failed_delivery_is_applied_when_redelivered(self):
        payload = {"id": "evt-3", "event_type": "shipment.updated", "data": {"shipment_id": "SH1", "status": "collected"}}

        with mock.patch(
            "rebooked.segments.segment_payment_webhooks.apply_courier_tracking",
            side_effect=RuntimeError("database went away"),
        ):
            res = self._post_bobgo(payload)
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json()["error"], "WEBHOOK_HANDLER_FAILED")
        row = WebhookEvent.query.filter_by(event_id="bobgo:evt-3").one()
        self.assertEqual(row.status, "failed")
        self.assertIn("database went away", row.error)
        self.assertEqual(self.reload("O1").status, "committed")

        res = self._post_bobgo(payload)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order_id"], "O1")
        self.assertEqual(self.reload("O1").status, "in_transit")
        row = WebhookEvent.query.filter_by(event_id="bobgo:evt-3").one()
        self.assertEqual(row.status, "processed")

        res = self._post_bobgo(payload)
        self.assertTrue(res.get_json()["duplicate"])

    def test_wrong_signature_is_rejected(self):
        payload = {"id": "evt-2", "event_type": "shipment.updated", "data": {"shipment_id": "SH1", "status": "delivered"}}
        res = self._post_bobgo(payload, secret="not-the-secret")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(self.reload("O1").status, "committed")

    def test_provider_verifies_hmac_directly(self):
        provider = BobGoCourierProvider(api_key="k", webhook_secret=WEBHOOK_SECRET)
        raw = b'{"id":"x"}'
        good = hmac.new(WEBHOOK_SECRET.encode("utf-8"), raw, hashlib.sha256).hexdigest()
        self.assertTrue(provider.verify_webhook(raw_body=raw, headers={"X-Signature": good}))
        self.assertFalse(provider.verify_webhook(raw_body=raw, headers={}))


class ConfirmReceiptTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("S1")
        self.buyer = self.make_user("B1")
        self.make_order(self.seller, self.buyer, order_id="O1", status="delivered", tracking_number="TRK1")

    def test_received_completes_order_and_credits_seller(self):
        outcome = confirm_receipt("O1", "B1", True, "Great condition")

        self.assertEqual(self.reload("O1").status, "completed")
        self.assertEqual(outcome["credit"]["credit_amount"], 22500)
        self.assertEqual(get_or_create_wallet("S1").available_balance, 22500)
        self.assertEqual(outcome["feedback"]["buyer_status"], "received")

    def test_receipt_can_only_be_confirmed_once(self):
        confirm_receipt("O1", "B1", True)
        with self.assertRaises(InvalidState):
            confirm_receipt("O1", "B1", True)
        self.assertEqual(WalletTransaction.query.filter_by(reference_order_id="O1").count(), 1)

    def test_not_received_flags_seller_without_credit(self):
        outcome = confirm_receipt("O1", "B1", False, "Never arrived")

        self.assertIsNone(outcome["credit"])
        self.assertEqual(self.reload("O1").status, "delivered")
        self.assertEqual(WalletTransaction.query.count(), 0)
        self.assertEqual(Notification.query.filter_by(user_id="S1", order_id="O1").count(), 1)
        self.assertEqual(BuyerFeedback.query.filter_by(order_id="O1").one().buyer_status, "not_received")

    def test_only_buyer_may_confirm(self):
        with self.assertRaises(Forbidden):
            confirm_receipt("O1", "S1", True)

    def test_receipt_before_dispatch_is_refused(self):
        order = self.reload("O1")
        order.status = "committed"
        db.session.commit()
        with self.assertRaises(InvalidState):
            confirm_receipt("O1", "B1", True)


if __name__ == "__main__":
    unittest.main()
