from __future__ import annotations

import unittest

from _support import CAPE_TOWN_PICKUP, AppTestCase
from rebooked.integrations.email.mock_provider import MockEmailProvider
from rebooked.utils.jwt_utils import create_access_token


class CommitEndpointTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("S1", pickup_address_encrypted=self.encrypt(CAPE_TOWN_PICKUP))
        self.buyer = self.make_user("B1")
        self.make_order(self.seller, self.buyer, order_id="O1")

    def _auth(self, user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    def test_seller_commit_returns_tracking(self):
        res = self.client.post("/api/commit-to-sale", json={"order_id": "O1"}, headers=self._auth("S1"))

        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertTrue(body["success"])
        self.assertTrue(body["tracking_number"].startswith("MOCK"))
        self.assertEqual(body["pickup_type"], "door")
        self.assertEqual(body["delivery_type"], "door")
        self.assertEqual(self.reload("O1").status, "committed")
        self.assertEqual(len(MockEmailProvider.outbox), 2)

    def test_missing_token_is_unauthorized(self):
        res = self.client.post("/api/commit-to-sale", json={"order_id": "O1"})
        self.assertEqual(res.status_code, 401)
        self.assertFalse(res.get_json()["success"])

    def test_buyer_cannot_commit(self):
        res = self.client.post("/api/commit-to-sale", json={"order_id": "O1"}, headers=self._auth("B1"))

        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["code"], "UNAUTHORIZED")
        self.assertEqual(self.reload("O1").status, "paid")

    def test_missing_order_id_is_bad_request(self):
        res = self.client.post("/api/commit-to-sale", json={}, headers=self._auth("S1"))
        self.assertEqual(res.status_code, 400)

    def test_business_failures_are_bad_requests(self):
        self.client.post("/api/commit-to-sale", json={"order_id": "O1"}, headers=self._auth("S1"))

        res = self.client.post("/api/commit-to-sale", json={"order_id": "O1"}, headers=self._auth("S1"))

        self.assertEqual(res.status_code, 400)
        body = res.get_json()
        self.assertFalse(body["success"])
        self.assertEqual(body["code"], "INVALID_STATE")

    def test_seller_can_decline(self):
        res = self.client.post(
            "/api/decline-commit", json={"order_id": "O1", "reason": "Lost the book"}, headers=self._auth("S1")
        )
        self.assertEqual(res.status_code, 200)
        order = self.reload("O1")
        self.assertEqual(order.status, "cancelled")
        self.assertEqual(order.decline_reason, "Lost the book")


class OrdersApiTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("S1", pickup_address_encrypted=self.encrypt(CAPE_TOWN_PICKUP))
        self.buyer = self.make_user("B1")
        self.stranger = self.make_user("X1")
        self.admin = self.make_user("A1", role="admin")
        self.make_order(self.seller, self.buyer, order_id="O1")

    def _auth(self, user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    def test_order_visible_to_parties_only(self):
        res = self.client.get("/api/orders/O1", headers=self._auth("B1"))
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["order"]["progress"]["awaiting_commit"])

        res = self.client.get("/api/orders/O1", headers=self._auth("X1"))
        self.assertEqual(res.status_code, 403)

    def test_my_orders_splits_buying_and_selling(self):
        body = self.client.get("/api/orders/mine", headers=self._auth("S1")).get_json()
        self.assertEqual(len(body["selling"]), 1)
        self.assertEqual(body["buying"], [])

    def test_stranger_cannot_cancel(self):
        res = self.client.post("/api/orders/O1/cancel", json={}, headers=self._auth("X1"))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.get_json()["code"], "FORBIDDEN")

    def test_buyer_cancel_before_commit(self):
        res = self.client.post("/api/orders/O1/cancel", json={"reason": "Changed my mind"}, headers=self._auth("B1"))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self.reload("O1").status, "cancelled")

    def test_admin_delete(self):
        res = self.client.delete("/api/admin/orders/O1", headers=self._auth("S1"))
        self.assertEqual(res.status_code, 403)

        res = self.client.delete("/api/admin/orders/O1", headers=self._auth("A1"))
        self.assertEqual(res.status_code, 200)
        self.assertIsNone(self.reload("O1"))

    def test_wallet_payout_flow_over_http(self):
        from rebooked.services.wallet_service import credit_on_collection

        credit_on_collection("O1", "S1", 10000)

        res = self.client.post("/api/wallet/payouts", json={"amount": 50}, headers=self._auth("S1"))
        self.assertEqual(res.status_code, 201)
        payout_id = res.get_json()["payout"]["id"]

        res = self.client.post(f"/api/admin/payouts/{payout_id}/approve", json={}, headers=self._auth("S1"))
        self.assertEqual(res.status_code, 403)

        res = self.client.post(f"/api/admin/payouts/{payout_id}/approve", json={}, headers=self._auth("A1"))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["payout"]["status"], "approved")

        wallet = self.client.get("/api/wallet", headers=self._auth("S1")).get_json()["wallet"]
        self.assertEqual(wallet["available_balance"], 4000)

        res = self.client.post("/api/wallet/payouts", json={"amount_minor": 999999}, headers=self._auth("S1"))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "INSUFFICIENT_FUNDS")


if __name__ == "__main__":
    unittest.main()
