from __future__ import annotations

import json
import os
import unittest
import uuid
from unittest.mock import patch

from flask import Flask, Response, g

from _support import AppTestCase
from rebooked.utils.observability import _access_log_line, bind_log_context, init_sentry


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        with patch.dict(os.environ, {"SENTRY_DSN": ""}, clear=False):
            init_sentry(app)


class RequestIdHeadersTestCase(AppTestCase):
    def test_generates_request_id_when_missing(self):
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        rid = (res.headers.get("X-Request-ID") or "").strip()
        self.assertTrue(rid)
        uuid.UUID(rid)

    def test_echoes_request_id_when_provided(self):
        res = self.client.get("/api/health", headers={"X-Request-ID": "rid-test-123"})
        self.assertEqual(res.headers.get("X-Request-ID"), "rid-test-123")

    def test_identity_does_not_leak_between_requests(self):
        from rebooked.utils.jwt_utils import create_access_token

        self.make_user("U1")
        res = self.client.get("/api/wallet", headers={"Authorization": f"Bearer {create_access_token('U1')}"})
        self.assertEqual(res.status_code, 200)

        res = self.client.get("/api/wallet")
        self.assertEqual(res.status_code, 401)


class AccessLogContextTestCase(AppTestCase):
    def test_bound_order_and_seller_ids_reach_the_access_log_line(self):
        with self.app.test_request_context("/api/commit-to-sale", method="POST"):
            bind_log_context(order_id="O1", seller_id="S1", unrelated="x", book_id=None)
            line = _access_log_line(Response(status=200), salt="s")

        self.assertEqual(line["order_id"], "O1")
        self.assertEqual(line["seller_id"], "S1")
        self.assertNotIn("unrelated", line)
        self.assertNotIn("book_id", line)
        self.assertEqual(line["path"], "/api/commit-to-sale")

    def test_bind_outside_a_request_is_a_noop(self):
        bind_log_context(order_id="O1")
        self.assertIsNone(g.get("log_context"))

    def test_commit_request_logs_order_context(self):
        from rebooked.utils.jwt_utils import create_access_token

        seller = self.make_user("S1")
        buyer = self.make_user("B1")
        self.make_order(seller, buyer, order_id="O1", status="cancelled")

        with self.assertLogs(self.app.logger, level="INFO") as logs:
            self.client.post("/api/commit-to-sale", json={"order_id": "O1"}, headers={"Authorization": f"Bearer {create_access_token('S1')}"})

        access = [json.loads(r.getMessage()) for r in logs.records if r.getMessage().startswith("{")]
        self.assertTrue(access)
        self.assertEqual(access[-1]["order_id"], "O1")
        self.assertEqual(access[-1]["seller_id"], "S1")


if __name__ == "__main__":
    unittest.main()
