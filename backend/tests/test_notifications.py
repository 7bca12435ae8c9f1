from __future__ import annotations

import unittest
from unittest import mock

from _support import AppTestCase
from rebooked.integrations.email.mock_provider import MockEmailProvider
from rebooked.models import Notification
from rebooked.services import email_templates
from rebooked.services.errors import NotificationFailed
from rebooked.services.notification_service import OrderNotifier, create_notification


class NotificationFanoutTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("S1", name="Sam Seller")
        self.buyer = self.make_user("B1", name="Bea Buyer")
        self.order = self.make_order(self.seller, self.buyer, order_id="O1", status="committed", tracking_number="TRK1")

    def _fail_first_insert(self):
        calls = []

        def flaky(**kwargs):
            calls.append(kwargs["user_id"])
            if len(calls) == 1:
                raise NotificationFailed("notification insert failed: locked")
            return create_notification(**kwargs)

        return mock.patch("rebooked.services.notification_service.create_notification", side_effect=flaky)

    def test_seller_row_survives_a_failed_buyer_row_on_commit(self):
        with self._fail_first_insert():
            report = OrderNotifier().order_committed(self.order, pickup_type="door", delivery_type="door")

        self.assertEqual(report.failed, ["buyer_notification"])
        self.assertIn("seller_notification", report.sent)
        self.assertIn("buyer_email", report.sent)
        self.assertEqual(Notification.query.filter_by(user_id="S1", order_id="O1").count(), 1)
        self.assertEqual(Notification.query.filter_by(user_id="B1", order_id="O1").count(), 0)

    def test_seller_row_survives_a_failed_buyer_row_on_cancel(self):
        with self._fail_first_insert():
            report = OrderNotifier().order_cancelled(self.order, reason="Changed my mind")

        self.assertEqual(report.failed, ["buyer_notification"])
        self.assertIn("seller_notification", report.sent)
        self.assertEqual(Notification.query.filter_by(user_id="S1").one().type, "order_cancelled")

    def test_commit_fanout_sends_both_emails(self):
        report = OrderNotifier().order_committed(self.order, pickup_type="door", delivery_type="locker")

        self.assertTrue(report.ok)
        recipients = sorted(m.to for m in MockEmailProvider.outbox)
        self.assertEqual(recipients, ["b1@rebooked.test", "s1@rebooked.test"])


class EmailTemplateTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("S1", name="Sam Seller")
        self.buyer = self.make_user("B1", name="<script>alert(1)</script>")
        self.order = self.make_order(
            self.seller,
            self.buyer,
            order_id="O1",
            status="committed",
            tracking_number="TRK<1>",
            items=[{"title": "Physics & <b>Chemistry</b>", "price": 250}],
        )

    def test_user_supplied_values_are_escaped(self):
        message = email_templates.buyer_commit_confirmation(
            self.order, delivery_type="door", frontend_url="https://rebooked.test"
        )

        self.assertNotIn("<script>", message.html)
        self.assertIn("&lt;script&gt;", message.html)
        self.assertIn("Physics &amp; &lt;b&gt;Chemistry&lt;/b&gt;", message.html)
        self.assertIn("TRK&lt;1&gt;", message.html)
        self.assertIn("<script>", message.text)

    def test_layout_wraps_body_with_action_link(self):
        message = email_templates.seller_new_order(self.order, window_hours=48, frontend_url="https://rebooked.test/")

        self.assertIn("New Order - Action Required", message.html)
        self.assertIn('href="https://rebooked.test/orders/O1"', message.html)
        self.assertIn(email_templates.APP_NAME, message.html)
        self.assertIn("48 hours", message.html)
        self.assertEqual(message.subject, "New Order - Commit Within 48 Hours")

    def test_wallet_credit_mentions_commission(self):
        message = email_templates.seller_wallet_credit(self.order, credit_minor=22500, new_balance_minor=30000)

        self.assertIn("10%", message.html)
        self.assertIn("225", message.html)


if __name__ == "__main__":
    unittest.main()
