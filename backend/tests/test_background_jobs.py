from __future__ import annotations

import unittest
from datetime import datetime, timedelta
from unittest import mock

from _support import AppTestCase
from rebooked.extensions import db
from rebooked.integrations.email.base import EmailMessageSpec
from rebooked.integrations.email.mock_provider import MockEmailProvider
from rebooked.jobs.commit_deadline_runner import run_commit_deadline_sweep
from rebooked.models import Book
from rebooked.services.notification_service import OrderNotifier
from rebooked.tasks.notification_tasks import _retry_countdown, send_email_task


class BackgroundJobsTestCase(AppTestCase):
    def test_deadline_sweep_cancels_overdue_orders(self):
        seller = self.make_user("S1")
        buyer = self.make_user("B1")
        self.make_order(seller, buyer, order_id="O1", commit_deadline=datetime.utcnow() - timedelta(minutes=5))
        self.make_order(seller, buyer, order_id="O2")

        summary = run_commit_deadline_sweep()

        self.assertTrue(summary["ok"])
        self.assertEqual(summary["expired"], ["O1"])
        self.assertEqual(self.reload("O1").status, "cancelled")
        self.assertEqual(self.reload("O2").status, "paid")
        self.assertEqual(summary["released"], [])

    def test_deadline_sweep_frees_abandoned_checkouts(self):
        seller = self.make_user("S1")
        buyer = self.make_user("B1")
        book = self.make_book(seller, availability="reserved")
        self.make_order(
            seller,
            buyer,
            order_id="O1",
            book=book,
            status="pending",
            commit_deadline=None,
            created_at=datetime.utcnow() - timedelta(hours=3),
        )

        summary = run_commit_deadline_sweep()

        self.assertEqual(summary["released"], ["O1"])
        self.assertEqual(self.reload("O1").cancellation_reason, "checkout_abandoned")
        self.assertEqual(db.session.get(Book, book.id).availability, "available")

    def test_deadline_sweep_reports_failures(self):
        with mock.patch(
            "rebooked.jobs.commit_deadline_runner.expire_overdue_commitments", side_effect=RuntimeError("db gone")
        ):
            summary = run_commit_deadline_sweep()
        self.assertFalse(summary["ok"])
        self.assertIn("db gone", summary["error"])

    def test_queued_email_goes_through_celery(self):
        self.app.config["NOTIFY_QUEUE"] = "1"
        message = EmailMessageSpec(to="s1@rebooked.test", subject="Hello", html="<p>Hi</p>")

        with mock.patch.object(send_email_task, "delay") as delay:
            OrderNotifier().send_email(message, reference="ref-1")

        delay.assert_called_once()
        self.assertEqual(delay.call_args.kwargs["to"], "s1@rebooked.test")
        self.assertEqual(delay.call_args.kwargs["reference"], "ref-1")
        self.assertEqual(MockEmailProvider.outbox, [])

    def test_email_task_sends_through_provider(self):
        result = send_email_task.apply(kwargs={"to": "b1@rebooked.test", "subject": "Paid", "html": "<p>ok</p>"}).get()
        self.assertTrue(result["ok"])
        self.assertEqual(MockEmailProvider.outbox[-1].subject, "Paid")

    def test_retry_backoff_is_capped(self):
        self.assertEqual(_retry_countdown(0), 5)
        self.assertEqual(_retry_countdown(3), 40)
        self.assertEqual(_retry_countdown(20), 900)


if __name__ == "__main__":
    unittest.main()
