from __future__ import annotations

import unittest

from rebooked.services.delivery_progress import DELIVERY_STEPS, delivery_progress


class DeliveryProgressTestCase(unittest.TestCase):
    def _states(self, progress: dict) -> list[str]:
        return [step["state"] for step in progress["steps"]]

    def test_awaiting_commit_shows_everything_pending(self):
        for status in ("pending_commit", "paid"):
            progress = delivery_progress(status, "in_transit")
            self.assertTrue(progress["awaiting_commit"])
            self.assertEqual(progress["current_index"], -1)
            self.assertEqual(set(self._states(progress)), {"pending"})

    def test_courier_statuses_map_to_steps(self):
        expected = {
            "created": 0,
            "collected": 1,
            "picked_up": 1,
            "in_transit": 2,
            "out_for_delivery": 3,
            "delivered": 4,
        }
        for delivery_status, index in expected.items():
            progress = delivery_progress("committed", delivery_status)
            self.assertEqual(progress["current_index"], index, delivery_status)
            self.assertEqual(self._states(progress)[index], "active")
            self.assertEqual(self._states(progress)[:index], ["complete"] * index)

    def test_unknown_status_starts_at_first_step(self):
        progress = delivery_progress("committed", "scheduled")
        self.assertEqual(progress["current_index"], 0)
        self.assertEqual(len(progress["steps"]), len(DELIVERY_STEPS))

    def test_pickup_failure_is_flagged(self):
        progress = delivery_progress("committed", "pickup_failed")
        self.assertTrue(progress["failed"])
        self.assertEqual(progress["current_index"], 0)
        self.assertEqual(self._states(progress)[0], "failed")

    def test_missing_values_are_tolerated(self):
        progress = delivery_progress(None, None)
        self.assertFalse(progress["awaiting_commit"])
        self.assertEqual(progress["current_index"], 0)


if __name__ == "__main__":
    unittest.main()
