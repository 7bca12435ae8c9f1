from __future__ import annotations

import importlib
import unittest

import _support  # noqa: F401


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("rebooked")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_main_app(self):
        module = importlib.import_module("main")
        app = getattr(module, "app", None)
        self.assertIsNotNone(app)

    def test_import_commit_segment(self):
        module = importlib.import_module("rebooked.segments.segment_commit")
        self.assertIsNotNone(getattr(module, "commit_bp", None))

    def test_celery_app_registers_deadline_sweep(self):
        module = importlib.import_module("rebooked.celery_app")
        main = importlib.import_module("main")
        celery = module.create_celery_app(main.app)
        schedule = celery.conf.beat_schedule["commit-deadline-sweep"]
        self.assertEqual(schedule["task"], "rebooked.tasks.order_tasks.expire_overdue_commitments")
        self.assertGreaterEqual(schedule["schedule"], 60)


if __name__ == "__main__":
    unittest.main()
