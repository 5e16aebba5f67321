"""tests for the shutdown coordinator (no signal handlers installed)"""

import os
import sys
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from utils.shutdown import ShutdownManager  # noqa: E402


class TestShutdownManager(unittest.TestCase):

    def setUp(self):
        self.manager = ShutdownManager(install_signal_handlers=False)

    def test_handlers_run_in_reverse_order_once(self):
        calls = []
        self.manager.register_cleanup(lambda: calls.append("transport"), "transport")
        self.manager.register_cleanup(lambda: calls.append("workspaces"), "workspaces")

        self.manager.run_cleanup()
        self.manager.run_cleanup()

        self.assertEqual(calls, ["workspaces", "transport"])

    def test_failing_handler_does_not_stop_the_rest(self):
        calls = []

        def broken():
            raise RuntimeError("boom")

        self.manager.register_cleanup(lambda: calls.append("first"), "first")
        self.manager.register_cleanup(broken, "broken")
        self.manager.run_cleanup()

        self.assertEqual(calls, ["first"])

    def test_executors_drain_before_handlers(self):
        order = []
        started = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1)

        def session():
            started.set()
            order.append("session")

        executor.submit(session)
        started.wait(timeout=5)
        self.manager.register_executor(executor)
        self.manager.register_cleanup(lambda: order.append("cleanup"), "cleanup")
        self.manager.run_cleanup()

        self.assertEqual(order, ["session", "cleanup"])
        with self.assertRaises(RuntimeError):
            executor.submit(session)

    def test_request_shutdown_wakes_waiters(self):
        self.assertFalse(self.manager.is_shutdown_requested())
        self.assertFalse(self.manager.wait(timeout=0.01))

        self.manager.request_shutdown("test")

        self.assertTrue(self.manager.is_shutdown_requested())
        self.assertTrue(self.manager.wait(timeout=0.01))


if __name__ == "__main__":
    unittest.main()
