"""tests for the capped exponential retry policy"""

import os
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from utils.retry import RetryExhausted, RetryPolicy  # noqa: E402


class Flaky:
    def __init__(self, failures, error=ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "ok"


class TestRetryPolicy(unittest.TestCase):

    def test_delays_double_and_cap(self):
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=60.0)
        self.assertEqual([policy.delay_for(n) for n in range(1, 9)], [1, 2, 4, 8, 16, 32, 60, 60])

    def test_succeeds_after_retries(self):
        sleeps = []
        func = Flaky(failures=2)
        result = RetryPolicy(max_attempts=5, base_delay=0.5).run(func, sleep=sleeps.append)
        self.assertEqual(result, "ok")
        self.assertEqual(func.calls, 3)
        self.assertEqual(sleeps, [0.5, 1.0])

    def test_gives_up_after_max_attempts(self):
        sleeps = []
        func = Flaky(failures=10)
        with self.assertRaises(RetryExhausted) as ctx:
            RetryPolicy(max_attempts=3, base_delay=1).run(func, sleep=sleeps.append)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIsInstance(ctx.exception.last_error, ConnectionError)
        self.assertEqual(func.calls, 3)
        self.assertEqual(len(sleeps), 2)

    def test_unlisted_errors_propagate_immediately(self):
        func = Flaky(failures=1, error=KeyError)
        with self.assertRaises(KeyError):
            RetryPolicy().run(func, retry_on=(ConnectionError,), sleep=lambda _: None)
        self.assertEqual(func.calls, 1)

    def test_on_retry_hook(self):
        seen = []
        RetryPolicy(max_attempts=3).run(Flaky(failures=1), sleep=lambda _: None,
                                        on_retry=lambda attempt, e: seen.append((attempt, str(e))))
        self.assertEqual(seen, [(1, "failure 1")])

    def test_invalid_policy(self):
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0).run(lambda: None)


if __name__ == "__main__":
    unittest.main()
