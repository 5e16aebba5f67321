"""tests for consensus timestamps"""

import os
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from hcs.timestamps import Timestamp  # noqa: E402


class TestTimestampParsing(unittest.TestCase):

    def test_parses_mirror_decimal_format(self):
        ts = Timestamp.parse("1700000000.000000123")
        self.assertEqual(ts, Timestamp(1700000000, 123))

    def test_short_fraction_is_right_padded(self):
        self.assertEqual(Timestamp.parse("10.5"), Timestamp(10, 500_000_000))

    def test_parses_iso_with_nanoseconds(self):
        ts = Timestamp.parse("2023-11-14T22:13:20.000000123Z")
        self.assertEqual(ts, Timestamp(1700000000, 123))

    def test_iso_round_trip_keeps_nanoseconds(self):
        ts = Timestamp(1700000000, 987654321)
        self.assertEqual(Timestamp.parse(ts.to_iso()), ts)

    def test_rejects_garbage(self):
        for value in ("", "yesterday", "12:00", None):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    Timestamp.parse(value)


class TestTimestampArithmetic(unittest.TestCase):

    def test_ordering_is_total(self):
        a = Timestamp(5, 999_999_999)
        b = Timestamp(6, 0)
        self.assertLess(a, b)
        self.assertEqual(a.plus_nanos(1), b)

    def test_minus_seconds_clamps_at_zero(self):
        self.assertEqual(Timestamp(3, 0).minus_seconds(10), Timestamp(0, 0))

    def test_mirror_format(self):
        self.assertEqual(Timestamp(12, 34).to_mirror(), "12.000000034")

    def test_nanos_must_be_in_range(self):
        with self.assertRaises(ValueError):
            Timestamp(1, 1_000_000_000)


if __name__ == "__main__":
    unittest.main()
