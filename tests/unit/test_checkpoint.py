"""tests for the resume checkpoint and in-flight tracking"""

import json
import os
import shutil
import sys
import tempfile
import threading
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from hcs.checkpoint import InflightTracker, ResumeCheckpoint  # noqa: E402
from hcs.timestamps import Timestamp  # noqa: E402


class TestResumeCheckpoint(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp(prefix="test_checkpoint_"))
        self.path = self.temp_dir / "state" / "hcs_state.json"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file_means_no_checkpoint(self):
        checkpoint = ResumeCheckpoint(self.path)
        self.assertIsNone(checkpoint.current)
        self.assertFalse(checkpoint.is_processed(Timestamp(1, 0)))

    def test_advance_persists_iso_timestamp(self):
        checkpoint = ResumeCheckpoint(self.path)
        stamp = Timestamp(1700000000, 123456789)
        self.assertTrue(checkpoint.advance(stamp))

        data = json.loads(self.path.read_text())
        self.assertEqual(data["lastProcessedTimestamp"], stamp.to_iso())
        self.assertEqual(ResumeCheckpoint(self.path).current, stamp)
        self.assertFalse(self.path.with_suffix(".tmp").exists())

    def test_advance_never_regresses(self):
        checkpoint = ResumeCheckpoint(self.path)
        checkpoint.advance(Timestamp(200, 0))
        self.assertFalse(checkpoint.advance(Timestamp(100, 0)))
        self.assertFalse(checkpoint.advance(Timestamp(200, 0)))
        self.assertEqual(checkpoint.current, Timestamp(200, 0))

    def test_is_processed_is_inclusive(self):
        checkpoint = ResumeCheckpoint(self.path)
        checkpoint.advance(Timestamp(50, 5))
        self.assertTrue(checkpoint.is_processed(Timestamp(50, 5)))
        self.assertTrue(checkpoint.is_processed(Timestamp(50, 4)))
        self.assertFalse(checkpoint.is_processed(Timestamp(50, 6)))

    def test_unreadable_file_starts_fresh(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json")
        checkpoint = ResumeCheckpoint(self.path)
        self.assertIsNone(checkpoint.current)
        self.assertTrue(checkpoint.advance(Timestamp(10, 0)))

    def test_resume_point_is_one_nanosecond_after_checkpoint(self):
        checkpoint = ResumeCheckpoint(self.path)
        checkpoint.advance(Timestamp(10, 999_999_999))
        self.assertEqual(checkpoint.resume_point(), Timestamp(11, 0))

    def test_resume_point_without_checkpoint_looks_back(self):
        checkpoint = ResumeCheckpoint(self.path)
        now = Timestamp(1000, 0)
        self.assertEqual(checkpoint.resume_point(60, now=now), Timestamp(940, 0))

    def test_concurrent_advances_keep_the_maximum(self):
        checkpoint = ResumeCheckpoint(self.path)
        stamps = [Timestamp(100 + i, 0) for i in range(20)]
        threads = [threading.Thread(target=checkpoint.advance, args=(s,)) for s in reversed(stamps)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(ResumeCheckpoint(self.path).current, Timestamp(119, 0))


class TestInflightTracker(unittest.TestCase):

    def test_duplicate_begin_rejected(self):
        tracker = InflightTracker()
        self.assertTrue(tracker.begin(Timestamp(1, 0)))
        self.assertFalse(tracker.begin(Timestamp(1, 0)))
        self.assertIn(Timestamp(1, 0), tracker)
        self.assertEqual(len(tracker), 1)

    def test_later_finish_waits_for_earlier_envelope(self):
        tracker = InflightTracker()
        early, late = Timestamp(1, 0), Timestamp(2, 0)
        tracker.begin(early)
        tracker.begin(late)

        self.assertIsNone(tracker.finish(late))
        self.assertEqual(tracker.finish(early), late)

    def test_finished_envelope_rejected_until_checkpointable(self):
        tracker = InflightTracker()
        early, late = Timestamp(1, 0), Timestamp(2, 0)
        tracker.begin(early)
        tracker.begin(late)
        tracker.finish(late)

        self.assertFalse(tracker.begin(late))
        self.assertEqual(tracker.finish(early), late)
        self.assertTrue(tracker.begin(late))

    def test_in_order_finish_is_immediately_safe(self):
        tracker = InflightTracker()
        tracker.begin(Timestamp(1, 0))
        self.assertEqual(tracker.finish(Timestamp(1, 0)), Timestamp(1, 0))
        self.assertEqual(len(tracker), 0)


if __name__ == "__main__":
    unittest.main()
