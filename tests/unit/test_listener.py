"""tests for the inbound listener: dedup, worker dispatch and checkpointing"""

import json
import os
import shutil
import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import MagicMock

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from agent.listener import AuditListener  # noqa: E402
from agent.router import RouteResult, RouteState  # noqa: E402
from hcs.checkpoint import ResumeCheckpoint  # noqa: E402
from hcs.errors import TransportError  # noqa: E402
from hcs.memory_transport import InMemoryChannelTransport  # noqa: E402
from utils.correlation import get_session_id  # noqa: E402


def request(n):
    return json.dumps({"p": "hcs-10", "op": "connection_request", "operator_id": "0.0.1@0.0.2", "m": f"audit 0.0.{n}"})


class TestAuditListener(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp(prefix="test_listener_"))
        self.checkpoint = ResumeCheckpoint(self.temp_dir / "checkpoint.json")
        self.transport = InMemoryChannelTransport()
        self.inbound = self.transport.create_channel("inbound")
        self.router = MagicMock()
        self.sessions = []

        def handle(envelope):
            self.sessions.append(get_session_id())
            return RouteResult(RouteState.SKIPPED, reason="test")

        self.router.handle.side_effect = handle
        self.listener = self.make_listener()

    def tearDown(self):
        self.listener.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_listener(self, **kwargs):
        kwargs.setdefault("workers", 2)
        kwargs.setdefault("collect_results", True)
        return AuditListener(self.transport, self.router, self.checkpoint, self.inbound,
                             lookback_seconds=60, register_for_shutdown=False, **kwargs)

    def test_messages_are_handled_and_checkpointed(self):
        self.listener.start()
        for n in range(3):
            self.transport.append_text(self.inbound, request(n))
        self.listener.drain(timeout=5)

        self.assertEqual(self.router.handle.call_count, 3)
        last = self.transport.read_channel(self.inbound)[-1]
        self.assertEqual(self.checkpoint.current, last.consensus_timestamp)
        self.assertEqual(len(self.listener.results), 3)

        saved = json.loads((self.temp_dir / "checkpoint.json").read_text())
        self.assertEqual(saved["lastProcessedTimestamp"], last.consensus_timestamp.to_iso())

    def test_results_are_kept_only_when_asked_and_bounded(self):
        quiet = AuditListener(self.transport, self.router, ResumeCheckpoint(self.temp_dir / "quiet.json"), self.inbound,
                              workers=1, lookback_seconds=60, register_for_shutdown=False)
        bounded = AuditListener(self.transport, self.router, ResumeCheckpoint(self.temp_dir / "bounded.json"),
                                self.inbound, workers=1, lookback_seconds=60, register_for_shutdown=False,
                                collect_results=True, max_results=2)
        quiet.start()
        bounded.start()
        for n in range(3):
            self.transport.append_text(self.inbound, request(n))
        quiet.drain(timeout=5)
        bounded.drain(timeout=5)
        quiet.stop()
        bounded.stop()

        self.assertEqual(len(quiet.results), 0)
        self.assertEqual(len(bounded.results), 2)

    def test_each_envelope_runs_under_its_own_session_id(self):
        self.listener.start()
        self.transport.append_text(self.inbound, request(1))
        self.transport.append_text(self.inbound, request(2))
        self.listener.drain(timeout=5)
        self.assertEqual(sorted(self.sessions), ["seq-1", "seq-2"])

    def test_redelivery_after_checkpoint_is_ignored(self):
        self.listener.start()
        self.transport.append_text(self.inbound, request(1))
        self.listener.drain(timeout=5)

        self.transport.replay(self.inbound)
        self.listener.drain(timeout=5)
        self.assertEqual(self.router.handle.call_count, 1)

    def test_restart_resumes_after_checkpoint(self):
        self.transport.append_text(self.inbound, request(1))
        self.listener.start()
        self.listener.drain(timeout=5)
        self.listener.stop()

        self.transport.append_text(self.inbound, request(2))
        restarted = AuditListener(self.transport, self.router, ResumeCheckpoint(self.temp_dir / "checkpoint.json"),
                                  self.inbound, workers=1, register_for_shutdown=False)
        restarted.start()
        restarted.drain(timeout=5)
        restarted.stop()
        self.assertEqual(self.router.handle.call_count, 2)

    def test_envelope_in_flight_is_not_submitted_twice(self):
        self.transport.append_text(self.inbound, request(1))
        envelope = self.transport.read_channel(self.inbound)[0]
        self.listener.tracker.begin(envelope.consensus_timestamp)

        self.listener.start()
        self.listener.on_message(envelope)
        self.listener.drain(timeout=5)
        self.router.handle.assert_not_called()
        self.assertIsNone(self.checkpoint.current)

    def test_handler_error_still_advances_checkpoint(self):
        self.router.handle.side_effect = RuntimeError("boom")
        self.listener.start()
        self.transport.append_text(self.inbound, request(1))
        self.listener.drain(timeout=5)

        envelope = self.transport.read_channel(self.inbound)[0]
        self.assertEqual(self.checkpoint.current, envelope.consensus_timestamp)
        self.assertEqual(list(self.listener.results), [])

    def test_checkpoint_waits_for_earlier_envelopes(self):
        release = threading.Event()
        started = threading.Event()

        def handle(envelope):
            if envelope.sequence_number == 1:
                started.set()
                release.wait(5)
            return RouteResult(RouteState.SKIPPED)

        self.router.handle.side_effect = handle
        self.listener.start()
        self.transport.append_text(self.inbound, request(1))
        started.wait(5)
        self.transport.append_text(self.inbound, request(2))

        second = self.transport.read_channel(self.inbound)[1]
        time.sleep(0.2)
        self.assertIsNone(self.checkpoint.current)

        release.set()
        self.listener.drain(timeout=5)
        self.assertEqual(self.checkpoint.current, second.consensus_timestamp)

    def test_redelivery_of_finished_envelope_behind_a_running_one_is_ignored(self):
        release = threading.Event()
        started = threading.Event()
        handled = []

        def handle(envelope):
            handled.append(envelope.sequence_number)
            if envelope.sequence_number == 1:
                started.set()
                release.wait(5)
            return RouteResult(RouteState.SKIPPED)

        self.router.handle.side_effect = handle
        self.listener.start()
        self.transport.append_text(self.inbound, request(1))
        started.wait(5)
        self.transport.append_text(self.inbound, request(2))

        deadline = time.time() + 5
        while len(self.listener.tracker) > 1 and time.time() < deadline:
            time.sleep(0.01)
        self.assertEqual(len(self.listener.tracker), 1)

        self.transport.replay(self.inbound)
        release.set()
        self.listener.drain(timeout=5)

        self.assertEqual(sorted(handled), [1, 2])
        self.assertEqual(self.checkpoint.current, self.transport.read_channel(self.inbound)[1].consensus_timestamp)

    def test_subscribe_failure_propagates(self):
        self.transport.inject_failure("subscribe", channel_id=self.inbound)
        with self.assertRaises(TransportError):
            self.listener.start()

    def test_on_message_before_start_raises(self):
        self.transport.append_text(self.inbound, request(1))
        envelope = self.transport.read_channel(self.inbound)[0]
        with self.assertRaises(RuntimeError):
            self.listener.on_message(envelope)
        self.assertEqual(len(self.listener.tracker), 0)


if __name__ == "__main__":
    unittest.main()
