"""tests for chunked payload storage over a channel transport"""

import os
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from hcs.chunked_store import (  # noqa: E402
    ChunkedChannelStore,
    make_reference,
    parse_reference,
    split_frames,
)
from hcs.errors import ParseError, TransportError  # noqa: E402
from hcs.memory_transport import InMemoryChannelTransport  # noqa: E402


class TestSplitFrames(unittest.TestCase):

    def test_frame_count_is_ceiling(self):
        self.assertEqual(len(split_frames(b"x" * 2500, 1024)), 3)
        self.assertEqual(len(split_frames(b"x" * 2048, 1024)), 2)
        self.assertEqual(len(split_frames(b"x", 1024)), 1)

    def test_empty_payload_has_no_frames(self):
        self.assertEqual(split_frames(b"", 1024), [])

    def test_frames_respect_limit_and_concatenate_back(self):
        payload = bytes(range(256)) * 11
        frames = split_frames(payload, 1024)
        self.assertTrue(all(len(f) <= 1024 for f in frames))
        self.assertEqual(b"".join(frames), payload)


class TestReferences(unittest.TestCase):

    def test_reference_format(self):
        self.assertEqual(make_reference("0.0.1234"), "hcs://1/0.0.1234")
        self.assertEqual(parse_reference("hcs://1/0.0.1234").channel_id, "0.0.1234")

    def test_malformed_references_raise(self):
        for bad in ("", "hcs://2/0.0.1", "http://1/0.0.1", "hcs://1/", "hcs://1/abc"):
            with self.subTest(reference=bad):
                with self.assertRaises(ParseError):
                    parse_reference(bad)


class TestChunkedChannelStore(unittest.TestCase):

    def setUp(self):
        self.transport = InMemoryChannelTransport()
        self.store = ChunkedChannelStore(self.transport)

    def test_store_then_resolve_returns_payload(self):
        payload = ("finding " * 400).encode("utf-8")
        reference = self.store.store(payload)
        self.assertEqual(self.store.resolve(reference), payload)

    def test_large_payload_is_split_in_order(self):
        payload = b"a" * 1024 + b"b" * 1024 + b"c" * 452
        reference = self.store.store(payload)
        channel_id = parse_reference(reference).channel_id
        frames = self.transport.read_channel(channel_id)
        self.assertEqual([len(f.payload) for f in frames], [1024, 1024, 452])
        self.assertEqual([f.sequence_number for f in frames], [1, 2, 3])

    def test_empty_payload_writes_no_frames_but_resolves(self):
        reference = self.store.store(b"")
        channel_id = parse_reference(reference).channel_id
        self.assertEqual(self.transport.read_channel(channel_id), [])
        self.assertEqual(self.store.resolve(reference), b"")

    def test_channel_memo_names_data_topic(self):
        reference = self.store.store(b"{}")
        memo = self.transport.channel_memo(parse_reference(reference).channel_id)
        self.assertTrue(memo.startswith("HCS-1 Data Topic - "))

    def test_failed_append_aborts_without_reference(self):
        self.transport.inject_failure("append", after=1)
        with self.assertRaises(TransportError):
            self.store.store(b"z" * 3000)

    def test_failed_channel_creation_propagates(self):
        self.transport.inject_failure("create")
        with self.assertRaises(TransportError):
            self.store.store(b"payload")

    def test_frame_size_above_transport_limit_rejected(self):
        with self.assertRaises(ValueError):
            ChunkedChannelStore(self.transport, frame_size=4096)


if __name__ == "__main__":
    unittest.main()
