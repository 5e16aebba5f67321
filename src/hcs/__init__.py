"""hedera consensus service layer: transport, chunked objects, checkpoint, hcs-10 messages"""

from .errors import HCSError, ParseError, TransportError, PayloadTooLarge
from .timestamps import Timestamp
from .transport import ChannelTransport, InboundEnvelope, Subscription, DEFAULT_MAX_FRAME_BYTES
from .memory_transport import InMemoryChannelTransport
from .chunked_store import ChunkedChannelStore, split_frames, parse_reference, make_reference
from .checkpoint import ResumeCheckpoint, InflightTracker

__all__ = [
    "HCSError",
    "ParseError",
    "TransportError",
    "PayloadTooLarge",
    "Timestamp",
    "ChannelTransport",
    "InboundEnvelope",
    "Subscription",
    "DEFAULT_MAX_FRAME_BYTES",
    "InMemoryChannelTransport",
    "ChunkedChannelStore",
    "split_frames",
    "parse_reference",
    "make_reference",
    "ResumeCheckpoint",
    "InflightTracker",
]
