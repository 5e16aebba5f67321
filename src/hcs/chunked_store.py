"""
Large payloads over a size-limited channel transport.

A payload is split into frames no larger than the transport limit, every
frame is appended to one freshly created channel and the channel is then
addressed by a short reference of the form ``hcs://1/<channel-id>``.
Version 1 means plain bytes: concatenate frames in append order.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import List, Optional, Union

from hcs.errors import ParseError, TransportError
from hcs.transport import ChannelTransport

logger = logging.getLogger(__name__)

REFERENCE_SCHEME = "hcs"
REFERENCE_VERSION = 1

_REFERENCE_PATTERN = re.compile(r"^(?P<scheme>[a-z][a-z0-9+.-]*)://(?P<version>\d+)/(?P<channel>\d+\.\d+\.\d+)$")


@dataclass(frozen=True)
class ChunkReference:
    """parsed form of a chunked-object reference"""
    channel_id: str
    version: int = REFERENCE_VERSION
    scheme: str = REFERENCE_SCHEME

    def __str__(self) -> str:
        return f"{self.scheme}://{self.version}/{self.channel_id}"


def split_frames(payload: bytes, frame_size: int) -> List[bytes]:
    """
    Split payload into ceil(len/frame_size) ordered frames.

    Frame i holds payload[i*frame_size:(i+1)*frame_size]; an empty payload
    yields no frames.
    """
    if frame_size <= 0:
        raise ValueError(f"frame_size must be positive, got {frame_size}")
    return [payload[i:i + frame_size] for i in range(0, len(payload), frame_size)]


def make_reference(channel_id: str) -> str:
    return str(ChunkReference(channel_id))


def parse_reference(reference: str) -> ChunkReference:
    match = _REFERENCE_PATTERN.match((reference or "").strip())
    if not match:
        raise ParseError(f"Invalid chunk reference: {reference!r}")
    if match.group("scheme") != REFERENCE_SCHEME:
        raise ParseError(f"Unsupported reference scheme: {match.group('scheme')!r}")
    version = int(match.group("version"))
    if version != REFERENCE_VERSION:
        raise ParseError(f"Unsupported reference version: {version}")
    return ChunkReference(match.group("channel"), version)


class ChunkedChannelStore:
    """store()/resolve() over a ChannelTransport"""

    def __init__(self, transport: ChannelTransport, frame_size: Optional[int] = None):
        self.transport = transport
        self.frame_size = frame_size or transport.max_frame_bytes
        if self.frame_size > transport.max_frame_bytes:
            raise ValueError(
                f"frame_size {self.frame_size} exceeds transport limit {transport.max_frame_bytes}"
            )

    def store(self, payload: Union[bytes, str], memo: Optional[str] = None) -> str:
        """
        Write payload to a new channel and return its reference.

        Any failed append aborts the whole store; no reference is returned
        for a partially written channel.
        """
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        memo = memo or f"HCS-1 Data Topic - {datetime.now(timezone.utc).isoformat()}"
        channel_id = self.transport.create_channel(memo)
        reference = make_reference(channel_id)

        frames = split_frames(payload, self.frame_size)
        if not frames:
            logger.info(f"Stored empty payload at {reference}")
            return reference

        for index, frame in enumerate(frames):
            try:
                self.transport.append_frame(channel_id, frame)
            except TransportError as e:
                logger.error(f"Chunk {index + 1}/{len(frames)} failed for {channel_id}: {e}")
                raise

        logger.info(f"Stored {len(payload)} bytes in {len(frames)} frame(s) at {reference}")
        return reference

    def resolve(self, reference: str) -> bytes:
        """read every frame of the referenced channel and concatenate in sequence order"""
        parsed = parse_reference(reference)
        envelopes = self.transport.read_channel(parsed.channel_id)
        ordered = sorted(envelopes, key=lambda e: e.sequence_number)
        return b"".join(e.payload for e in ordered)
