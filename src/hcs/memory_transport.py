"""in-process channel transport used for simulation mode and tests"""

from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Dict, List, Optional

from hcs.errors import PayloadTooLarge, TransportError
from hcs.timestamps import Timestamp
from hcs.transport import (
    ChannelTransport,
    DEFAULT_MAX_FRAME_BYTES,
    InboundEnvelope,
    MessageHandler,
    Subscription,
)

logger = logging.getLogger(__name__)


@dataclass
class _MemorySubscription(Subscription):
    channel_id: str
    from_timestamp: Optional[Timestamp]
    on_message: MessageHandler
    _active: bool = True
    delivered: int = 0

    def stop(self) -> None:
        self._active = False

    @property
    def active(self) -> bool:
        return self._active


@dataclass
class _InjectedFailure:
    operation: str
    channel_id: Optional[str]
    remaining: int
    after: int = 0
    seen: int = field(default=0)


class InMemoryChannelTransport(ChannelTransport):
    """
    Channels kept in process memory.

    Timestamps are strictly increasing across the whole transport, sequence
    numbers start at 1 per channel. Handlers run on the appending thread,
    outside the internal lock.
    """

    def __init__(
        self,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        clock: Optional[Callable[[], Timestamp]] = None,
        first_entity_num: int = 1000,
    ):
        self.max_frame_bytes = max_frame_bytes
        self._clock = clock or Timestamp.now
        self._ids = itertools.count(first_entity_num)
        self._channels: Dict[str, List[InboundEnvelope]] = {}
        self._memos: Dict[str, str] = {}
        self._subscriptions: Dict[str, List[_MemorySubscription]] = defaultdict(list)
        self._failures: List[_InjectedFailure] = []
        self._last_timestamp: Optional[Timestamp] = None
        self._lock = RLock()

    # test hooks

    def inject_failure(self, operation: str, channel_id: Optional[str] = None, count: int = 1, after: int = 0) -> None:
        """make the next `count` matching operations fail after `after` successes"""
        with self._lock:
            self._failures.append(_InjectedFailure(operation, channel_id, count, after))

    def _maybe_fail(self, operation: str, channel_id: Optional[str] = None) -> None:
        for failure in self._failures:
            if failure.operation != operation or failure.remaining <= 0:
                continue
            if failure.channel_id is not None and failure.channel_id != channel_id:
                continue
            if failure.seen < failure.after:
                failure.seen += 1
                continue
            failure.remaining -= 1
            raise TransportError(f"Injected {operation} failure (channel={channel_id})")

    def _next_timestamp(self) -> Timestamp:
        candidate = self._clock()
        if self._last_timestamp is not None and candidate <= self._last_timestamp:
            candidate = self._last_timestamp.plus_nanos(1)
        self._last_timestamp = candidate
        return candidate

    # transport api

    def create_channel(self, memo: str) -> str:
        with self._lock:
            self._maybe_fail("create")
            channel_id = f"0.0.{next(self._ids)}"
            self._channels[channel_id] = []
            self._memos[channel_id] = memo
        logger.info(f"Created channel {channel_id} with memo {memo!r}")
        return channel_id

    def append_frame(self, channel_id: str, data: bytes) -> int:
        if not channel_id:
            raise TransportError("Channel id must be provided.")
        if data is None:
            raise TransportError("Message content must be provided.")
        if isinstance(data, str):
            data = data.encode("utf-8")
        if len(data) > self.max_frame_bytes:
            raise PayloadTooLarge(len(data), self.max_frame_bytes)

        with self._lock:
            if channel_id not in self._channels:
                raise TransportError(f"Unknown channel {channel_id}")
            self._maybe_fail("append", channel_id)
            log = self._channels[channel_id]
            envelope = InboundEnvelope(
                sequence_number=len(log) + 1,
                consensus_timestamp=self._next_timestamp(),
                payload=bytes(data),
                channel_id=channel_id,
            )
            log.append(envelope)
            targets = [s for s in self._subscriptions[channel_id] if s.active]

        logger.debug(f"Appended frame #{envelope.sequence_number} ({len(data)} bytes) to {channel_id}")
        for subscription in targets:
            self._deliver(subscription, envelope)
        return envelope.sequence_number

    def subscribe(self, channel_id: str, from_timestamp: Optional[Timestamp], on_message: MessageHandler) -> Subscription:
        with self._lock:
            self._maybe_fail("subscribe", channel_id)
            if channel_id not in self._channels:
                raise TransportError(f"Cannot subscribe: unknown channel {channel_id}")
            subscription = _MemorySubscription(channel_id, from_timestamp, on_message)
            self._subscriptions[channel_id].append(subscription)
            backlog = list(self._channels[channel_id])

        logger.info(f"Subscribed to channel {channel_id} from {from_timestamp or 'beginning'}")
        for envelope in backlog:
            self._deliver(subscription, envelope)
        return subscription

    def replay(self, channel_id: str) -> None:
        """redeliver the whole channel to active subscribers, as after a reconnect"""
        with self._lock:
            backlog = list(self._channels.get(channel_id, []))
            targets = [s for s in self._subscriptions[channel_id] if s.active]
        for subscription in targets:
            for envelope in backlog:
                self._deliver(subscription, envelope)

    def read_channel(self, channel_id: str) -> List[InboundEnvelope]:
        with self._lock:
            if channel_id not in self._channels:
                raise TransportError(f"Unknown channel {channel_id}")
            return sorted(self._channels[channel_id], key=lambda e: e.sequence_number)

    def channel_memo(self, channel_id: str) -> Optional[str]:
        with self._lock:
            return self._memos.get(channel_id)

    def channel_ids(self) -> List[str]:
        with self._lock:
            return list(self._channels)

    def _deliver(self, subscription: _MemorySubscription, envelope: InboundEnvelope) -> None:
        if not subscription.active:
            return
        if subscription.from_timestamp is not None and envelope.consensus_timestamp < subscription.from_timestamp:
            return
        try:
            subscription.on_message(envelope)
            subscription.delivered += 1
        except Exception as e:
            logger.error(
                f"Error processing message (Seq: {envelope.sequence_number}) on {envelope.channel_id}: {e}",
                exc_info=True,
            )
