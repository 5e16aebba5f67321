"""channel transport capability interface"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

from hcs.timestamps import Timestamp

DEFAULT_MAX_FRAME_BYTES = 1024


@dataclass(frozen=True)
class InboundEnvelope:
    """one message as delivered by the transport; immutable once delivered"""
    sequence_number: int
    consensus_timestamp: Timestamp
    payload: bytes
    channel_id: str = ""

    @property
    def order_key(self):
        return (self.consensus_timestamp, self.sequence_number)

    def text(self) -> str:
        return self.payload.decode("utf-8")


MessageHandler = Callable[[InboundEnvelope], None]


class Subscription(ABC):
    """handle returned by subscribe(); stop() ends delivery"""

    @abstractmethod
    def stop(self) -> None:
        """stop delivering messages"""

    @property
    @abstractmethod
    def active(self) -> bool:
        """whether the subscription is still delivering"""


class ChannelTransport(ABC):
    """
    Append-only ordered channels.

    Implementations must:
        - reject frames larger than max_frame_bytes with PayloadTooLarge
        - raise TransportError for any non-success terminal status
        - deliver subscribed envelopes in (timestamp, sequence) order,
          at-least-once, and keep the stream alive when on_message raises
    """

    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES

    @abstractmethod
    def create_channel(self, memo: str) -> str:
        """create a channel, return its id"""

    @abstractmethod
    def append_frame(self, channel_id: str, data: bytes) -> int:
        """append one frame, return its sequence number"""

    @abstractmethod
    def subscribe(
        self,
        channel_id: str,
        from_timestamp: Optional[Timestamp],
        on_message: MessageHandler,
    ) -> Subscription:
        """deliver envelopes with timestamp >= from_timestamp to on_message"""

    @abstractmethod
    def read_channel(self, channel_id: str) -> List[InboundEnvelope]:
        """read every envelope currently in the channel, in append order"""

    def append_text(self, channel_id: str, text: str) -> int:
        return self.append_frame(channel_id, text.encode("utf-8"))

    def close(self) -> None:
        """release client resources"""
