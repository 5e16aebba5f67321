"""
Hedera Consensus Service transport.

Writes (topic create, message submit) go through the hiero sdk; reads and
subscriptions poll the mirror node REST api with requests. The sdk is an
optional extra and is imported when the transport is constructed.
"""

from __future__ import annotations

import base64
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests

from config import config
from hcs.errors import PayloadTooLarge, TransportError
from hcs.timestamps import Timestamp
from hcs.transport import ChannelTransport, InboundEnvelope, MessageHandler, Subscription
from utils.retry import RetryExhausted, RetryPolicy

logger = logging.getLogger(__name__)


class MirrorNodeClient:
    """thin wrapper over /api/v1/topics/<id>/messages"""

    def __init__(self, base_url: str, timeout: int = 30, page_limit: int = 100, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_limit = page_limit
        self.session = session or requests.Session()

    def fetch_messages(self, topic_id: str, from_timestamp: Optional[Timestamp] = None) -> List[InboundEnvelope]:
        """every message at or after from_timestamp, following pagination links"""
        params: Optional[Dict[str, Any]] = {"order": "asc", "limit": self.page_limit}
        if from_timestamp is not None:
            params["timestamp"] = f"gte:{from_timestamp.to_mirror()}"
        url = f"{self.base_url}/api/v1/topics/{topic_id}/messages"

        envelopes: List[InboundEnvelope] = []
        while url:
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                raise TransportError(f"Mirror node request failed for {topic_id}: {e}") from e
            if response.status_code == 404:
                raise TransportError(f"Topic {topic_id} not found on mirror node")
            if response.status_code != 200:
                raise TransportError(f"Mirror node returned HTTP {response.status_code} for {topic_id}")

            body = response.json()
            for item in body.get("messages", []):
                envelopes.append(self._to_envelope(topic_id, item))

            next_link = (body.get("links") or {}).get("next")
            url = f"{self.base_url}{next_link}" if next_link else None
            params = None
        return envelopes

    @staticmethod
    def _to_envelope(topic_id: str, item: Dict[str, Any]) -> InboundEnvelope:
        try:
            return InboundEnvelope(
                sequence_number=int(item["sequence_number"]),
                consensus_timestamp=Timestamp.parse(item["consensus_timestamp"]),
                payload=base64.b64decode(item.get("message") or ""),
                channel_id=topic_id,
            )
        except (KeyError, ValueError, TypeError) as e:
            raise TransportError(f"Malformed mirror node message on {topic_id}: {e}") from e


class _PollingSubscription(Subscription):
    """background thread that polls the mirror node and advances its own cursor"""

    def __init__(self, mirror: MirrorNodeClient, channel_id: str, from_timestamp: Optional[Timestamp],
                 on_message: MessageHandler, poll_interval: float):
        self.mirror = mirror
        self.channel_id = channel_id
        self.cursor = from_timestamp
        self.on_message = on_message
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        # first poll runs on the caller's thread so a bad topic fails fast
        self.poll_once()
        self._thread = threading.Thread(target=self._run, name=f"hcs-sub-{self.channel_id}", daemon=True)
        self._thread.start()

    def poll_once(self) -> int:
        envelopes = self.mirror.fetch_messages(self.channel_id, self.cursor)
        envelopes.sort(key=lambda e: e.order_key)
        for envelope in envelopes:
            if self._stop.is_set():
                break
            try:
                self.on_message(envelope)
            except Exception as e:
                logger.error(
                    f"Error processing message (Seq: {envelope.sequence_number}) on {self.channel_id}: {e}",
                    exc_info=True,
                )
            self.cursor = envelope.consensus_timestamp.plus_nanos(1)
        return len(envelopes)

    def _run(self) -> None:
        while not self._stop.wait(self.poll_interval):
            try:
                self.poll_once()
            except TransportError as e:
                logger.warning(f"Subscription poll failed for {self.channel_id}, retrying: {e}")

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.poll_interval * 2)

    @property
    def active(self) -> bool:
        return not self._stop.is_set()


class HederaChannelTransport(ChannelTransport):
    def __init__(
        self,
        network: Optional[str] = None,
        account_id: Optional[str] = None,
        private_key: Optional[str] = None,
        mirror_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        try:
            import hiero_sdk_python as hiero
        except ImportError as e:
            raise ImportError(
                "hiero-sdk-python not installed. Install with: pip install 'hcs-audit-agent[hedera]'"
            ) from e

        self._sdk = hiero
        self.network = network or config.HEDERA_NETWORK
        self.account_id = account_id or config.HEDERA_ACCOUNT_ID
        private_key = private_key or config.HEDERA_PRIVATE_KEY
        if not self.account_id or not private_key:
            raise ValueError("HEDERA_ACCOUNT_ID and HEDERA_PRIVATE_KEY are required for the Hedera transport")

        self.max_frame_bytes = config.MAX_FRAME_BYTES
        self.mirror = MirrorNodeClient(
            mirror_url or config.MIRROR_NODE_URL,
            timeout=config.SOURCE_FETCH_TIMEOUT,
            page_limit=config.MIRROR_PAGE_LIMIT,
        )
        self._subscriptions: List[_PollingSubscription] = []

        policy = retry_policy or RetryPolicy(
            max_attempts=config.CLIENT_INIT_MAX_RETRIES,
            base_delay=config.CLIENT_INIT_BACKOFF_SECONDS,
        )
        retry_kwargs = {"sleep": sleep} if sleep else {}
        try:
            self._client, self._key = policy.run(
                lambda: self._init_client(private_key),
                label="Hedera client initialization",
                **retry_kwargs,
            )
        except RetryExhausted as e:
            raise TransportError(f"Hedera client initialization failed: {e.last_error}") from e

        logger.info(f"Hedera client initialized for network: {self.network}, operator: {self.account_id}")

    def _init_client(self, private_key: str):
        hiero = self._sdk
        client = hiero.Client(hiero.Network(network=self.network))
        key = hiero.PrivateKey.from_string(private_key)
        client.set_operator(hiero.AccountId.from_string(self.account_id), key)
        return client, key

    def _check_receipt(self, receipt, action: str) -> None:
        status = getattr(receipt, "status", None)
        if status != self._sdk.ResponseCode.SUCCESS:
            raise TransportError(f"{action} failed with status: {status}")

    def create_channel(self, memo: str) -> str:
        hiero = self._sdk
        try:
            transaction = (
                hiero.TopicCreateTransaction(memo=memo, admin_key=self._key.public_key())
                .freeze_with(self._client)
                .sign(self._key)
            )
            receipt = transaction.execute(self._client)
        except Exception as e:
            raise TransportError(f"Topic creation failed: {e}") from e

        self._check_receipt(receipt, "Topic creation")
        topic_id = getattr(receipt, "topic_id", None)
        if topic_id is None:
            raise TransportError("Topic creation failed: no topic id in receipt")
        logger.info(f"Created topic {topic_id} with memo {memo!r}")
        return str(topic_id)

    def append_frame(self, channel_id: str, data: bytes) -> int:
        if not channel_id:
            raise TransportError("Topic ID must be provided.")
        if data is None:
            raise TransportError("Message content must be provided.")
        if isinstance(data, str):
            data = data.encode("utf-8")
        if len(data) > self.max_frame_bytes:
            raise PayloadTooLarge(len(data), self.max_frame_bytes)

        hiero = self._sdk
        try:
            transaction = (
                hiero.TopicMessageSubmitTransaction(topic_id=hiero.TopicId.from_string(channel_id), message=data)
                .freeze_with(self._client)
                .sign(self._key)
            )
            receipt = transaction.execute(self._client)
        except Exception as e:
            raise TransportError(f"Message submission to {channel_id} failed: {e}") from e

        self._check_receipt(receipt, f"Message submission to {channel_id}")
        sequence_number = getattr(receipt, "topic_sequence_number", None)
        if sequence_number is None:
            raise TransportError(f"Message submission to {channel_id}: no sequence number in receipt")
        logger.info(f"Submitted {len(data)} bytes to topic {channel_id}. Sequence number: {sequence_number}")
        return int(sequence_number)

    def subscribe(self, channel_id: str, from_timestamp: Optional[Timestamp], on_message: MessageHandler) -> Subscription:
        subscription = _PollingSubscription(
            self.mirror, channel_id, from_timestamp, on_message, config.SUBSCRIPTION_POLL_INTERVAL
        )
        subscription.start()
        self._subscriptions.append(subscription)
        logger.info(f"Subscribed to topic {channel_id} from {from_timestamp or 'beginning'}")
        return subscription

    def read_channel(self, channel_id: str) -> List[InboundEnvelope]:
        envelopes = self.mirror.fetch_messages(channel_id)
        return sorted(envelopes, key=lambda e: e.sequence_number)

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.stop()
        self._subscriptions.clear()
        client_close = getattr(self._client, "close", None)
        if callable(client_close):
            client_close()
