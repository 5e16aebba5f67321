"""
Audit Listener

Owns the single subscription on the agent inbound channel. Envelopes at or
before the checkpoint, or already in flight, are dropped; the rest are
handed to a worker pool. The checkpoint advances only after an envelope has
been handled to a terminal state, and never past an envelope still running.
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock
from typing import Deque, List, Optional

from config import config
from hcs.checkpoint import InflightTracker, ResumeCheckpoint
from hcs.transport import ChannelTransport, InboundEnvelope, Subscription
from utils.correlation import auditcontext
from utils.shutdown import register_executor
from agent.router import RequestRouter, RouteResult

logger = logging.getLogger(__name__)


class AuditListener:
    def __init__(
        self,
        transport: ChannelTransport,
        router: RequestRouter,
        checkpoint: ResumeCheckpoint,
        inbound_channel_id: str,
        workers: Optional[int] = None,
        lookback_seconds: Optional[int] = None,
        tracker: Optional[InflightTracker] = None,
        register_for_shutdown: bool = True,
        collect_results: bool = False,
        max_results: int = 1000,
    ):
        self.transport = transport
        self.router = router
        self.checkpoint = checkpoint
        self.inbound_channel_id = inbound_channel_id
        self.workers = workers or config.AUDIT_WORKERS
        self.lookback_seconds = (
            config.SUBSCRIPTION_LOOKBACK_SECONDS if lookback_seconds is None else lookback_seconds
        )
        self.tracker = tracker or InflightTracker()
        self.register_for_shutdown = register_for_shutdown
        self._executor: Optional[ThreadPoolExecutor] = None
        self._subscription: Optional[Subscription] = None
        self._futures: List[Future] = []
        self._futures_lock = Lock()
        self.collect_results = collect_results
        self.results: Deque[RouteResult] = deque(maxlen=max_results)
        # dedup check and checkpoint advance must not interleave
        self._progress_lock = Lock()

    def start(self) -> Subscription:
        """subscribe from the resume point; TransportError propagates"""
        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="audit")
        if self.register_for_shutdown:
            register_executor(self._executor)

        self.checkpoint.load()
        start_from = self.checkpoint.resume_point(self.lookback_seconds)
        logger.info(f"Listening on {self.inbound_channel_id} from {start_from} with {self.workers} worker(s)")
        try:
            self._subscription = self.transport.subscribe(self.inbound_channel_id, start_from, self.on_message)
        except Exception:
            self._executor.shutdown(wait=False)
            self._executor = None
            raise
        return self._subscription

    def on_message(self, envelope: InboundEnvelope) -> None:
        stamp = envelope.consensus_timestamp
        with self._progress_lock:
            if self.checkpoint.is_processed(stamp):
                logger.debug(f"Skipping already processed envelope #{envelope.sequence_number} ({stamp})")
                return
            if not self.tracker.begin(stamp):
                logger.debug(f"Envelope #{envelope.sequence_number} already in flight")
                return
        if self._executor is None:
            self.tracker.finish(stamp)
            raise RuntimeError("AuditListener.start() has not been called")

        future = self._executor.submit(self._process, envelope)
        with self._futures_lock:
            self._futures = [f for f in self._futures if not f.done()]
            self._futures.append(future)

    def _process(self, envelope: InboundEnvelope) -> Optional[RouteResult]:
        result = None
        with auditcontext(f"seq-{envelope.sequence_number}"):
            try:
                result = self.router.handle(envelope)
                logger.info(f"Envelope #{envelope.sequence_number} finished: {result.state.value}")
                if self.collect_results:
                    self.results.append(result)
            except Exception as e:
                logger.error(f"Unhandled error processing envelope #{envelope.sequence_number}: {e}",
                             exc_info=True)
            finally:
                with self._progress_lock:
                    safe = self.tracker.finish(envelope.consensus_timestamp)
                    if safe is not None:
                        self.checkpoint.advance(safe)
        return result

    def drain(self, timeout: Optional[float] = None) -> None:
        """wait for every submitted envelope, including ones queued while waiting"""
        while True:
            with self._futures_lock:
                pending = [f for f in self._futures if not f.done()]
            if not pending:
                return
            for future in pending:
                future.result(timeout=timeout)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.stop()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        logger.info("Audit listener stopped")
