"""
Durable resume cursor for the inbound subscription.

The checkpoint file holds ``{"lastProcessedTimestamp": "<iso-8601>"}``. It is
read once at startup and rewritten (temp file + rename) after every fully
handled envelope. Advances are monotonic: an older timestamp never overwrites
a newer one.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional, Set

from hcs.timestamps import Timestamp

logger = logging.getLogger(__name__)

CHECKPOINT_KEY = "lastProcessedTimestamp"


class ResumeCheckpoint:
    """file-backed checkpoint shared by every session of one listener"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = Lock()
        self._current: Optional[Timestamp] = None
        self._loaded = False

    def load(self) -> Optional[Timestamp]:
        """read the persisted cursor; a missing or unreadable file means no checkpoint"""
        with self._lock:
            self._current = self._read()
            self._loaded = True
            return self._current

    def _read(self) -> Optional[Timestamp]:
        if not self.path.exists():
            logger.info(f"No checkpoint at {self.path}, starting fresh")
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            value = data.get(CHECKPOINT_KEY)
            if not value:
                return None
            stamp = Timestamp.parse(value)
            logger.info(f"Loaded checkpoint {stamp.to_iso()}")
            return stamp
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable checkpoint {self.path}: {e}")
            return None

    @property
    def current(self) -> Optional[Timestamp]:
        with self._lock:
            if not self._loaded:
                self._current = self._read()
                self._loaded = True
            return self._current

    def resume_point(self, lookback_seconds: int = 60, now: Optional[Timestamp] = None) -> Timestamp:
        """one nanosecond after the checkpoint, or `lookback_seconds` before now"""
        current = self.current
        if current is not None:
            return current.plus_nanos(1)
        return (now or Timestamp.now()).minus_seconds(lookback_seconds)

    def is_processed(self, stamp: Timestamp) -> bool:
        current = self.current
        return current is not None and stamp <= current

    def advance(self, stamp: Timestamp) -> bool:
        """persist `stamp` if it is newer than the stored cursor; returns True when written"""
        with self._lock:
            if not self._loaded:
                self._current = self._read()
                self._loaded = True
            if self._current is not None and stamp <= self._current:
                logger.debug(f"Checkpoint not advanced: {stamp} <= {self._current}")
                return False
            self._write(stamp)
            self._current = stamp
            return True

    def _write(self, stamp: Timestamp) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            CHECKPOINT_KEY: stamp.to_iso(),
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        temp_file = self.path.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        temp_file.replace(self.path)
        logger.debug(f"Checkpoint saved: {stamp.to_iso()}")


class InflightTracker:
    """
    Tracks envelopes handled concurrently so the checkpoint only moves past
    a timestamp once every earlier envelope has finished too.
    """

    def __init__(self):
        self._lock = Lock()
        self._inflight: Set[Timestamp] = set()
        self._finished: Set[Timestamp] = set()

    def begin(self, stamp: Timestamp) -> bool:
        """register an envelope; False if it is in flight or finished but not yet checkpointed"""
        with self._lock:
            if stamp in self._inflight or stamp in self._finished:
                return False
            self._inflight.add(stamp)
            return True

    def finish(self, stamp: Timestamp) -> Optional[Timestamp]:
        """mark done and return the highest timestamp now safe to checkpoint, if any"""
        with self._lock:
            self._inflight.discard(stamp)
            self._finished.add(stamp)
            floor = min(self._inflight) if self._inflight else None
            safe = [s for s in self._finished if floor is None or s < floor]
            if not safe:
                return None
            highest = max(safe)
            self._finished.difference_update(safe)
            return highest

    def __contains__(self, stamp: Timestamp) -> bool:
        with self._lock:
            return stamp in self._inflight

    def __len__(self) -> int:
        with self._lock:
            return len(self._inflight)
