"""consensus timestamps with nanosecond precision"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone

NANOS_PER_SECOND = 1_000_000_000

_ISO_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d{1,9}))?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})?$"
)
_DECIMAL_PATTERN = re.compile(r"^(?P<seconds>\d+)(?:\.(?P<nanos>\d{1,9}))?$")


@dataclass(frozen=True, order=True)
class Timestamp:
    """consensus instant: whole seconds since the epoch plus nanoseconds"""
    seconds: int
    nanos: int = 0

    def __post_init__(self):
        if self.seconds < 0:
            raise ValueError(f"seconds must be non-negative, got {self.seconds}")
        if not 0 <= self.nanos < NANOS_PER_SECOND:
            raise ValueError(f"nanos out of range: {self.nanos}")

    @classmethod
    def from_total_nanos(cls, total: int) -> "Timestamp":
        seconds, nanos = divmod(total, NANOS_PER_SECOND)
        return cls(seconds, nanos)

    @classmethod
    def now(cls) -> "Timestamp":
        return cls.from_total_nanos(time.time_ns())

    @classmethod
    def parse(cls, value: str) -> "Timestamp":
        """accept mirror-node "<sec>.<nanos>" strings and iso-8601 strings"""
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Invalid timestamp: {value!r}")
        value = value.strip()

        match = _DECIMAL_PATTERN.match(value)
        if match:
            nanos = (match.group("nanos") or "0").ljust(9, "0")
            return cls(int(match.group("seconds")), int(nanos))

        match = _ISO_PATTERN.match(value)
        if not match:
            raise ValueError(f"Invalid timestamp: {value!r}")
        tz = match.group("tz") or "Z"
        if tz == "Z":
            tz = "+00:00"
        base = datetime.fromisoformat(match.group("base") + tz)
        nanos = int((match.group("fraction") or "0").ljust(9, "0"))
        return cls(int(base.timestamp()), nanos)

    def plus_nanos(self, amount: int) -> "Timestamp":
        return Timestamp.from_total_nanos(self.total_nanos + amount)

    def minus_seconds(self, amount: int) -> "Timestamp":
        return Timestamp.from_total_nanos(max(0, self.total_nanos - amount * NANOS_PER_SECOND))

    @property
    def total_nanos(self) -> int:
        return self.seconds * NANOS_PER_SECOND + self.nanos

    def to_iso(self) -> str:
        base = datetime.fromtimestamp(self.seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        return f"{base}.{self.nanos:09d}Z"

    def to_mirror(self) -> str:
        """format used by mirror node query filters"""
        return f"{self.seconds}.{self.nanos:09d}"

    def __str__(self) -> str:
        return self.to_mirror()
