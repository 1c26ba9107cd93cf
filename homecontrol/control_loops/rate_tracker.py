"""
RateTracker: sliding-window rate of change over a bounded sample buffer.

Samples live only in memory. After a restart the buffer starts empty and the
rate estimate reports ``insufficient_data`` until two samples exist.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from homecontrol.domain.climate import RateConfidence, RateReading
from homecontrol.utils.concurrency import synchronized
from homecontrol.utils.time import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)

# 24h at a 2-minute polling cadence
DEFAULT_MAX_SAMPLES = 720
HIGH_CONFIDENCE_SAMPLES = 10
MEDIUM_CONFIDENCE_SAMPLES = 5


@dataclass(frozen=True)
class Sample:
    timestamp: datetime
    value: float
    context: dict[str, Any] = field(default_factory=dict)


class RateTracker:
    """Bounded time-ordered buffer of (timestamp, value, context) samples."""

    def __init__(self, max_samples: int = DEFAULT_MAX_SAMPLES, clock: Clock | None = None):
        if max_samples < 2:
            raise ValueError("max_samples must be at least 2")
        self._samples: deque[Sample] = deque(maxlen=int(max_samples))
        self._clock = clock or SYSTEM_CLOCK
        self._lock = threading.Lock()

    @property
    def max_samples(self) -> int:
        return self._samples.maxlen or 0

    @synchronized
    def record(self, value: float, context: dict[str, Any] | None = None) -> Sample:
        """Append a sample stamped with the clock's current time; the oldest is evicted when full."""
        sample = Sample(timestamp=self._clock.now(), value=float(value), context=dict(context or {}))
        self._samples.append(sample)
        return sample

    @synchronized
    def rate_over_window(self, minutes: float) -> RateReading:
        """
        Average rate of change (units per minute) over the trailing window.

        The reference sample is the buffered one whose timestamp is closest to
        ``now - minutes``.
        """
        if len(self._samples) < 2:
            return RateReading(
                rate=0.0,
                sample_count=len(self._samples),
                confidence=RateConfidence.INSUFFICIENT_DATA,
                window_minutes=minutes,
            )

        now = self._clock.now()
        window_start = now - timedelta(minutes=minutes)
        latest = self._samples[-1]
        reference = min(self._samples, key=lambda s: abs((s.timestamp - window_start).total_seconds()))

        elapsed_minutes = (latest.timestamp - reference.timestamp).total_seconds() / 60.0
        rate = (latest.value - reference.value) / elapsed_minutes if elapsed_minutes > 0 else 0.0

        in_window = sum(1 for s in self._samples if s.timestamp >= window_start)
        if in_window >= HIGH_CONFIDENCE_SAMPLES:
            confidence = RateConfidence.HIGH
        elif in_window >= MEDIUM_CONFIDENCE_SAMPLES:
            confidence = RateConfidence.MEDIUM
        else:
            confidence = RateConfidence.LOW

        return RateReading(
            rate=round(rate, 4),
            sample_count=in_window,
            confidence=confidence,
            window_minutes=minutes,
        )

    @synchronized
    def latest(self) -> Sample | None:
        return self._samples[-1] if self._samples else None

    @synchronized
    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)
