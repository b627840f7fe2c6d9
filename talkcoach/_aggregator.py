"""Session-scoped live metrics record.

Each field has exactly one writer: the transcript segmenter owns the speech
fields, the body-signal sampler owns the body fields. Writers never read
each other's fields, so last-write-wins per field needs no locking on the
single-threaded event loop. Readers take a `Metrics` snapshot, which may
combine fields written at slightly different moments.
"""

import logging
import math
from typing import Optional

from ._types import Metrics

logger = logging.getLogger(__name__)

SPEECH_FIELDS = frozenset({"pace_wpm", "filler_rate_per_min", "max_pause_ms", "pause_count"})
BODY_FIELDS = frozenset({"eye_contact_pct", "motion_energy"})


class MetricsAggregator:
    """Live metrics record with field-disjoint writers and an explicit lifecycle.

    Created when a session starts and closed when it stops. After `close()`
    every write is dropped, so an in-flight sampler tick that completes after
    stop cannot leak into the final snapshot.

    Args:
        initial: Starting values; defaults to the neutral `Metrics()`.
    """

    def __init__(self, initial: Optional[Metrics] = None) -> None:
        start = initial or Metrics()
        self._pace_wpm = start.pace_wpm
        self._filler_rate_per_min = start.filler_rate_per_min
        self._eye_contact_pct = start.eye_contact_pct
        self._max_pause_ms = start.max_pause_ms
        self._pause_count = start.pause_count
        self._motion_energy = start.motion_energy
        self._version = 0
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def version(self) -> int:
        """Monotonic counter bumped on every accepted write."""
        return self._version

    def close(self) -> None:
        """Reject all further writes. Idempotent."""
        if self._open:
            self._open = False
            logger.debug("Metrics record closed at version %d", self._version)

    def update_speech(
        self,
        pace_wpm: Optional[float] = None,
        filler_rate_per_min: Optional[float] = None,
        max_pause_ms: Optional[float] = None,
        pause_count: Optional[int] = None,
    ) -> bool:
        """Write speech-derived fields. Returns False if the record is closed."""
        if not self._open:
            logger.debug("Dropping speech metrics write after close")
            return False
        if _usable(pace_wpm):
            self._pace_wpm = float(pace_wpm)
        if _usable(filler_rate_per_min):
            self._filler_rate_per_min = float(filler_rate_per_min)
        if _usable(max_pause_ms):
            self._max_pause_ms = float(max_pause_ms)
        if pause_count is not None and pause_count >= 0:
            self._pause_count = int(pause_count)
        self._version += 1
        return True

    def update_body(
        self,
        eye_contact_pct: Optional[float] = None,
        motion_energy: Optional[float] = None,
    ) -> bool:
        """Write body-signal fields. Returns False if the record is closed."""
        if not self._open:
            logger.debug("Dropping body metrics write after close")
            return False
        if _usable(eye_contact_pct):
            self._eye_contact_pct = min(max(float(eye_contact_pct), 0.0), 1.0)
        if _usable(motion_energy):
            self._motion_energy = min(max(float(motion_energy), 0.0), 1.0)
        self._version += 1
        return True

    def snapshot(self) -> Metrics:
        """Return the current values as an immutable `Metrics`."""
        return Metrics(
            pace_wpm=self._pace_wpm,
            filler_rate_per_min=self._filler_rate_per_min,
            eye_contact_pct=self._eye_contact_pct,
            max_pause_ms=self._max_pause_ms,
            pause_count=self._pause_count,
            motion_energy=self._motion_energy,
        )


def _usable(value: Optional[float]) -> bool:
    if value is None:
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False
