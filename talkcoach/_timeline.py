"""Session timeline recorder.

Accumulates finalized transcript segments, periodic metric snapshots and
editor snapshots (coding interviews) over the session lifetime. `seal()` is
a one-way transition that returns an immutable `SessionTimeline` for the
external report generator; every append afterwards raises.
"""

import dataclasses
import json
import logging
import math
import re
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from ._types import (
    CodeSnapshot,
    Energy,
    Metrics,
    PitchTrend,
    SpeakingRate,
    TranscriptSegment,
    Volume,
)

logger = logging.getLogger(__name__)

_DESCRIPTION_FULL_SCALE_CHARS = 500
_LONG_PAUSE_MS = 2000.0
_DISPLAY_PAUSE_MS = 500.0
_PATTERN_SHARE = 0.3


class TimelineSealedError(RuntimeError):
    """Raised when appending to a timeline that has already been sealed."""


def snapshot_interval_s(description_length: int, min_s: float = 15.0, max_s: float = 30.0) -> float:
    """Code-snapshot period scaled linearly by problem-description length."""
    scale = min(max(description_length, 0) / _DESCRIPTION_FULL_SCALE_CHARS, 1.0)
    return min_s + (max_s - min_s) * scale


@dataclass(frozen=True)
class MetricsSnapshot:
    """Metrics record captured at a point in the session."""

    timestamp_ms: float
    metrics: Metrics


@dataclass(frozen=True)
class SessionTimeline:
    """Sealed, read-only record of one practice session.

    Attributes:
        session_id: Unique identifier for the session.
        mode: ``presentation`` or ``interview``.
        session_type: Optional sub-category.
        started_at_ms: Wall-clock session start.
        ended_at_ms: Wall-clock time of sealing.
        final_score: Smoothed score at session end.
        metrics: Metrics record at session end.
        segments: Final transcript segments in arrival order.
        metric_snapshots: Periodic metric snapshots in capture order.
        code_snapshots: Deduplicated editor snapshots in capture order.
    """

    session_id: str
    mode: str
    session_type: Optional[str]
    started_at_ms: float
    ended_at_ms: float
    final_score: int
    metrics: Metrics
    segments: tuple[TranscriptSegment, ...] = ()
    metric_snapshots: tuple[MetricsSnapshot, ...] = ()
    code_snapshots: tuple[CodeSnapshot, ...] = ()

    @property
    def duration_s(self) -> float:
        return max(self.ended_at_ms - self.started_at_ms, 0.0) / 1000.0

    @property
    def full_transcript(self) -> str:
        return " ".join(s.text.strip() for s in self.segments if s.text.strip())

    def annotated_transcript(self) -> str:
        """Transcript with delivery markers for the report generator.

        ``[PAUSE 1.2s]`` precedes segments after a display pause, fillers are
        wrapped as ``[FILLER: um]`` and tone, pace and hesitation markers follow
        each segment in brackets.
        """
        parts = []
        for segment in self.segments:
            piece = ""
            if segment.pause_before_ms is not None and segment.pause_before_ms > _DISPLAY_PAUSE_MS:
                piece += f"[PAUSE {segment.pause_before_ms / 1000:.1f}s] "
            piece += _mark_fillers(segment.text.strip(), segment.fillers)
            markers = _segment_markers(segment)
            if markers:
                piece += f" [{', '.join(markers)}]"
            parts.append(piece)
        return " ".join(parts).strip()

    def paralinguistic_summary(self) -> str:
        """Bullet list of delivery patterns across the final segments."""
        segments = self.segments
        if not segments:
            return ""
        total = len(segments)

        def share(n: int) -> int:
            return math.floor(n / total * 100 + 0.5)

        def count(pred: Callable[[TranscriptSegment], bool]) -> int:
            return sum(1 for s in segments if pred(s))

        pauses = count(lambda s: (s.pause_before_ms or 0) > _DISPLAY_PAUSE_MS)
        long_pauses = count(lambda s: (s.pause_before_ms or 0) > _LONG_PAUSE_MS)
        quiet = count(lambda s: s.tone.volume is Volume.QUIET)
        loud = count(lambda s: s.tone.volume is Volume.LOUD)
        low_energy = count(lambda s: s.tone.energy is Energy.LOW)
        high_energy = count(lambda s: s.tone.energy is Energy.HIGH)
        rising = count(lambda s: s.tone.pitch_trend is PitchTrend.RISING)
        falling = count(lambda s: s.tone.pitch_trend is PitchTrend.FALLING)
        hesitations = count(lambda s: s.is_hesitation)
        fast = count(lambda s: s.speaking_rate is SpeakingRate.FAST)
        slow = count(lambda s: s.speaking_rate is SpeakingRate.SLOW)
        frequent = total * _PATTERN_SHARE

        lines = []
        if pauses:
            lines.append(f"- Pauses detected: {pauses} ({long_pauses} were longer than 2 seconds)")
        if quiet:
            lines.append(f"- Spoke quietly: {share(quiet)}% of the time")
        if loud:
            lines.append(f"- Spoke loudly: {share(loud)}% of the time")
        if low_energy > frequent:
            lines.append(f"- Low vocal energy detected in {share(low_energy)}% of speech")
        if high_energy > frequent:
            lines.append(f"- High vocal energy detected in {share(high_energy)}% of speech")
        if rising > frequent:
            lines.append(f"- Frequent rising pitch ({share(rising)}%), may sound uncertain or questioning")
        if falling > frequent:
            lines.append(f"- Frequent falling pitch ({share(falling)}%), sounds declarative and confident")
        if hesitations:
            lines.append(f"- Hesitations detected: {hesitations} times")
        if fast > frequent:
            lines.append(f"- Speaking pace was fast {share(fast)}% of the time")
        if slow > frequent:
            lines.append(f"- Speaking pace was slow {share(slow)}% of the time")
        return "\n".join(lines)

    def to_json(self) -> str:
        return json.dumps(dataclasses.asdict(self), indent=2, default=str)


def _mark_fillers(text: str, fillers: tuple[str, ...]) -> str:
    if not fillers:
        return text
    unique = sorted({f.lower() for f in fillers}, key=len, reverse=True)
    alternation = "|".join(r"\s+".join(re.escape(w) for w in f.split()) for f in unique)
    return re.sub(rf"\b({alternation})\b", r"[FILLER: \1]", text, flags=re.IGNORECASE)


def _segment_markers(segment: TranscriptSegment) -> list[str]:
    markers = []
    tone = segment.tone
    if tone.volume is not Volume.NORMAL:
        markers.append(tone.volume.value)
    if tone.energy is not Energy.MEDIUM:
        markers.append(f"{tone.energy.value}-energy")
    if tone.pitch_trend is not PitchTrend.FLAT:
        markers.append(f"{tone.pitch_trend.value}-pitch")
    if segment.speaking_rate is not SpeakingRate.NORMAL:
        markers.append(f"{segment.speaking_rate.value}-pace")
    if segment.is_hesitation:
        markers.append("hesitant")
    return markers


class SessionTimelineRecorder:
    """Accumulates session history until sealed.

    Args:
        clock: Wall-clock source in milliseconds.
        mode: Session mode.
        session_type: Optional sub-category.
        session_id: Defaults to a random UUID.
    """

    def __init__(
        self,
        clock: Callable[[], float],
        mode: str = "presentation",
        session_type: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self._clock = clock
        self._mode = mode
        self._session_type = session_type
        self._session_id = session_id or str(uuid.uuid4())
        self._started_at_ms = clock()
        self._segments: list[TranscriptSegment] = []
        self._metric_snapshots: list[MetricsSnapshot] = []
        self._code_snapshots: list[CodeSnapshot] = []
        self._latest_metrics = Metrics()
        self._sealed: Optional[SessionTimeline] = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def started_at_ms(self) -> float:
        return self._started_at_ms

    @property
    def is_sealed(self) -> bool:
        return self._sealed is not None

    @property
    def segments(self) -> tuple[TranscriptSegment, ...]:
        return tuple(self._segments)

    @property
    def code_snapshots(self) -> tuple[CodeSnapshot, ...]:
        return tuple(self._code_snapshots)

    def append(self, segment: TranscriptSegment) -> None:
        """Record a final segment. Interim segments are not part of the history."""
        self._check_open()
        if not segment.is_final:
            logger.debug("Ignoring interim segment for timeline")
            return
        self._segments.append(segment)

    def snapshot_metrics(self, metrics: Metrics) -> MetricsSnapshot:
        self._check_open()
        snap = MetricsSnapshot(timestamp_ms=self._clock(), metrics=metrics)
        self._metric_snapshots.append(snap)
        self._latest_metrics = metrics
        return snap

    def append_code_snapshot(self, code: str) -> bool:
        """Record the editor contents if they changed. Returns True if recorded."""
        self._check_open()
        if self._code_snapshots and self._code_snapshots[-1].code == code:
            return False
        now = self._clock()
        self._code_snapshots.append(
            CodeSnapshot(
                code=code,
                timestamp_ms=now,
                elapsed_seconds=int((now - self._started_at_ms) // 1000),
            )
        )
        logger.debug("Code snapshot %d recorded", len(self._code_snapshots))
        return True

    def seal(
        self,
        final_score: int,
        metrics: Optional[Metrics] = None,
        final_code: Optional[str] = None,
    ) -> SessionTimeline:
        """Freeze the timeline. Sealing twice raises `TimelineSealedError`."""
        self._check_open()
        if final_code is not None:
            self.append_code_snapshot(final_code)
        if metrics is not None:
            self._latest_metrics = metrics

        self._sealed = SessionTimeline(
            session_id=self._session_id,
            mode=self._mode,
            session_type=self._session_type,
            started_at_ms=self._started_at_ms,
            ended_at_ms=self._clock(),
            final_score=final_score,
            metrics=self._latest_metrics,
            segments=tuple(self._segments),
            metric_snapshots=tuple(self._metric_snapshots),
            code_snapshots=tuple(self._code_snapshots),
        )
        logger.info(
            "Session %s sealed: %.0fs, %d segments, score %d",
            self._session_id,
            self._sealed.duration_s,
            len(self._segments),
            final_score,
        )
        return self._sealed

    def _check_open(self) -> None:
        if self._sealed is not None:
            raise TimelineSealedError(f"Timeline {self._session_id} is sealed")
