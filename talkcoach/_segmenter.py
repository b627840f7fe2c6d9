"""Transcript segmenter: annotates recognizer results and derives speech metrics.

Every recognizer event is turned into `TranscriptSegment` values carrying
filler words, a hesitation flag, a speaking-rate class and the tone of voice
at the moment the segment was emitted. Final segments are appended to an
insertion-ordered history that is never mutated; at most one interim
segment is live at a time and each new interim replaces it.

Two pause notions coexist and must not be merged:
  - display pause: gap between consecutive *final* segments above 500ms,
    stored on the segment as ``pause_before_ms`` for transcript rendering;
  - metric pause: gap between consecutive recognizer events of any kind
    above 1500ms, counted into ``pause_count`` / ``max_pause_ms``.
"""

import logging
import math
import re
from typing import Callable, Iterable, Optional, Sequence

from ._aggregator import MetricsAggregator
from ._types import RawSegment, SpeakingRate, ToneInfo, TranscriptSegment
from .config import SegmenterConfig

logger = logging.getLogger(__name__)

TranscriptListener = Callable[[TranscriptSegment], None]
ToneProvider = Callable[[], ToneInfo]

_HESITATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(um|uh|er|ah)+\s", re.IGNORECASE),
    re.compile(r"\s(um|uh|er|ah)+\s", re.IGNORECASE),
    re.compile(r"\.{2,}|…"),
    re.compile(r"^i\s+(mean|think|guess)", re.IGNORECASE),
)


def build_filler_pattern(lexicon: Iterable[str]) -> re.Pattern[str]:
    """Compile a lexicon into one whole-word, case-insensitive alternation.

    Longer entries are tried first, so with a single left-to-right scan a
    multi-word filler wins over any filler it contains and matches never
    overlap.
    """
    entries = sorted({e.strip().lower() for e in lexicon if e.strip()}, key=len, reverse=True)
    if not entries:
        raise ValueError("Filler lexicon must contain at least one entry")
    alternation = "|".join(r"\s+".join(re.escape(w) for w in entry.split()) for entry in entries)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


def detect_fillers(text: str, pattern: re.Pattern[str]) -> tuple[str, ...]:
    """Return filler occurrences as written in ``text``, leftmost first."""
    return tuple(m.group(0) for m in pattern.finditer(text))


def is_hesitation(text: str) -> bool:
    stripped = text.strip()
    return any(p.search(stripped) for p in _HESITATION_PATTERNS)


def classify_speaking_rate(
    word_count: int,
    duration_ms: float,
    config: SegmenterConfig,
) -> SpeakingRate:
    if duration_ms < config.min_rate_duration_ms:
        return SpeakingRate.NORMAL
    wpm = word_count / duration_ms * 60_000.0
    if wpm < config.slow_below_wpm:
        return SpeakingRate.SLOW
    if wpm > config.fast_above_wpm:
        return SpeakingRate.FAST
    return SpeakingRate.NORMAL


class TranscriptSegmenter:
    """Consumes recognizer events and owns the speech fields of the metrics record.

    Word and filler counters are session-lifetime: when the recognizer stream
    ends and is restarted by its owner, accumulation simply resumes. Retrying
    the recognizer is not this class's job.

    Args:
        metrics: Session metrics record; only speech fields are written.
        clock: Wall-clock source in milliseconds.
        config: Segmenter thresholds and filler lexicon.
        tone_provider: Returns the prosody sampler's current tone.
        on_transcript: Called with every emitted segment, interim or final.
    """

    def __init__(
        self,
        metrics: MetricsAggregator,
        clock: Callable[[], float],
        config: Optional[SegmenterConfig] = None,
        tone_provider: Optional[ToneProvider] = None,
        on_transcript: Optional[TranscriptListener] = None,
    ) -> None:
        self._metrics = metrics
        self._clock = clock
        self._config = config or SegmenterConfig()
        self._tone_provider = tone_provider or ToneInfo
        self._on_transcript = on_transcript
        self._filler_pattern = build_filler_pattern(self._config.filler_words)

        self._running = False
        self._start_ms: Optional[float] = None
        self._last_final_ms: Optional[float] = None
        self._last_event_ms: Optional[float] = None
        self._finals: list[TranscriptSegment] = []
        self._interim: Optional[TranscriptSegment] = None
        self._finalized_indices: set[int] = set()

        self._word_count = 0
        self._filler_count = 0
        self._pause_count = 0
        self._max_pause_ms = 0.0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def word_count(self) -> int:
        return self._word_count

    @property
    def filler_count(self) -> int:
        return self._filler_count

    @property
    def pause_count(self) -> int:
        return self._pause_count

    @property
    def max_pause_ms(self) -> float:
        return self._max_pause_ms

    @property
    def final_segments(self) -> tuple[TranscriptSegment, ...]:
        return tuple(self._finals)

    @property
    def transcript(self) -> list[TranscriptSegment]:
        """Consumer-visible sequence: all finals plus at most one trailing interim."""
        if self._interim is None:
            return list(self._finals)
        return [*self._finals, self._interim]

    def full_transcript(self) -> str:
        return " ".join(s.text.strip() for s in self._finals if s.text.strip())

    def start(self) -> None:
        """Mark the session start; elapsed-time metrics are measured from here."""
        if self._running:
            return
        if self._start_ms is None:
            self._start_ms = self._clock()
        self._running = True
        logger.debug("Transcript segmenter started at %.0f", self._start_ms)

    def stop(self) -> None:
        self._running = False

    def on_recognizer_event(self, raw_segments: Sequence[RawSegment]) -> None:
        """Process one recognizer callback carrying one or more results."""
        if not self._running:
            logger.debug("Ignoring recognizer event: segmenter not running")
            return

        now = self._clock()
        self._track_speech_gap(now)

        duration_ms = now - (self._last_event_ms if self._last_event_ms is not None else self._start_ms)
        for raw in raw_segments:
            if raw.is_final and raw.result_index is not None:
                if raw.result_index in self._finalized_indices:
                    logger.debug("Result %d already finalized; ignoring duplicate", raw.result_index)
                    continue
                self._finalized_indices.add(raw.result_index)

            segment = self._annotate(raw, now, duration_ms)
            if segment.is_final:
                self._finals.append(segment)
                self._interim = None
                self._last_final_ms = now
                self._word_count += len(segment.words)
                self._filler_count += len(segment.fillers)
            else:
                self._interim = segment

            if self._on_transcript is not None:
                self._on_transcript(segment)

        self._last_event_ms = now
        self._publish_metrics(now)

    def _track_speech_gap(self, now: float) -> None:
        if self._last_event_ms is None:
            return
        gap = now - self._last_event_ms
        if gap > self._config.metric_pause_ms:
            self._pause_count += 1
            self._max_pause_ms = max(self._max_pause_ms, gap)
            logger.debug("Speech gap %.0fms (pauses=%d)", gap, self._pause_count)

    def _annotate(self, raw: RawSegment, now: float, duration_ms: float) -> TranscriptSegment:
        text = raw.transcript
        words = text.split()

        pause_before: Optional[float] = None
        if raw.is_final and self._last_final_ms is not None:
            gap = now - self._last_final_ms
            if gap > self._config.display_pause_ms:
                pause_before = gap

        confidence = raw.confidence
        if confidence is None or not math.isfinite(confidence):
            confidence = 0.0

        return TranscriptSegment(
            text=text,
            timestamp_ms=now,
            is_final=raw.is_final,
            confidence=round(min(max(confidence, 0.0), 1.0), 2),
            pause_before_ms=pause_before,
            fillers=detect_fillers(text, self._filler_pattern),
            speaking_rate=classify_speaking_rate(len(words), duration_ms, self._config),
            is_hesitation=is_hesitation(text),
            tone=self._tone_provider(),
        )

    def _publish_metrics(self, now: float) -> None:
        elapsed_ms = now - self._start_ms
        if elapsed_ms < self._config.min_elapsed_s * 1000.0:
            return
        elapsed_min = elapsed_ms / 60_000.0
        pace = min(math.floor(self._word_count / elapsed_min + 0.5), self._config.max_pace_wpm)
        filler_rate = math.floor(self._filler_count / elapsed_min * 10.0 + 0.5) / 10.0
        self._metrics.update_speech(
            pace_wpm=pace,
            filler_rate_per_min=filler_rate,
            max_pause_ms=self._max_pause_ms,
            pause_count=self._pause_count,
        )
