"""Coaching session controller.

Wires the three samplers, the metrics record, the scoring engine and the
timeline recorder together for one practice session and drives them from
independent periodic asyncio tasks:

    prosody loop  (~5 Hz)   audio frame  → ProsodySampler   → current tone
    body loop     (~10 Hz)  video frame  → BodySignalSampler → body metrics
    scoring loop  (~5 Hz)   metrics changed → ScoringEngine → score + cues
    tip loop      (5 s, first after 3 s) → external requester or built-in tip
    snapshot loop           metrics / editor snapshots → timeline

Recognizer events are pushed in by the caller through
`ingest_recognizer_event()`. Everything runs on one event loop; the only
suspension points are the vision classifier and tip requester calls.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional, Sequence

import av

from ._aggregator import MetricsAggregator
from ._body import BodySignalSampler, FallbackBodySource, PrimaryBodySource, VisionClassifier
from ._coach_tips import TipRequester, default_tip, parse_tip
from ._degradation import GracefulDegradationEngine, SignalAvailability, SignalHealth
from ._prosody import AudioFrame, ProsodySampler
from ._scorer import ScoreUpdate, ScoringEngine
from ._segmenter import TranscriptSegmenter
from ._telemetry import LatencyTracker
from ._timeline import SessionTimeline, SessionTimelineRecorder, snapshot_interval_s
from ._types import BodySignals, CoachTip, Metrics, RawSegment, TipRequest, ToneInfo, TranscriptSegment
from .config import SessionConfig

logger = logging.getLogger(__name__)

FrameSource = Callable[[], Any]
CodeSource = Callable[[], str]

LISTENER_KINDS = ("transcript", "tone", "signals", "score", "tip", "sealed")

# Periodic metric snapshots kept on the timeline.
_METRICS_SNAPSHOT_INTERVAL_S = 5.0


class SignalSourceUnavailableError(RuntimeError):
    """A required signal source is missing; the session cannot start."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"Required signal source unavailable: {', '.join(self.missing)}")


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CoachingSession:
    """One live practice session.

    Args:
        config: Session configuration; defaults to presentation mode.
        audio_source: Returns the latest audio frame (`AudioFrame` or
            ``av.AudioFrame``) or None; may be sync or async.
        video_source: Returns the latest video frame (``av.VideoFrame`` or
            an HxWx3 RGB ndarray) or None; may be sync or async.
        vision_classifier: Async callable producing structured body-language
            judgments for a frame. Without it the local estimator is used.
        tip_requester: Async callable returning a coaching tip for a
            `TipRequest`. Without it tips come from built-in rules.
        code_source: Returns the current editor contents (coding interviews).
        problem_description: Coding problem text; its length scales the
            code-snapshot interval.
        recognizer_available: False when the platform has no speech
            recognizer; start() then refuses.
        clock: Wall clock in milliseconds.
        on_transcript / on_tone / on_signals / on_score / on_tip: Optional
            listeners, see `add_listener`.

    Usage::

        session = CoachingSession(config, audio_source=mic.latest, video_source=cam.latest)
        await session.start()
        session.ingest_recognizer_event([RawSegment("hello everyone", 0.92, True, 0)])
        ...
        timeline = await session.seal()
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        *,
        audio_source: Optional[FrameSource] = None,
        video_source: Optional[FrameSource] = None,
        vision_classifier: Optional[VisionClassifier] = None,
        tip_requester: Optional[TipRequester] = None,
        code_source: Optional[CodeSource] = None,
        problem_description: str = "",
        recognizer_available: bool = True,
        clock: Optional[Callable[[], float]] = None,
        on_transcript: Optional[Callable[[TranscriptSegment], None]] = None,
        on_tone: Optional[Callable[[ToneInfo], None]] = None,
        on_signals: Optional[Callable[[BodySignals], None]] = None,
        on_score: Optional[Callable[[ScoreUpdate], None]] = None,
        on_tip: Optional[Callable[[CoachTip], None]] = None,
    ) -> None:
        self._config = config or SessionConfig()
        self._audio_source = audio_source
        self._video_source = video_source
        self._tip_requester = tip_requester
        self._code_source = code_source
        self._problem_description = problem_description
        self._recognizer_available = recognizer_available
        self._clock = clock or _wall_clock_ms

        self._primary: Optional[PrimaryBodySource] = None
        if vision_classifier is not None:
            self._primary = PrimaryBodySource(
                vision_classifier,
                timeout_s=self._config.body.primary_timeout_s,
                clock=lambda: self._clock() / 1000.0,
            )

        self._listeners: dict[str, list[Callable[[Any], None]]] = {k: [] for k in LISTENER_KINDS}
        for kind, fn in (
            ("transcript", on_transcript),
            ("tone", on_tone),
            ("signals", on_signals),
            ("score", on_score),
            ("tip", on_tip),
        ):
            if fn is not None:
                self._listeners[kind].append(fn)

        self._latency = LatencyTracker()
        self._degradation = GracefulDegradationEngine()
        self._scoring = ScoringEngine(self._config.profile)
        self._prosody = ProsodySampler(self._config.prosody)

        self._metrics: Optional[MetricsAggregator] = None
        self._segmenter: Optional[TranscriptSegmenter] = None
        self._body: Optional[BodySignalSampler] = None
        self._timeline: Optional[SessionTimelineRecorder] = None
        self._sealed: Optional[SessionTimeline] = None

        self._tasks: list[asyncio.Task] = []
        self._tip_task: Optional[asyncio.Task] = None
        self._running = False
        self._started = False
        self._stopped = False
        self._tips_ok = tip_requester is not None
        self._scored_version = -1
        self._last_update: Optional[ScoreUpdate] = None
        self._last_tip: Optional[CoachTip] = None

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def session_id(self) -> Optional[str]:
        return self._timeline.session_id if self._timeline else None

    @property
    def last_update(self) -> Optional[ScoreUpdate]:
        """Latest scoring tick: raw and smoothed score, cues and breakdown."""
        return self._last_update

    @property
    def last_tip(self) -> Optional[CoachTip]:
        return self._last_tip

    @property
    def score(self) -> int:
        return self._scoring.score

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Validate sources and start every sampler loop.

        Raises:
            SignalSourceUnavailableError: A required source is missing. The
                session stays safe to `stop()`.
            RuntimeError: The session was already started.
        """
        if self._started or self._stopped:
            raise RuntimeError("CoachingSession can only be started once")
        self._started = True

        missing = []
        if not self._recognizer_available:
            missing.append("speech recognizer")
        if self._audio_source is None:
            missing.append("microphone")
        if self._video_source is None and self._config.require_video:
            missing.append("camera")
        if missing:
            logger.error("Refusing to start coaching session: missing %s", ", ".join(missing))
            raise SignalSourceUnavailableError(missing)

        self._metrics = MetricsAggregator()
        self._timeline = SessionTimelineRecorder(
            clock=self._clock,
            mode=self._config.mode,
            session_type=self._config.session_type,
        )
        self._segmenter = TranscriptSegmenter(
            self._metrics,
            clock=self._clock,
            config=self._config.segmenter,
            tone_provider=lambda: self._prosody.current_tone,
            on_transcript=self._handle_segment,
        )
        if self._video_source is not None:
            self._body = BodySignalSampler(
                self._metrics,
                config=self._config.body,
                primary=self._primary,
                fallback=FallbackBodySource(self._config.body),
                on_signals=lambda signals: self._notify("signals", signals),
            )

        self._prosody.reset()
        self._segmenter.start()
        if self._body is not None:
            self._body.start()
        self._running = True

        if self._code_source is not None:
            self._capture_code()

        self._spawn(self._prosody_loop(), "prosody")
        if self._body is not None:
            self._spawn(self._body_loop(), "body")
        self._spawn(self._scoring_loop(), "scoring")
        self._spawn(self._tip_loop(), "tips")
        self._spawn(self._snapshot_loop(), "snapshots")

        logger.info(
            "Coaching session %s started (mode=%s, type=%s, vision=%s)",
            self._timeline.session_id,
            self._config.mode,
            self._config.session_type or "-",
            self._body.source_name if self._body else "off",
        )

    async def stop(self) -> None:
        """Stop every loop and release sampler resources.

        Idempotent and safe after a failed `start()`. Once this returns no
        in-flight tick can write into the metrics record. Media tracks are
        never touched; they belong to the caller.
        """
        if self._stopped:
            return
        self._stopped = True
        self._running = False

        if self._segmenter is not None:
            self._segmenter.stop()
        if self._metrics is not None:
            self._metrics.close()

        finished = [t for t in self._tasks if t.done() and not t.cancelled()]
        for task in finished:
            exc = task.exception()
            if exc is not None:
                logger.error("Coaching loop %s ended with an error", task.get_name(), exc_info=exc)

        tasks = [t for t in [*self._tasks, self._tip_task] if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self._tip_task = None

        if self._body is not None:
            await self._body.stop()
        elif self._primary is not None:
            try:
                await self._primary.close()
            except (RuntimeError, OSError, ConnectionError):
                logger.exception("Error closing vision classifier")

        if self._started:
            logger.info("Coaching session stopped; latency stats: %s", self._latency.get_stats())

    async def seal(self) -> SessionTimeline:
        """Stop the session and hand off its sealed timeline.

        Returns the same timeline on repeated calls.

        Raises:
            RuntimeError: The session never started successfully.
        """
        if self._sealed is not None:
            return self._sealed
        if self._timeline is None or self._metrics is None:
            raise RuntimeError("Cannot seal a session that never started")

        if self._metrics.version != self._scored_version:
            self.update_score()
        await self.stop()

        final_code = None
        if self._code_source is not None:
            try:
                final_code = self._code_source()
            except (RuntimeError, OSError, ValueError):
                logger.exception("Reading editor contents failed at seal")

        self._sealed = self._timeline.seal(
            final_score=self._scoring.score,
            metrics=self._metrics.snapshot(),
            final_code=final_code,
        )
        self._notify("sealed", self._sealed)
        return self._sealed

    # ── Inputs ────────────────────────────────────────────────────────────────

    def ingest_recognizer_event(self, raw_segments: Sequence[RawSegment]) -> None:
        """Feed one recognizer callback. Ignored unless the session is running."""
        if not self._running or self._segmenter is None:
            logger.debug("Recognizer event ignored: session not running")
            return
        with self._latency.measure("transcript_event"):
            self._segmenter.on_recognizer_event(raw_segments)

    def update_score(self) -> Optional[ScoreUpdate]:
        """Run one scoring tick on the current metrics snapshot."""
        if self._metrics is None:
            return None
        with self._latency.measure("scoring_tick"):
            self._scored_version = self._metrics.version
            update = self._scoring.update(self._metrics.snapshot())
        self._last_update = update
        self._notify("score", update)
        return update

    async def request_tip(self) -> CoachTip:
        """Ask for a coaching tip now; falls back to the built-in rules."""
        metrics = self.current_metrics()
        transcript = self._segmenter.full_transcript() if self._segmenter else ""
        request = TipRequest(
            mode=self._config.mode,
            session_type=self._config.session_type,
            recent_transcript=transcript[-self._config.tip_transcript_chars:],
            metrics=metrics,
            cues=self._last_update.cues if self._last_update else (),
        )

        tip: Optional[CoachTip] = None
        if self._tip_requester is not None:
            try:
                with self._latency.measure("tip_request"):
                    response = await self._tip_requester(request)
                tip = parse_tip(response, metrics)
                self._tips_ok = True
            except asyncio.CancelledError:
                raise
            except (RuntimeError, TimeoutError, OSError, ConnectionError, ValueError):
                logger.exception("Coaching tip request failed, using built-in tip")
                self._tips_ok = False

        if tip is None:
            tip = default_tip(metrics)

        if self._running:
            self._last_tip = tip
            self._notify("tip", tip)
        return tip

    def add_listener(self, kind: str, listener: Callable[[Any], None]) -> None:
        """Register a listener for ``transcript``, ``tone``, ``signals``,
        ``score``, ``tip`` or ``sealed`` notifications."""
        if kind not in self._listeners:
            raise ValueError(f"Unknown listener kind {kind!r}; expected one of {LISTENER_KINDS}")
        self._listeners[kind].append(listener)

    # ── Read side ─────────────────────────────────────────────────────────────

    def current_metrics(self) -> Metrics:
        return self._metrics.snapshot() if self._metrics else Metrics()

    def current_transcript(self) -> list[TranscriptSegment]:
        return self._segmenter.transcript if self._segmenter else []

    def current_tone(self) -> ToneInfo:
        return self._prosody.current_tone

    def current_signals(self) -> BodySignals:
        return self._body.current_signals if self._body else BodySignals()

    def latency_stats(self) -> dict[str, dict[str, float]]:
        return self._latency.get_stats()

    def signal_health(self) -> SignalHealth:
        return self._degradation.evaluate(
            SignalAvailability(
                running=self._running,
                stopped=self._stopped and self._started,
                recognizer_active=bool(self._segmenter and self._segmenter.transcript),
                audio_available=self._audio_source is not None,
                video_available=self._body is not None,
                vision_primary=bool(self._body and not self._body.degraded),
                tip_requester_available=self._tips_ok,
            )
        )

    # ── Loops ─────────────────────────────────────────────────────────────────

    def _spawn(self, coro, name: str) -> None:
        self._tasks.append(asyncio.create_task(coro, name=f"talkcoach_{name}_loop"))

    async def _prosody_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.prosody_interval_s)
            try:
                frame = await _maybe_await(self._audio_source())
                if frame is None:
                    continue
                if isinstance(frame, av.AudioFrame):
                    frame = AudioFrame.from_av(frame)
                with self._latency.measure("prosody_tick"):
                    tone = self._prosody.tick(frame)
            except asyncio.CancelledError:
                raise
            except (ValueError, RuntimeError, OSError, TypeError):
                logger.exception("Prosody tick failed")
                continue
            if self._running:
                self._notify("tone", tone)

    async def _body_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.body_interval_s)
            try:
                frame = await _maybe_await(self._video_source())
                if frame is None:
                    continue
                # Remote classifier latency is not a tick-budget concern.
                stage = "body_tick" if self._body.degraded else "vision_classify"
                with self._latency.measure(stage):
                    await self._body.tick(frame)
            except asyncio.CancelledError:
                raise
            except (ValueError, RuntimeError, OSError, TypeError, KeyError):
                logger.exception("Body-signal tick failed")

    async def _scoring_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.scoring_interval_s)
            if self._metrics is None or self._metrics.version == self._scored_version:
                continue
            self.update_score()

    async def _tip_loop(self) -> None:
        await asyncio.sleep(self._config.tip_initial_delay_s)
        while self._running:
            if self._tip_task is not None and not self._tip_task.done():
                logger.debug("Skipping tip request: previous request still in flight")
            else:
                self._tip_task = asyncio.create_task(self.request_tip(), name="talkcoach_tip_request")
                self._tip_task.add_done_callback(self._on_tip_done)
            await asyncio.sleep(self._config.tip_interval_s)

    def _on_tip_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Coaching tip request crashed, using built-in tip", exc_info=exc)
        self._tips_ok = False
        if self._running:
            tip = default_tip(self.current_metrics())
            self._last_tip = tip
            self._notify("tip", tip)

    async def _snapshot_loop(self) -> None:
        code_interval = snapshot_interval_s(
            len(self._problem_description),
            self._config.code_snapshot_min_s,
            self._config.code_snapshot_max_s,
        )
        interval = _METRICS_SNAPSHOT_INTERVAL_S
        if self._code_source is not None:
            interval = min(interval, code_interval)
        last_code_at = self._clock()

        while self._running:
            await asyncio.sleep(interval)
            if not self._running:
                break
            self._timeline.snapshot_metrics(self._metrics.snapshot())
            now = self._clock()
            if self._code_source is not None and now - last_code_at >= code_interval * 1000.0:
                self._capture_code()
                last_code_at = now

    def _capture_code(self) -> None:
        try:
            code = self._code_source()
        except (RuntimeError, OSError, ValueError):
            logger.exception("Reading editor contents failed")
            return
        self._timeline.append_code_snapshot(code)

    # ── Fan-out ───────────────────────────────────────────────────────────────

    def _handle_segment(self, segment: TranscriptSegment) -> None:
        if segment.is_final and self._timeline is not None and not self._timeline.is_sealed:
            self._timeline.append(segment)
        self._notify("transcript", segment)

    def _notify(self, kind: str, payload: Any) -> None:
        for listener in self._listeners[kind]:
            try:
                listener(payload)
            except (ValueError, RuntimeError, TypeError, KeyError, AttributeError):
                logger.exception("%s listener failed", kind)
