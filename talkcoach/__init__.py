"""Real-time delivery coaching engine for webcam and microphone practice.

Core components:
  TranscriptSegmenter — annotates recognizer results, derives pace / fillers / pauses
  ProsodySampler      — classifies volume, vocal energy and pitch trend (~5 Hz)
  BodySignalSampler   — eye contact and motion energy, vision classifier or local fallback
  MetricsAggregator   — session-scoped live metrics record, one writer per field
  ScoringEngine       — 0-100 composite score, smoothing and at most two cues
  SessionTimelineRecorder — transcript, metric and code history sealed at session end

Supporting modules:
  CoachingSession     — owns one session and drives every sampler loop
  GracefulDegradationEngine — per-sampler health for partial signal availability
  LatencyTracker      — per-stage tick budgets with optional OTEL export
  CoachingBridge      — Vision Agents processor feeding STT events into a session

Minimal wiring example::

    from talkcoach import CoachingSession, RawSegment, SessionConfig

    session = CoachingSession(
        SessionConfig.from_env(mode="presentation"),
        audio_source=mic.latest_frame,
        video_source=camera.latest_frame,
        on_score=lambda update: print(update.score, [c.value for c in update.cues]),
    )
    await session.start()
    session.ingest_recognizer_event([RawSegment("so today I want to", 0.9, True, 0)])
    ...
    timeline = await session.seal()
    print(timeline.annotated_transcript())
    print(timeline.paralinguistic_summary())
"""

from .agent_bridge import CoachingBridge
from ._aggregator import MetricsAggregator
from ._body import (
    MOTION_LEVELS,
    BodySampleSource,
    BodySignalSampler,
    FallbackBodySource,
    PrimaryBodySource,
    VisionJudgment,
    VisionSourceError,
)
from ._coach_tips import DEFAULT_TIPS, build_tip_prompt, default_tip, parse_tip, tip_priority
from ._degradation import GracefulDegradationEngine, SamplerState, SignalAvailability, SignalHealth
from ._prosody import AudioFrame, ProsodySampler
from ._scorer import (
    ScoreBreakdown,
    ScoreUpdate,
    ScoringEngine,
    SignalContribution,
    compute_score,
    explain_score,
    score_eye_contact,
    score_fillers,
    score_motion_energy,
    score_pace,
    score_pauses,
    select_cues,
    smooth_score,
)
from ._segmenter import TranscriptSegmenter, classify_speaking_rate, detect_fillers, is_hesitation
from ._telemetry import LATENCY_BUDGETS_MS, LatencyTracker
from ._timeline import (
    MetricsSnapshot,
    SessionTimeline,
    SessionTimelineRecorder,
    TimelineSealedError,
    snapshot_interval_s,
)
from ._types import (
    BodySample,
    BodySignals,
    CodeSnapshot,
    CoachTip,
    CueType,
    Energy,
    Metrics,
    PitchTrend,
    RawSegment,
    SpeakingRate,
    TipPriority,
    TipRequest,
    ToneInfo,
    TranscriptSegment,
    Volume,
)
from .events import CoachingTipEvent, ScoreUpdatedEvent, SessionSealedEvent
from .config import (
    BodySamplerConfig,
    ProsodyThresholds,
    ScoringProfile,
    ScoringThresholds,
    ScoringWeights,
    SegmenterConfig,
    SessionConfig,
    profile_for,
    register_profile,
)
from .session import CoachingSession, SignalSourceUnavailableError

__all__ = [
    # Session
    "CoachingSession",
    "SignalSourceUnavailableError",
    # Vision Agents integration
    "CoachingBridge",
    "CoachingTipEvent",
    "ScoreUpdatedEvent",
    "SessionSealedEvent",
    # Samplers
    "TranscriptSegmenter",
    "ProsodySampler",
    "AudioFrame",
    "BodySignalSampler",
    "BodySampleSource",
    "PrimaryBodySource",
    "FallbackBodySource",
    "VisionJudgment",
    "VisionSourceError",
    "MOTION_LEVELS",
    "classify_speaking_rate",
    "detect_fillers",
    "is_hesitation",
    # Metrics and scoring
    "MetricsAggregator",
    "ScoringEngine",
    "ScoreBreakdown",
    "ScoreUpdate",
    "SignalContribution",
    "compute_score",
    "explain_score",
    "score_eye_contact",
    "score_fillers",
    "score_motion_energy",
    "score_pace",
    "score_pauses",
    "select_cues",
    "smooth_score",
    # Timeline
    "MetricsSnapshot",
    "SessionTimeline",
    "SessionTimelineRecorder",
    "TimelineSealedError",
    "snapshot_interval_s",
    # Coaching tips
    "DEFAULT_TIPS",
    "build_tip_prompt",
    "default_tip",
    "parse_tip",
    "tip_priority",
    # Degradation
    "GracefulDegradationEngine",
    "SamplerState",
    "SignalAvailability",
    "SignalHealth",
    # Telemetry
    "LATENCY_BUDGETS_MS",
    "LatencyTracker",
    # Configuration
    "BodySamplerConfig",
    "ProsodyThresholds",
    "ScoringProfile",
    "ScoringThresholds",
    "ScoringWeights",
    "SegmenterConfig",
    "SessionConfig",
    "profile_for",
    "register_profile",
    # Data types
    "BodySample",
    "BodySignals",
    "CodeSnapshot",
    "CoachTip",
    "CueType",
    "Energy",
    "Metrics",
    "PitchTrend",
    "RawSegment",
    "SpeakingRate",
    "TipPriority",
    "TipRequest",
    "ToneInfo",
    "TranscriptSegment",
    "Volume",
]
