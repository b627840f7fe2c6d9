from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Volume(str, Enum):
    """Loudness class of the live microphone signal."""

    QUIET = "quiet"
    NORMAL = "normal"
    LOUD = "loud"


class Energy(str, Enum):
    """High-frequency vocal energy class of the current audio frame."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PitchTrend(str, Enum):
    """Direction of the spectral-centroid trend over recent samples."""

    FALLING = "falling"
    FLAT = "flat"
    RISING = "rising"


class SpeakingRate(str, Enum):
    """Per-segment speaking-rate class."""

    SLOW = "slow"
    NORMAL = "normal"
    FAST = "fast"


class CueType(str, Enum):
    """Actionable coaching cue shown during a live session.

    Declaration order is the priority order used by cue selection.
    """

    SLOW_DOWN = "slow_down"
    REDUCE_FILLERS = "reduce_fillers"
    LOOK_AT_CAMERA = "look_at_camera"
    PROJECT_CONFIDENCE = "project_confidence"


class TipPriority(str, Enum):
    """Signal a coaching tip is about."""

    PACE = "pace"
    FILLERS = "fillers"
    EYE_CONTACT = "eye_contact"
    PAUSES = "pauses"
    ENERGY = "energy"


@dataclass(frozen=True)
class ToneInfo:
    """Tone of voice right now, as classified by the prosody sampler."""

    volume: Volume = Volume.NORMAL
    energy: Energy = Energy.MEDIUM
    pitch_trend: PitchTrend = PitchTrend.FLAT


@dataclass(frozen=True)
class RawSegment:
    """One result from the upstream speech recognizer.

    Attributes:
        transcript: Recognized text (may contain surrounding whitespace).
        confidence: Recognizer confidence [0, 1], None if not reported.
        is_final: True once the recognizer will no longer revise this result.
        result_index: Recognizer-assigned result position, when available.
            Used to refuse finalizing the same result twice.
    """

    transcript: str
    confidence: Optional[float] = None
    is_final: bool = False
    result_index: Optional[int] = None


@dataclass(frozen=True)
class TranscriptSegment:
    """One utterance fragment annotated with paralinguistic features.

    Final segments are immutable once appended to the session history.
    Interim segments are provisional and replaced by the next event.
    """

    text: str
    timestamp_ms: float
    is_final: bool
    confidence: float = 0.0
    pause_before_ms: Optional[float] = None
    fillers: tuple[str, ...] = ()
    speaking_rate: SpeakingRate = SpeakingRate.NORMAL
    is_hesitation: bool = False
    tone: ToneInfo = field(default_factory=ToneInfo)

    @property
    def words(self) -> list[str]:
        return self.text.split()


@dataclass(frozen=True)
class BodySample:
    """One raw body-language observation before smoothing."""

    eye_contact: float
    motion_energy: float


@dataclass(frozen=True)
class BodySignals:
    """Smoothed body-language fractions, both clamped to [0, 1]."""

    eye_contact_pct: float = 0.5
    motion_energy: float = 0.3


@dataclass(frozen=True)
class Metrics:
    """Point-in-time snapshot of the live metrics record.

    Speech fields are written by the transcript segmenter, body fields by the
    body-signal sampler. Initial values are neutral so that an idle session
    scores in the middle of the range rather than collapsing.
    """

    pace_wpm: float = 0.0
    filler_rate_per_min: float = 0.0
    eye_contact_pct: float = 0.5
    max_pause_ms: float = 0.0
    pause_count: int = 0
    motion_energy: float = 0.3


@dataclass(frozen=True)
class CoachTip:
    """Short coaching directive for the speaker."""

    tip: str
    priority: TipPriority


@dataclass(frozen=True)
class TipRequest:
    """Snapshot handed to the external coaching-tip requester."""

    mode: str
    session_type: Optional[str]
    recent_transcript: str
    metrics: Metrics
    cues: tuple[CueType, ...] = ()


@dataclass(frozen=True)
class CodeSnapshot:
    """Editor contents captured during a coding interview."""

    code: str
    timestamp_ms: float
    elapsed_seconds: int
