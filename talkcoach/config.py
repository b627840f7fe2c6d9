"""Tunable thresholds, weights and cadences for the coaching engine.

Every empirical constant lives here rather than in the samplers so it can be
tuned per microphone, camera or coaching context. Defaults reproduce the
single fixed set used by the live practice page; per-mode scoring profiles
can be registered but all built-in modes share the default profile.

Environment overrides (read by ``SessionConfig.from_env``, ``.env`` honoured):

    TALKCOACH_MODE                 presentation | interview
    TALKCOACH_SESSION_TYPE         comedy, pitch, technical, ...
    TALKCOACH_QUIET_RMS            average RMS below which volume is "quiet"
    TALKCOACH_LOUD_RMS             average RMS above which volume is "loud"
    TALKCOACH_PROSODY_INTERVAL_S   prosody tick period
    TALKCOACH_BODY_INTERVAL_S      body-signal tick period
    TALKCOACH_PRIMARY_TIMEOUT_S    vision classifier silence before fallback
    TALKCOACH_TIP_INTERVAL_S       coaching-tip request period
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

MODES = ("presentation", "interview")

DEFAULT_FILLER_WORDS: tuple[str, ...] = (
    "um", "uh", "like", "you know", "basically", "actually", "literally",
    "so", "well", "right", "okay", "er", "ah", "hmm", "i mean",
)


@dataclass(frozen=True)
class ScoringThresholds:
    """Ideal bands for each scored signal."""

    pace_min_wpm: float = 140.0
    pace_max_wpm: float = 160.0
    filler_max_per_min: float = 2.0
    eye_contact_min: float = 0.7
    max_pause_ms: float = 2000.0
    motion_min: float = 0.3
    motion_max: float = 0.6


@dataclass(frozen=True)
class ScoringWeights:
    """Composite-score weights. Must sum to 1.0."""

    pace: float = 0.25
    fillers: float = 0.25
    eye_contact: float = 0.25
    pauses: float = 0.15
    motion_energy: float = 0.10

    def __post_init__(self) -> None:
        values = dataclasses.astuple(self)
        if any(w < 0 for w in values):
            raise ValueError("Scoring weights must be non-negative")
        if abs(sum(values) - 1.0) > 1e-9:
            raise ValueError(f"Scoring weights must sum to 1.0, got {sum(values):.4f}")

    def as_dict(self) -> dict[str, float]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class ScoringProfile:
    """Thresholds and weights applied to one coaching context."""

    name: str = "default"
    thresholds: ScoringThresholds = field(default_factory=ScoringThresholds)
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    smoothing_alpha: float = 0.5
    max_cues: int = 2

    def __post_init__(self) -> None:
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        if self.max_cues < 0:
            raise ValueError("max_cues must be >= 0")


DEFAULT_PROFILE = ScoringProfile()

_PROFILES: dict[tuple[str, Optional[str]], ScoringProfile] = {
    (mode, None): DEFAULT_PROFILE for mode in MODES
}


def register_profile(
    mode: str,
    profile: ScoringProfile,
    session_type: Optional[str] = None,
) -> None:
    """Register a scoring profile for a mode, optionally narrowed to a session type."""
    if mode not in MODES:
        raise ValueError(f"Unknown mode {mode!r}; expected one of {MODES}")
    _PROFILES[(mode, session_type)] = profile
    logger.info("Scoring profile %r registered for %s/%s", profile.name, mode, session_type or "*")


def profile_for(mode: str, session_type: Optional[str] = None) -> ScoringProfile:
    """Resolve the scoring profile for a mode and session type.

    A type-specific profile wins over the mode-wide one.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown mode {mode!r}; expected one of {MODES}")
    if session_type is not None and (mode, session_type) in _PROFILES:
        return _PROFILES[(mode, session_type)]
    return _PROFILES[(mode, None)]


@dataclass(frozen=True)
class ProsodyThresholds:
    """Empirical tone-classification thresholds.

    Volume bands are RMS of the byte waveform normalised to [-1, 1]; energy
    bands are mean byte magnitude of the upper half of the spectrum; the
    pitch delta is in Hz of spectral centroid.

    ``spectrum_smoothing`` blends each spectrum with the previous one as
    ``tc * previous + (1 - tc) * current``; 0 disables it and 0.8 matches a
    browser analyser node.
    """

    quiet_below_rms: float = 0.02
    loud_above_rms: float = 0.15
    low_energy_below: float = 20.0
    high_energy_above: float = 60.0
    pitch_delta_hz: float = 50.0
    buffer_size: int = 10
    trend_window: int = 5
    spectrum_smoothing: float = 0.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.spectrum_smoothing < 1.0:
            raise ValueError("spectrum_smoothing must be in [0, 1)")


@dataclass(frozen=True)
class SegmenterConfig:
    """Transcript annotation and speech-metric policy."""

    display_pause_ms: float = 500.0
    metric_pause_ms: float = 1500.0
    min_elapsed_s: float = 3.0
    max_pace_wpm: float = 300.0
    slow_below_wpm: float = 120.0
    fast_above_wpm: float = 180.0
    min_rate_duration_ms: float = 100.0
    filler_words: tuple[str, ...] = DEFAULT_FILLER_WORDS


@dataclass(frozen=True)
class BodySamplerConfig:
    """Body-signal smoothing and fallback-estimator constants."""

    buffer_size: int = 10
    primary_timeout_s: float = 5.0
    frame_width: int = 320
    frame_height: int = 240
    pixel_stride: int = 4
    motion_divisor: float = 40.0
    first_frame_motion: float = 0.4
    skin_ratio_threshold: float = 0.15
    eye_contact_present: float = 0.8
    eye_contact_absent: float = 0.5
    eye_contact_jitter: float = 0.1


@dataclass(frozen=True)
class SessionConfig:
    """Top-level configuration for one coaching session.

    Args:
        mode: ``presentation`` or ``interview``.
        session_type: Optional sub-category (``comedy``, ``technical``, ...).
        require_video: Refuse to start without a video source. Set False for
            audio-only practice; body signals then stay at neutral defaults.
    """

    mode: str = "presentation"
    session_type: Optional[str] = None
    require_video: bool = True
    prosody_interval_s: float = 0.2
    body_interval_s: float = 0.1
    scoring_interval_s: float = 0.2
    tip_interval_s: float = 5.0
    tip_initial_delay_s: float = 3.0
    tip_transcript_chars: int = 500
    code_snapshot_min_s: float = 15.0
    code_snapshot_max_s: float = 30.0
    prosody: ProsodyThresholds = field(default_factory=ProsodyThresholds)
    segmenter: SegmenterConfig = field(default_factory=SegmenterConfig)
    body: BodySamplerConfig = field(default_factory=BodySamplerConfig)

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"Unknown mode {self.mode!r}; expected one of {MODES}")
        for name in (
            "prosody_interval_s",
            "body_interval_s",
            "scoring_interval_s",
            "tip_interval_s",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @property
    def profile(self) -> ScoringProfile:
        return profile_for(self.mode, self.session_type)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides) -> "SessionConfig":
        """Build a config from ``TALKCOACH_*`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        load_dotenv(dotenv_path)

        def _float(name: str) -> Optional[float]:
            raw = os.environ.get(name)
            if raw is None or raw == "":
                return None
            try:
                return float(raw)
            except ValueError:
                raise ValueError(f"{name} must be a number, got {raw!r}") from None

        kwargs: dict = {}
        if os.environ.get("TALKCOACH_MODE"):
            kwargs["mode"] = os.environ["TALKCOACH_MODE"]
        if os.environ.get("TALKCOACH_SESSION_TYPE"):
            kwargs["session_type"] = os.environ["TALKCOACH_SESSION_TYPE"]

        for env_name, attr in (
            ("TALKCOACH_PROSODY_INTERVAL_S", "prosody_interval_s"),
            ("TALKCOACH_BODY_INTERVAL_S", "body_interval_s"),
            ("TALKCOACH_TIP_INTERVAL_S", "tip_interval_s"),
        ):
            value = _float(env_name)
            if value is not None:
                kwargs[attr] = value

        prosody = ProsodyThresholds()
        quiet = _float("TALKCOACH_QUIET_RMS")
        loud = _float("TALKCOACH_LOUD_RMS")
        if quiet is not None:
            prosody = dataclasses.replace(prosody, quiet_below_rms=quiet)
        if loud is not None:
            prosody = dataclasses.replace(prosody, loud_above_rms=loud)
        kwargs["prosody"] = prosody

        timeout = _float("TALKCOACH_PRIMARY_TIMEOUT_S")
        if timeout is not None:
            kwargs["body"] = BodySamplerConfig(primary_timeout_s=timeout)

        kwargs.update(overrides)
        return cls(**kwargs)
