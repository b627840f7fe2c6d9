"""Deterministic scoring of live delivery metrics.

Design principles:
- Each signal has its own curve returning [0, 100]; 100 means "inside the
  ideal band", falling off linearly outside it.
- Curves never propagate NaN: a non-finite input is scored as the neutral
  starting value of that field.
- The composite is a weighted sum rounded half-up to an integer.
- Smoothing is an exponential filter over the previous *smoothed* score.
- Cue selection is a fixed-order checklist truncated to at most two cues;
  it does not rank by severity.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from ._types import CueType, Metrics
from .config import DEFAULT_PROFILE, ScoringProfile, ScoringThresholds, ScoringWeights

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50

# Margins beyond the ideal band before a cue is raised.
_PACE_CUE_MARGIN_WPM = 10.0
_FILLER_CUE_MARGIN = 1.0
_EYE_CUE_MARGIN = 0.1
_MOTION_CUE_MARGIN = 0.1

_NEUTRAL = Metrics()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_score(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), 100.0)


def _finite(value: float, neutral: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return neutral
    return value if math.isfinite(value) else neutral


def score_pace(wpm: float, thresholds: ScoringThresholds = ScoringThresholds()) -> float:
    """Score speaking pace. No speech yet (0 wpm) is neutral, not a failure."""
    wpm = _finite(wpm, _NEUTRAL.pace_wpm)
    if wpm == 0:
        return float(NEUTRAL_SCORE)
    if wpm < thresholds.pace_min_wpm:
        return _clamp_score(100.0 - 2.0 * (thresholds.pace_min_wpm - wpm))
    if wpm > thresholds.pace_max_wpm:
        return _clamp_score(100.0 - 2.0 * (wpm - thresholds.pace_max_wpm))
    return 100.0


def score_fillers(rate_per_min: float, thresholds: ScoringThresholds = ScoringThresholds()) -> float:
    rate = _finite(rate_per_min, _NEUTRAL.filler_rate_per_min)
    if rate <= thresholds.filler_max_per_min:
        return 100.0
    return _clamp_score(100.0 - 15.0 * (rate - thresholds.filler_max_per_min))


def score_eye_contact(pct: float, thresholds: ScoringThresholds = ScoringThresholds()) -> float:
    pct = _finite(pct, _NEUTRAL.eye_contact_pct)
    if pct >= thresholds.eye_contact_min:
        return 100.0
    return _clamp_score(100.0 * pct / thresholds.eye_contact_min)


def score_pauses(max_pause_ms: float, thresholds: ScoringThresholds = ScoringThresholds()) -> float:
    longest = _finite(max_pause_ms, _NEUTRAL.max_pause_ms)
    if longest <= thresholds.max_pause_ms:
        return 100.0
    return _clamp_score(100.0 - (longest - thresholds.max_pause_ms) / 100.0)


def score_motion_energy(energy: float, thresholds: ScoringThresholds = ScoringThresholds()) -> float:
    energy = _finite(energy, _NEUTRAL.motion_energy)
    if energy < thresholds.motion_min:
        return _clamp_score(100.0 * energy / thresholds.motion_min)
    if energy > thresholds.motion_max:
        return _clamp_score(100.0 - 200.0 * (energy - thresholds.motion_max))
    return 100.0


@dataclass(frozen=True)
class SignalContribution:
    """Contribution of a single signal to the composite score.

    Attributes:
        signal_name: Weight key (``pace``, ``fillers``, ...).
        score: Curve output [0, 100].
        weight: Weight applied to this signal.
        weighted_contribution: score × weight.
    """

    signal_name: str
    score: float
    weight: float
    weighted_contribution: float


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-signal curve outputs behind one composite score."""

    contributions: tuple[SignalContribution, ...]
    total: int

    def as_dict(self) -> dict[str, float]:
        return {c.signal_name: c.score for c in self.contributions}

    def weakest(self) -> Optional[SignalContribution]:
        """Signal losing the most weighted points, or None if all are perfect."""
        losing = [c for c in self.contributions if c.score < 100.0]
        if not losing:
            return None
        return max(losing, key=lambda c: (100.0 - c.score) * c.weight)


def explain_score(metrics: Metrics, profile: ScoringProfile = DEFAULT_PROFILE) -> ScoreBreakdown:
    t = profile.thresholds
    curves = {
        "pace": score_pace(metrics.pace_wpm, t),
        "fillers": score_fillers(metrics.filler_rate_per_min, t),
        "eye_contact": score_eye_contact(metrics.eye_contact_pct, t),
        "pauses": score_pauses(metrics.max_pause_ms, t),
        "motion_energy": score_motion_energy(metrics.motion_energy, t),
    }
    weights = profile.weights.as_dict()
    contributions = tuple(
        SignalContribution(
            signal_name=name,
            score=value,
            weight=weights[name],
            weighted_contribution=value * weights[name],
        )
        for name, value in curves.items()
    )
    raw = sum(c.weighted_contribution for c in contributions)
    total = min(max(_round_half_up(raw), 0), 100)
    return ScoreBreakdown(contributions=contributions, total=total)


def compute_score(metrics: Metrics, profile: ScoringProfile = DEFAULT_PROFILE) -> int:
    """Composite 0-100 score for a metrics snapshot."""
    return explain_score(metrics, profile).total


def smooth_score(previous: float, new: float, alpha: float = 0.5) -> int:
    """Exponential smoothing step, ``round((1 - alpha) * previous + alpha * new)``."""
    return min(max(_round_half_up((1.0 - alpha) * previous + alpha * new), 0), 100)


def select_cues(metrics: Metrics, profile: ScoringProfile = DEFAULT_PROFILE) -> list[CueType]:
    """Return at most ``profile.max_cues`` cues in fixed priority order."""
    t = profile.thresholds
    cues: list[CueType] = []
    if _finite(metrics.pace_wpm, 0.0) > t.pace_max_wpm + _PACE_CUE_MARGIN_WPM:
        cues.append(CueType.SLOW_DOWN)
    if _finite(metrics.filler_rate_per_min, 0.0) > t.filler_max_per_min + _FILLER_CUE_MARGIN:
        cues.append(CueType.REDUCE_FILLERS)
    if _finite(metrics.eye_contact_pct, 1.0) < t.eye_contact_min - _EYE_CUE_MARGIN:
        cues.append(CueType.LOOK_AT_CAMERA)
    if _finite(metrics.motion_energy, 1.0) < t.motion_min - _MOTION_CUE_MARGIN:
        cues.append(CueType.PROJECT_CONFIDENCE)
    return cues[: profile.max_cues]


@dataclass(frozen=True)
class ScoreUpdate:
    """Result of one scoring tick.

    Attributes:
        raw_score: Composite score of this snapshot before smoothing.
        score: Smoothed score shown to the speaker.
        cues: At most two actionable cues, highest priority first.
        breakdown: Per-signal curve outputs behind ``raw_score``.
        metrics: Snapshot that was scored.
    """

    raw_score: int
    score: int
    cues: tuple[CueType, ...]
    breakdown: ScoreBreakdown
    metrics: Metrics = field(default_factory=Metrics)


class ScoringEngine:
    """Holds the smoothing state across scoring ticks.

    The only state carried between calls is the previous smoothed score,
    which starts at the neutral midpoint.
    """

    def __init__(self, profile: ScoringProfile = DEFAULT_PROFILE) -> None:
        self._profile = profile
        self._score = NEUTRAL_SCORE
        self._updates = 0

    @property
    def profile(self) -> ScoringProfile:
        return self._profile

    @property
    def weights(self) -> ScoringWeights:
        return self._profile.weights

    @property
    def score(self) -> int:
        return self._score

    @property
    def update_count(self) -> int:
        return self._updates

    def update(self, metrics: Metrics) -> ScoreUpdate:
        breakdown = explain_score(metrics, self._profile)
        self._score = smooth_score(self._score, breakdown.total, self._profile.smoothing_alpha)
        self._updates += 1
        cues = tuple(select_cues(metrics, self._profile))
        logger.debug(
            "Score raw=%d smoothed=%d cues=%s",
            breakdown.total,
            self._score,
            [c.value for c in cues],
        )
        return ScoreUpdate(
            raw_score=breakdown.total,
            score=self._score,
            cues=cues,
            breakdown=breakdown,
            metrics=metrics,
        )

    def reset(self) -> None:
        self._score = NEUTRAL_SCORE
        self._updates = 0
