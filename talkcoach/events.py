from dataclasses import dataclass, field
from typing import Optional

from vision_agents.core.events.base import PluginBaseEvent


@dataclass
class ScoreUpdatedEvent(PluginBaseEvent):
    """Emitted after every scoring tick of a bridged coaching session."""

    type: str = field(default="plugin.talkcoach.score_updated", init=False)

    session_id: str = ""

    score: int = 50
    """Smoothed composite score [0, 100] shown to the speaker."""

    raw_score: int = 50
    """Composite score of this tick before smoothing."""

    cues: list[str] = field(default_factory=list)
    """At most two actionable cues, highest priority first."""

    sub_scores: dict[str, float] = field(default_factory=dict)
    """Per-signal curve outputs keyed by weight name."""

    pace_wpm: float = 0.0
    filler_rate_per_min: float = 0.0
    eye_contact_pct: float = 0.5
    max_pause_ms: float = 0.0
    motion_energy: float = 0.3


@dataclass
class CoachingTipEvent(PluginBaseEvent):
    """Emitted whenever a new coaching tip is available."""

    type: str = field(default="plugin.talkcoach.coaching_tip", init=False)

    session_id: str = ""
    tip: str = ""
    priority: str = "pace"


@dataclass
class SessionSealedEvent(PluginBaseEvent):
    """Emitted once when the session timeline is sealed for reporting."""

    type: str = field(default="plugin.talkcoach.session_sealed", init=False)

    session_id: str = ""
    mode: str = "presentation"
    session_type: Optional[str] = None
    duration_s: float = 0.0
    final_score: int = 50
    segment_count: int = 0
    code_snapshot_count: int = 0
    transcript: str = ""
    paralinguistic_summary: str = ""
