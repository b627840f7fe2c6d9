"""Per-sampler health reporting for partial signal availability.

The core never fails mid-session because a source went quiet or an external
service broke; it degrades. This module turns raw availability flags into
an explicit `SignalHealth` so a UI can show what is running on a fallback.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class SamplerState(str, Enum):
    """Lifecycle/health of one signal path."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPED = "stopped"


@dataclass
class SignalAvailability:
    """Flags describing the signal paths of a session.

    Attributes:
        running: Session has started and not yet stopped.
        stopped: Session was stopped (as opposed to never started).
        recognizer_active: At least one recognizer event has arrived.
        audio_available: An audio source is attached.
        video_available: A video source is attached.
        vision_primary: Body sampler is still on the vision classifier.
        tip_requester_available: An external tip requester is configured
            and its last call succeeded.
    """

    running: bool = True
    stopped: bool = False
    recognizer_active: bool = True
    audio_available: bool = True
    video_available: bool = True
    vision_primary: bool = True
    tip_requester_available: bool = True


@dataclass
class SignalHealth:
    """State of every signal path plus human-readable warnings."""

    transcript: SamplerState
    prosody: SamplerState
    body: SamplerState
    tips: SamplerState
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(
            s is SamplerState.DEGRADED
            for s in (self.transcript, self.prosody, self.body, self.tips)
        )

    @property
    def warning_message(self) -> str:
        return "; ".join(self.warnings) if self.warnings else "All signals nominal"

    def as_dict(self) -> dict[str, str]:
        return {
            "transcript": self.transcript.value,
            "prosody": self.prosody.value,
            "body": self.body.value,
            "tips": self.tips.value,
        }


class GracefulDegradationEngine:
    """Maps `SignalAvailability` to a `SignalHealth`.

    Decision table:
        - stopped session        → every path STOPPED
        - not started            → every path INACTIVE
        - no recognizer events   → transcript INACTIVE
        - no audio source        → prosody INACTIVE (tone stays neutral)
        - no video source        → body INACTIVE (signals held at neutral)
        - vision classifier lost → body DEGRADED (local estimate)
        - no tip requester       → tips DEGRADED (deterministic tips)
    """

    def evaluate(self, availability: SignalAvailability) -> SignalHealth:
        if availability.stopped:
            return SignalHealth(
                transcript=SamplerState.STOPPED,
                prosody=SamplerState.STOPPED,
                body=SamplerState.STOPPED,
                tips=SamplerState.STOPPED,
            )
        if not availability.running:
            return SignalHealth(
                transcript=SamplerState.INACTIVE,
                prosody=SamplerState.INACTIVE,
                body=SamplerState.INACTIVE,
                tips=SamplerState.INACTIVE,
                warnings=["Session not started"],
            )

        warnings: list[str] = []

        transcript = SamplerState.ACTIVE
        if not availability.recognizer_active:
            transcript = SamplerState.INACTIVE
            warnings.append("No speech recognized yet")

        prosody = SamplerState.ACTIVE
        if not availability.audio_available:
            prosody = SamplerState.INACTIVE
            warnings.append("Audio unavailable, tone held at neutral")

        body = SamplerState.ACTIVE
        if not availability.video_available:
            body = SamplerState.INACTIVE
            warnings.append("Video unavailable, body signals held at neutral defaults")
        elif not availability.vision_primary:
            body = SamplerState.DEGRADED
            warnings.append("Vision classifier unavailable, using local motion and eye-contact estimate")

        tips = SamplerState.ACTIVE
        if not availability.tip_requester_available:
            tips = SamplerState.DEGRADED
            warnings.append("Coaching tips from built-in rules only")

        health = SignalHealth(transcript=transcript, prosody=prosody, body=body, tips=tips, warnings=warnings)
        if health.degraded:
            logger.debug("Degradation active: %s", health.warning_message)
        return health
