"""CoachingBridge: feeds a Vision Agents call into a CoachingSession.

Subscribes to STT transcript events on the agent bus, converts them to
recognizer results for the session's transcript segmenter, and publishes
score updates, coaching tips and the sealed timeline back onto the bus.
"""

import logging
from typing import TYPE_CHECKING, Optional

from vision_agents.core.processors.base_processor import Processor
from vision_agents.core.stt.events import STTPartialTranscriptEvent, STTTranscriptEvent

from ._scorer import ScoreUpdate
from ._timeline import SessionTimeline
from ._types import CoachTip, RawSegment
from .events import CoachingTipEvent, ScoreUpdatedEvent, SessionSealedEvent
from .session import CoachingSession

if TYPE_CHECKING:
    from vision_agents.core.agents import Agent

logger = logging.getLogger(__name__)


class CoachingBridge(Processor):
    """Routes a speaker's transcripts into a coaching session.

    Args:
        session: Session to feed; start and seal it yourself.
        speaker_user_id: user_id of the person being coached. If None, every
            participant other than the agent is treated as the speaker.

    Raises:
        ValueError: If session is None.
    """

    name = "talkcoach_bridge"

    def __init__(self, session: CoachingSession, speaker_user_id: Optional[str] = None) -> None:
        if session is None:
            raise ValueError("session must not be None")
        self._session = session
        self._speaker_user_id = speaker_user_id
        self._agent: "Agent | None" = None
        self._result_index = 0

        session.add_listener("score", self._emit_score)
        session.add_listener("tip", self._emit_tip)
        session.add_listener("sealed", self._emit_sealed)

    def _is_speaker(self, user_id: Optional[str]) -> bool:
        if user_id is None:
            return False
        if self._speaker_user_id is not None:
            return user_id == self._speaker_user_id
        if self._agent is None:
            return True
        return user_id != self._agent.agent_user.id

    def attach_agent(self, agent: "Agent") -> None:
        """Register emitted events and subscribe to STT transcripts."""
        self._agent = agent
        agent.events.register(ScoreUpdatedEvent)
        agent.events.register(CoachingTipEvent)
        agent.events.register(SessionSealedEvent)

        @agent.events.subscribe
        async def on_transcript(event: STTTranscriptEvent | STTPartialTranscriptEvent):
            self.handle_transcript(event)

        logger.info("CoachingBridge attached (speaker_user_id=%s)", self._speaker_user_id)

    def handle_transcript(self, event: STTTranscriptEvent | STTPartialTranscriptEvent) -> None:
        user_id = event.participant.user_id if event.participant else None
        if not self._is_speaker(user_id):
            return

        is_final = isinstance(event, STTTranscriptEvent)
        response = getattr(event, "response", None)
        confidence = getattr(response, "confidence", None)
        segment = RawSegment(
            transcript=event.text or "",
            confidence=confidence,
            is_final=is_final,
            result_index=self._result_index if is_final else None,
        )
        if is_final:
            self._result_index += 1
        self._session.ingest_recognizer_event([segment])

    def _emit_score(self, update: ScoreUpdate) -> None:
        if self._agent is None:
            return
        m = update.metrics
        self._agent.events.send(
            ScoreUpdatedEvent(
                plugin_name=self.name,
                session_id=self._session.session_id or "",
                score=update.score,
                raw_score=update.raw_score,
                cues=[c.value for c in update.cues],
                sub_scores=update.breakdown.as_dict(),
                pace_wpm=m.pace_wpm,
                filler_rate_per_min=m.filler_rate_per_min,
                eye_contact_pct=m.eye_contact_pct,
                max_pause_ms=m.max_pause_ms,
                motion_energy=m.motion_energy,
            )
        )

    def _emit_tip(self, tip: CoachTip) -> None:
        if self._agent is None:
            return
        self._agent.events.send(
            CoachingTipEvent(
                plugin_name=self.name,
                session_id=self._session.session_id or "",
                tip=tip.tip,
                priority=tip.priority.value,
            )
        )

    def _emit_sealed(self, timeline: SessionTimeline) -> None:
        if self._agent is None:
            return
        self._agent.events.send(
            SessionSealedEvent(
                plugin_name=self.name,
                session_id=timeline.session_id,
                mode=timeline.mode,
                session_type=timeline.session_type,
                duration_s=timeline.duration_s,
                final_score=timeline.final_score,
                segment_count=len(timeline.segments),
                code_snapshot_count=len(timeline.code_snapshots),
                transcript=timeline.full_transcript,
                paralinguistic_summary=timeline.paralinguistic_summary(),
            )
        )

    async def close(self) -> None:
        await self._session.stop()
