"""Session-level tests for talkcoach.

Test matrix covers:
  - Start refusal when a required source is missing, and safe stop afterwards
  - Lifecycle: single start, idempotent stop, repeatable seal
  - Live run with fast cadences: transcript, prosody, body, scoring and tips
  - Tip requester failure or crash falling back to built-in tips
  - Crashed loop errors retrieved and logged on stop
  - Vision classifier path and its release on stop
  - Code snapshots for coding interviews
  - Listener isolation and no metrics writes after stop
  - CoachingBridge: speaker filtering, interim/final mapping, result indices, bus events

Never mock. Every session runs real asyncio loops with scripted sources.
"""

import asyncio

import numpy as np
import pytest
from vision_agents.core.edge.types import Participant
from vision_agents.core.stt.events import STTPartialTranscriptEvent, STTTranscriptEvent

from talkcoach import (
    DEFAULT_TIPS,
    AudioFrame,
    CoachingBridge,
    CoachingSession,
    CoachingTipEvent,
    CoachTip,
    RawSegment,
    SamplerState,
    ScoreUpdatedEvent,
    SessionConfig,
    SessionSealedEvent,
    SignalSourceUnavailableError,
    TipPriority,
    TipRequest,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FAST = dict(
    prosody_interval_s=0.01,
    body_interval_s=0.01,
    scoring_interval_s=0.01,
    tip_interval_s=0.05,
    tip_initial_delay_s=0.01,
)

_SILENCE = AudioFrame.from_pcm(np.zeros(2048), 48_000)
_GRAY = np.full((240, 320, 3), 100, dtype=np.uint8)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: float) -> None:
        self.now += delta


class ScriptedClassifier:
    def __init__(self, payload: dict) -> None:
        self._payload = payload
        self.calls = 0
        self.closed = False

    async def __call__(self, frame):
        self.calls += 1
        return self._payload

    async def aclose(self) -> None:
        self.closed = True


def _session(clock: FakeClock, **kwargs) -> CoachingSession:
    config = kwargs.pop("config", SessionConfig(**FAST))
    kwargs.setdefault("audio_source", lambda: _SILENCE)
    kwargs.setdefault("video_source", lambda: _GRAY)
    return CoachingSession(config, clock=clock, **kwargs)


def _speak(session: CoachingSession, clock: FakeClock, count: int, text: str = "we ship") -> None:
    for i in range(count):
        clock.advance(1000)
        session.ingest_recognizer_event([RawSegment(text, 0.9, True, i)])


# ---------------------------------------------------------------------------
# Start refusal and lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_refuses_without_microphone(self) -> None:
        async def run():
            session = CoachingSession(SessionConfig(**FAST), video_source=lambda: _GRAY)
            with pytest.raises(SignalSourceUnavailableError) as info:
                await session.start()
            await session.stop()
            await session.stop()
            return session, info.value

        session, error = asyncio.run(run())
        assert error.missing == ("microphone",)
        assert not session.is_running
        assert session.signal_health().body is SamplerState.STOPPED

    def test_lists_every_missing_source(self) -> None:
        async def run():
            session = CoachingSession(recognizer_available=False)
            with pytest.raises(SignalSourceUnavailableError) as info:
                await session.start()
            return info.value

        error = asyncio.run(run())
        assert error.missing == ("speech recognizer", "microphone", "camera")

    def test_failed_start_releases_classifier(self) -> None:
        classifier = ScriptedClassifier({"ok": False})

        async def run():
            session = CoachingSession(video_source=lambda: _GRAY, vision_classifier=classifier)
            with pytest.raises(SignalSourceUnavailableError):
                await session.start()
            await session.stop()

        asyncio.run(run())
        assert classifier.closed

    def test_seal_requires_successful_start(self) -> None:
        async def run():
            session = CoachingSession()
            with pytest.raises(SignalSourceUnavailableError):
                await session.start()
            with pytest.raises(RuntimeError, match="never started"):
                await session.seal()

        asyncio.run(run())

    def test_start_only_once(self) -> None:
        async def run():
            session = _session(FakeClock())
            await session.start()
            try:
                with pytest.raises(RuntimeError, match="only be started once"):
                    await session.start()
            finally:
                await session.stop()

        asyncio.run(run())

    def test_audio_only_practice(self) -> None:
        async def run():
            session = _session(
                FakeClock(),
                config=SessionConfig(require_video=False, **FAST),
                video_source=None,
            )
            await session.start()
            health = session.signal_health()
            signals = session.current_signals()
            await session.stop()
            return health, signals

        health, signals = asyncio.run(run())
        assert health.body is SamplerState.INACTIVE
        assert (signals.eye_contact_pct, signals.motion_energy) == (0.5, 0.3)

    def test_unknown_listener_kind(self) -> None:
        with pytest.raises(ValueError, match="Unknown listener kind"):
            CoachingSession().add_listener("bogus", print)


# ---------------------------------------------------------------------------
# Live run
# ---------------------------------------------------------------------------


class TestLiveSession:
    def test_full_run_and_seal(self) -> None:
        clock = FakeClock()
        requests: list[TipRequest] = []
        scores = []
        tones = []
        sealed = []

        async def requester(request: TipRequest) -> str:
            requests.append(request)
            return '{"tip": "Breathe.", "priority": "pauses"}'

        def broken_listener(update) -> None:
            raise ValueError("listener bug")

        async def run():
            session = _session(clock, tip_requester=requester, on_score=broken_listener, on_tone=tones.append)
            session.add_listener("score", scores.append)
            session.add_listener("sealed", sealed.append)
            await session.start()
            _speak(session, clock, 5)
            await asyncio.sleep(0.3)
            health = session.signal_health()
            timeline = await session.seal()
            again = await session.seal()
            return session, health, timeline, again

        session, health, timeline, again = asyncio.run(run())

        assert again is timeline
        assert sealed == [timeline]
        assert len(timeline.segments) == 5
        assert timeline.full_transcript == " ".join(["we ship"] * 5)
        assert timeline.metrics.pace_wpm == 120
        assert timeline.final_score == session.score
        assert 0 <= timeline.final_score <= 100

        assert scores
        assert session.last_update is scores[-1]
        assert tones
        assert session.last_tip == CoachTip("Breathe.", TipPriority.PAUSES)
        assert requests[0].mode == "presentation"
        assert requests[-1].recent_transcript.endswith("we ship")

        assert health.transcript is SamplerState.ACTIVE
        assert health.body is SamplerState.DEGRADED
        assert set(session.signal_health().as_dict().values()) == {"stopped"}
        assert "prosody_tick" in session.latency_stats()

    def test_requester_failure_uses_built_in_tip(self) -> None:
        clock = FakeClock()

        async def requester(request: TipRequest) -> str:
            raise ConnectionError("model endpoint unreachable")

        async def run():
            session = _session(clock, tip_requester=requester)
            await session.start()
            await asyncio.sleep(0.1)
            health = session.signal_health()
            await session.stop()
            return session, health

        session, health = asyncio.run(run())
        assert health.tips is SamplerState.DEGRADED
        assert session.last_tip is not None
        assert session.last_tip.tip in DEFAULT_TIPS.values()

    def test_requester_crash_still_publishes_built_in_tip(self) -> None:
        clock = FakeClock()
        seen: list[CoachTip] = []

        async def requester(request: TipRequest) -> str:
            raise KeyError("choices")

        async def run():
            session = _session(clock, tip_requester=requester)
            session.add_listener("tip", seen.append)
            await session.start()
            await asyncio.sleep(0.1)
            health = session.signal_health()
            await session.stop()
            return session, health

        session, health = asyncio.run(run())
        assert health.tips is SamplerState.DEGRADED
        assert seen
        assert all(tip.tip in DEFAULT_TIPS.values() for tip in seen)
        assert session.last_tip is seen[-1]

    def test_crashed_body_loop_error_is_retrieved_on_stop(self, caplog) -> None:
        def broken_video():
            raise LookupError("camera index out of range")

        async def run():
            session = _session(FakeClock(), video_source=broken_video)
            await session.start()
            await asyncio.sleep(0.05)
            await session.stop()

        with caplog.at_level("ERROR", logger="talkcoach.session"):
            asyncio.run(run())
        assert any("ended with an error" in record.getMessage() for record in caplog.records)

    def test_request_tip_without_requester(self) -> None:
        async def run():
            session = _session(FakeClock())
            await session.start()
            tip = await session.request_tip()
            await session.stop()
            return tip

        tip = asyncio.run(run())
        assert tip.tip == DEFAULT_TIPS[tip.priority]

    def test_vision_classifier_path(self) -> None:
        classifier = ScriptedClassifier(
            {"eye_contact": True, "eye_contact_confidence": 0.9, "motion_level": "moderate"}
        )

        async def run():
            session = _session(FakeClock(), vision_classifier=classifier)
            await session.start()
            await asyncio.sleep(0.1)
            health = session.signal_health()
            signals = session.current_signals()
            await session.stop()
            return health, signals

        health, signals = asyncio.run(run())
        assert classifier.calls > 0
        assert health.body is SamplerState.ACTIVE
        assert signals.eye_contact_pct == pytest.approx(0.9)
        assert signals.motion_energy == pytest.approx(0.5)
        assert classifier.closed

    def test_no_metrics_writes_after_stop(self) -> None:
        clock = FakeClock()

        async def run():
            session = _session(clock)
            await session.start()
            _speak(session, clock, 4)
            await asyncio.sleep(0.05)
            await session.stop()
            before = session.current_metrics()
            transcript = session.current_transcript()
            _speak(session, clock, 4, text="one two three four five")
            await asyncio.sleep(0.05)
            return before, transcript, session

        before, transcript, session = asyncio.run(run())
        assert session.current_metrics() == before
        assert session.current_transcript() == transcript
        assert before.pace_wpm == 120


# ---------------------------------------------------------------------------
# Coding interviews
# ---------------------------------------------------------------------------


class TestCodeSnapshots:
    def test_initial_and_final_snapshots(self) -> None:
        clock = FakeClock()
        editor = {"code": "def solve():\n    pass\n"}

        async def run():
            session = _session(
                clock,
                config=SessionConfig(mode="interview", session_type="technical", **FAST),
                code_source=lambda: editor["code"],
                problem_description="Return the two indices that sum to target.",
            )
            await session.start()
            clock.advance(12_000)
            editor["code"] = "def solve(nums, target):\n    return []\n"
            return await session.seal()

        timeline = asyncio.run(run())
        assert timeline.mode == "interview"
        assert timeline.session_type == "technical"
        assert [s.elapsed_seconds for s in timeline.code_snapshots] == [0, 12]
        assert timeline.code_snapshots[-1].code.startswith("def solve(nums")

    def test_unchanged_code_not_duplicated(self) -> None:
        async def run():
            session = _session(
                FakeClock(),
                config=SessionConfig(mode="interview", **FAST),
                code_source=lambda: "print(1)",
            )
            await session.start()
            return await session.seal()

        assert len(asyncio.run(run()).code_snapshots) == 1


# ---------------------------------------------------------------------------
# Vision Agents events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_event_types(self) -> None:
        assert ScoreUpdatedEvent(plugin_name="talkcoach").type == "plugin.talkcoach.score_updated"
        assert CoachingTipEvent(plugin_name="talkcoach", tip="Breathe.").type == "plugin.talkcoach.coaching_tip"
        assert SessionSealedEvent(plugin_name="talkcoach").type == "plugin.talkcoach.session_sealed"


# ---------------------------------------------------------------------------
# CoachingBridge
# ---------------------------------------------------------------------------


class ScriptedEventBus:
    """Event bus recording registrations, subscriptions and sent events."""

    def __init__(self) -> None:
        self.registered: list[type] = []
        self.handlers: list = []
        self.sent: list = []

    def register(self, event_class: type) -> None:
        self.registered.append(event_class)

    def subscribe(self, handler):
        self.handlers.append(handler)
        return handler

    def send(self, event) -> None:
        self.sent.append(event)


class ScriptedAgent:
    def __init__(self, agent_user_id: str) -> None:
        self.agent_user = Participant(id=agent_user_id, user_id=agent_user_id, original=None)
        self.events = ScriptedEventBus()


def _final_event(text: str, user_id: str) -> STTTranscriptEvent:
    participant = Participant(id=f"{user_id}-session", user_id=user_id, original=None)
    return STTTranscriptEvent(plugin_name="stt", text=text, participant=participant)


def _partial_event(text: str, user_id: str) -> STTPartialTranscriptEvent:
    participant = Participant(id=f"{user_id}-session", user_id=user_id, original=None)
    return STTPartialTranscriptEvent(plugin_name="stt", text=text, participant=participant)


def _run_bridge(events: list, speaker_user_id=None, agent_user_id=None):
    seen: list = []

    async def run():
        session = _session(FakeClock())
        session.add_listener("transcript", seen.append)
        bridge = CoachingBridge(session, speaker_user_id=speaker_user_id)
        agent = None
        if agent_user_id is not None:
            agent = ScriptedAgent(agent_user_id)
            bridge.attach_agent(agent)
        await session.start()
        for event in events:
            if agent is not None:
                for handler in agent.events.handlers:
                    await handler(event)
            else:
                bridge.handle_transcript(event)
        transcript = session.current_transcript()
        await bridge.close()
        return transcript, seen, agent

    return asyncio.run(run())


class TestCoachingBridge:
    def test_rejects_missing_session(self) -> None:
        with pytest.raises(ValueError, match="session"):
            CoachingBridge(None)

    def test_partial_maps_to_interim_and_final_to_final(self) -> None:
        transcript, seen, _ = _run_bridge(
            [_partial_event("so I think", "alice"), _final_event("so I think we should ship", "alice")]
        )
        assert [s.is_final for s in seen] == [False, True]
        assert [s.text for s in transcript] == ["so I think we should ship"]

    def test_result_index_advances_only_on_finals(self) -> None:
        transcript, seen, _ = _run_bridge(
            [
                _partial_event("okay", "alice"),
                _final_event("okay", "alice"),
                _partial_event("okay", "alice"),
                _final_event("okay", "alice"),
            ]
        )
        # Each final carries its own result index, so a repeated phrase is not dropped as a duplicate.
        assert [s.text for s in transcript] == ["okay", "okay"]
        assert [s.is_final for s in seen] == [False, True, False, True]

    def test_speaker_filter(self) -> None:
        transcript, _, _ = _run_bridge(
            [_final_event("hello from bob", "bob"), _final_event("hello from alice", "alice")],
            speaker_user_id="alice",
        )
        assert [s.text for s in transcript] == ["hello from alice"]

    def test_ignores_agent_own_speech(self) -> None:
        transcript, _, agent = _run_bridge(
            [_final_event("Let's begin the interview.", "coach-bot"), _final_event("Thanks, glad to be here.", "alice")],
            agent_user_id="coach-bot",
        )
        assert [s.text for s in transcript] == ["Thanks, glad to be here."]
        assert agent.events.registered == [ScoreUpdatedEvent, CoachingTipEvent, SessionSealedEvent]

    def test_without_agent_every_participant_is_the_speaker(self) -> None:
        transcript, _, _ = _run_bridge([_final_event("first", "bob"), _final_event("second", "alice")])
        assert [s.text for s in transcript] == ["first", "second"]

    def test_score_updates_sent_to_agent_bus(self) -> None:
        async def run():
            session = _session(FakeClock())
            bridge = CoachingBridge(session)
            agent = ScriptedAgent("coach-bot")
            bridge.attach_agent(agent)
            await session.start()
            session.update_score()
            await bridge.close()
            return session, agent

        session, agent = asyncio.run(run())
        scores = [e for e in agent.events.sent if isinstance(e, ScoreUpdatedEvent)]
        assert scores
        assert scores[0].session_id == session.session_id
        assert 0 <= scores[0].score <= 100
