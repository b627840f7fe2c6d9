"""Local demo for the talkcoach engine, no camera, microphone or API keys required.

Simulates a 40-second practice presentation in accelerated time and prints
live output from every component:
  • Transcript segmentation (fillers, pauses, hesitation, pace class)
  • Prosody classification from synthesized audio
  • Body signals from the local fallback estimator
  • Composite score, smoothing and cues
  • Per-sampler health and latency budgets
  • Sealed timeline: annotated transcript and paralinguistic summary

Run:
    uv run python examples/01_local_coaching_demo/demo_local.py
"""

import asyncio
import logging
import math
import random

import numpy as np

from talkcoach import (
    AudioFrame,
    CoachingSession,
    CoachTip,
    RawSegment,
    ScoreUpdate,
    SessionConfig,
    TranscriptSegment,
)

# ── Colour helpers ────────────────────────────────────────────────────────────

RESET = "\033[0m"
BOLD = "\033[1m"
RED = "\033[31m"
YELLOW = "\033[33m"
GREEN = "\033[32m"
CYAN = "\033[36m"
MAGENTA = "\033[35m"
DIM = "\033[2m"


def _c(text: str, colour: str) -> str:
    return f"{colour}{text}{RESET}"


def _score_bar(score: int, width: int = 20) -> str:
    filled = int(score / 100 * width)
    bar = "█" * filled + "░" * (width - filled)
    if score >= 75:
        colour = GREEN
    elif score >= 50:
        colour = YELLOW
    else:
        colour = RED
    return f"{colour}{bar}{RESET} {score:3d}"


# ── Simulated speech ──────────────────────────────────────────────────────────

# (seconds since previous phrase, text)
_SCRIPT = [
    (1.0, "um so today I want to talk about"),
    (1.0, "how we cut our deploy time in half"),
    (2.2, "basically the old pipeline rebuilt everything"),
    (1.0, "every single time someone pushed a commit"),
    (0.8, "and uh that took about forty minutes"),
    (1.0, "so we split the build into layers"),
    (1.0, "cached the dependencies separately"),
    (2.5, "I think the biggest win was"),
    (1.0, "running the test shards in parallel"),
    (0.9, "which you know sounds obvious in hindsight"),
    (1.0, "but it took real work on the fixtures"),
    (1.0, "now a typical deploy takes eighteen minutes"),
    (3.0, "well... there is still more to do"),
    (1.0, "next quarter we want to get under ten"),
    (1.0, "thank you and I am happy to take questions"),
]

_SAMPLE_RATE = 48_000
_FRAME = np.zeros((240, 320, 3), dtype=np.uint8)


def _synth_audio(t: float, rng: random.Random) -> AudioFrame:
    """Voiced-ish audio whose loudness and pitch drift over the session."""
    n = 2048
    times = np.arange(n) / _SAMPLE_RATE
    pitch = 180.0 + 60.0 * math.sin(t / 4.0)
    amplitude = 0.08 + 0.06 * math.sin(t / 7.0) + rng.uniform(-0.01, 0.01)
    wave = amplitude * (np.sin(2 * np.pi * pitch * times) + 0.3 * np.sin(2 * np.pi * 3 * pitch * times))
    return AudioFrame.from_pcm(wave, _SAMPLE_RATE)


def _synth_video(t: float, rng: random.Random) -> np.ndarray:
    """Skin-toned face patch that drifts a little; drops out briefly mid-talk."""
    frame = _FRAME.copy()
    frame[...] = (40, 45, 60)
    if not 18.0 <= t <= 22.0:
        dx = int(10 * math.sin(t * 1.3)) + rng.randint(-3, 3)
        frame[30:140, 100 + dx:220 + dx] = (205, 140, 110)
    return frame


# ── Session ───────────────────────────────────────────────────────────────────


async def main() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    rng = random.Random(7)
    sim = {"ms": 0.0}

    def clock() -> float:
        return sim["ms"]

    def on_transcript(segment: TranscriptSegment) -> None:
        if not segment.is_final:
            return
        notes = []
        if segment.pause_before_ms:
            notes.append(f"pause {segment.pause_before_ms / 1000:.1f}s")
        if segment.fillers:
            notes.append(_c(f"fillers={list(segment.fillers)}", YELLOW))
        if segment.is_hesitation:
            notes.append(_c("hesitant", MAGENTA))
        notes.append(f"{segment.speaking_rate.value} / {segment.tone.volume.value}")
        print(f"  {DIM}t={sim['ms'] / 1000:5.1f}s{RESET}  \"{segment.text}\"  {DIM}{', '.join(notes)}{RESET}")

    def on_score(update: ScoreUpdate) -> None:
        cues = ", ".join(c.value for c in update.cues) or "-"
        weakest = update.breakdown.weakest()
        focus = weakest.signal_name if weakest else "none"
        print(f"      score {_score_bar(update.score)}  raw={update.raw_score:3d}  cues={_c(cues, CYAN)}  focus={focus}")

    def on_tip(tip: CoachTip) -> None:
        print(f"  {BOLD}{GREEN}💡 {tip.tip}{RESET}  {DIM}({tip.priority.value}){RESET}")

    config = SessionConfig(
        mode="presentation",
        session_type="pitch",
        prosody_interval_s=0.02,
        body_interval_s=0.02,
        scoring_interval_s=0.25,
        tip_interval_s=1.0,
        tip_initial_delay_s=0.5,
    )
    session = CoachingSession(
        config,
        audio_source=lambda: _synth_audio(sim["ms"] / 1000.0, rng),
        video_source=lambda: _synth_video(sim["ms"] / 1000.0, rng),
        clock=clock,
        on_transcript=on_transcript,
        on_score=on_score,
        on_tip=on_tip,
    )

    print(f"\n{BOLD}{CYAN}{'═' * 66}{RESET}")
    print(f"{BOLD}{CYAN}  talkcoach — Local Coaching Demo{RESET}")
    print(f"{BOLD}{CYAN}{'═' * 66}{RESET}\n")

    await session.start()
    health = session.signal_health()
    print(f"{DIM}Signal health: {health.as_dict()}{RESET}")
    print(f"{DIM}  ↳ {health.warning_message}{RESET}\n")

    for index, (gap_s, text) in enumerate(_SCRIPT):
        words = text.split()
        # Interim result halfway through the phrase, then the final one.
        sim["ms"] += gap_s * 500.0
        session.ingest_recognizer_event([RawSegment(" ".join(words[: len(words) // 2]), None, False)])
        await asyncio.sleep(0.05)
        sim["ms"] += gap_s * 500.0 + len(words) * 350.0
        session.ingest_recognizer_event([RawSegment(text, round(rng.uniform(0.82, 0.97), 3), True, index)])
        await asyncio.sleep(0.25)

    timeline = await session.seal()

    print(f"\n{BOLD}{CYAN}{'─' * 66}{RESET}")
    print(f"{BOLD}{CYAN}  Latency Budget Report{RESET}")
    print(f"{BOLD}{CYAN}{'─' * 66}{RESET}")
    for stage, stats in session.latency_stats().items():
        mean = stats["mean_ms"]
        colour = RED if stats["over_budget"] else GREEN
        print(f"  {stage:<20} mean={_c(f'{mean:.2f}ms', colour)}  p95={stats['p95_ms']:.2f}ms  n={int(stats['count'])}")

    m = timeline.metrics
    print(f"\n{BOLD}{CYAN}{'═' * 66}{RESET}")
    print(f"{BOLD}{CYAN}  Sealed Timeline — {timeline.session_id}{RESET}")
    print(f"{BOLD}{CYAN}{'═' * 66}{RESET}\n")
    print(f"  Duration        : {timeline.duration_s:.0f}s (simulated)")
    print(f"  Final score     : {_score_bar(timeline.final_score)}")
    print(f"  Pace            : {m.pace_wpm:.0f} WPM")
    print(f"  Filler rate     : {m.filler_rate_per_min:.1f}/min")
    print(f"  Eye contact     : {m.eye_contact_pct * 100:.0f}%")
    print(f"  Longest pause   : {m.max_pause_ms / 1000:.1f}s ({m.pause_count} pauses)")
    print(f"  Motion energy   : {m.motion_energy:.2f}")
    print(f"  Metric snapshots: {len(timeline.metric_snapshots)}")

    print(f"\n  {BOLD}Annotated transcript:{RESET}")
    print(f"    {timeline.annotated_transcript()}")

    summary = timeline.paralinguistic_summary()
    if summary:
        print(f"\n  {BOLD}{YELLOW}Delivery patterns:{RESET}")
        for line in summary.splitlines():
            print(f"    {line}")
    print()


if __name__ == "__main__":
    asyncio.run(main())
