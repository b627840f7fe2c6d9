"""Coaching-tip prompt, response parsing and deterministic fallback.

The tip itself comes from an external requester (usually an LLM call). This
module builds the request text, parses whatever the requester returns into a
`CoachTip`, and derives a fixed tip from the metrics when no requester is
configured or it fails.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional

from ._types import CoachTip, Metrics, TipPriority, TipRequest

logger = logging.getLogger(__name__)

TipRequester = Callable[[TipRequest], Awaitable[Any]]

_MAX_TIP_CHARS = 100

DEFAULT_TIPS: dict[TipPriority, str] = {
    TipPriority.PACE: "Slow down and breathe between sentences.",
    TipPriority.FILLERS: "Pause instead of using filler words.",
    TipPriority.EYE_CONTACT: "Look directly at the camera.",
    TipPriority.PAUSES: "Keep your energy up and minimize long pauses.",
    TipPriority.ENERGY: "Use natural hand gestures to emphasize points.",
}

SYSTEM_PROMPT = """\
You are a real-time public speaking coach. Give ONE short, actionable coaching tip based on the metrics and transcript provided.

Guidelines:
- Keep tips under 15 words
- Be encouraging but direct
- Focus on the most impactful improvement
- Consider the mode (interview vs presentation)

Respond with JSON only:
{
  "tip": "Your coaching tip here",
  "priority": "pace" | "fillers" | "eye_contact" | "pauses" | "energy"
}"""


def tip_priority(metrics: Metrics) -> TipPriority:
    """Most pressing signal, checked in fixed order. Defaults to pace."""
    if metrics.pace_wpm > 170:
        return TipPriority.PACE
    if metrics.filler_rate_per_min > 3:
        return TipPriority.FILLERS
    if metrics.eye_contact_pct < 0.6:
        return TipPriority.EYE_CONTACT
    if metrics.max_pause_ms > 2500:
        return TipPriority.PAUSES
    if metrics.motion_energy < 0.2 or metrics.motion_energy > 0.7:
        return TipPriority.ENERGY
    return TipPriority.PACE


def default_tip(metrics: Metrics) -> CoachTip:
    priority = tip_priority(metrics)
    return CoachTip(tip=DEFAULT_TIPS[priority], priority=priority)


def build_tip_prompt(request: TipRequest) -> str:
    """User prompt for an LLM-backed requester."""
    m = request.metrics
    mode = request.mode if not request.session_type else f"{request.mode} ({request.session_type})"
    return (
        f"Mode: {mode}\n"
        f'Recent transcript: "{request.recent_transcript}"\n'
        "\n"
        "Metrics:\n"
        f"- Pace: {m.pace_wpm:.0f} WPM (ideal: 140-160)\n"
        f"- Filler rate: {m.filler_rate_per_min}/min (ideal: <=2)\n"
        f"- Eye contact: {round(m.eye_contact_pct * 100)}% (ideal: >=70%)\n"
        f"- Max pause: {m.max_pause_ms:.0f}ms (ideal: <=2000ms)\n"
        f"- Motion energy: {round(m.motion_energy * 100)}% (ideal: 30-60%)\n"
        "\n"
        "Give one coaching tip."
    )


def parse_tip(response: Any, metrics: Metrics) -> Optional[CoachTip]:
    """Turn a requester response into a `CoachTip`.

    Accepts a `CoachTip`, a mapping with ``tip``/``priority``, or text. Text
    is searched for a JSON object first; otherwise its first 100 characters
    become the tip. Missing or unknown priorities are derived from metrics.
    Returns None when the response carries no tip text at all.
    """
    if isinstance(response, CoachTip):
        return response

    data: Any = response
    if isinstance(response, str):
        start = response.find("{")
        end = response.rfind("}") + 1
        data = None
        if start != -1 and end > start:
            try:
                data = json.loads(response[start:end])
            except json.JSONDecodeError:
                logger.debug("Tip response was not valid JSON; using raw text")
        if not isinstance(data, Mapping):
            text = response.strip()[:_MAX_TIP_CHARS]
            if not text:
                return None
            return CoachTip(tip=text, priority=tip_priority(metrics))

    if not isinstance(data, Mapping):
        logger.warning("Unexpected tip response type %s", type(response).__name__)
        return None

    tip = str(data.get("tip") or "").strip()
    if not tip:
        return None
    try:
        priority = TipPriority(data.get("priority"))
    except ValueError:
        priority = tip_priority(metrics)
    return CoachTip(tip=tip, priority=priority)
