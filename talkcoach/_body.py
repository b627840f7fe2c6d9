"""Body-signal sampler: eye contact and motion energy from the camera.

Two sample sources share one interface:
  PrimaryBodySource  — an external vision classifier returning structured
                       per-frame judgments (JSON or a mapping)
  FallbackBodySource — local pixel heuristics on downsampled RGB frames

The sampler holds exactly one source at a time. If the primary source
raises, or produces no usable judgment within its timeout, the sampler
replaces it with the fallback once and never switches back for the rest of
the session.
"""

import abc
import asyncio
import json
import logging
import math
import random
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import av
import numpy as np

from ._aggregator import MetricsAggregator
from ._types import BodySample, BodySignals
from .config import BodySamplerConfig

logger = logging.getLogger(__name__)

MOTION_LEVELS: dict[str, float] = {
    "still": 0.1,
    "low": 0.3,
    "moderate": 0.5,
    "high": 0.7,
    "excessive": 0.9,
}
_UNKNOWN_MOTION_LEVEL = 0.5

VisionClassifier = Callable[[Any], Awaitable[Any]]
SignalsListener = Callable[[BodySignals], None]


class VisionSourceError(RuntimeError):
    """The primary vision source failed and cannot be used for this session."""


@dataclass(frozen=True)
class VisionJudgment:
    """One structured judgment from the vision classifier.

    Attributes:
        eye_contact: Whether the speaker is looking at the camera.
        eye_contact_confidence: Classifier confidence in [0, 1].
        motion_level: One of ``still``, ``low``, ``moderate``, ``high``,
            ``excessive``. Unknown levels map to the midpoint.
        posture: Free-form posture class, informational only.
        gesture_detected: Informational only.
    """

    eye_contact: bool
    eye_contact_confidence: float
    motion_level: str
    posture: Optional[str] = None
    gesture_detected: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["VisionJudgment"]:
        """Parse a classifier payload.

        Accepts the judgment itself as a JSON string or mapping, or an
        envelope ``{"ok": bool, "result": <judgment>}``. Returns None for a
        not-ok envelope; raises ValueError for anything malformed.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Unparseable vision payload: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise ValueError(f"Vision payload must be an object, got {type(payload).__name__}")

        if "ok" in payload:
            if not payload["ok"]:
                logger.debug("Vision result not ok: %s", payload.get("error"))
                return None
            return cls.from_payload(payload.get("result"))

        try:
            confidence = float(payload["eye_contact_confidence"])
            eye_contact = bool(payload["eye_contact"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed vision judgment: {exc}") from exc
        if not math.isfinite(confidence):
            raise ValueError("Non-finite eye contact confidence")

        return cls(
            eye_contact=eye_contact,
            eye_contact_confidence=min(max(confidence, 0.0), 1.0),
            motion_level=str(payload.get("motion_level", "")),
            posture=payload.get("posture"),
            gesture_detected=bool(payload.get("gesture_detected", False)),
        )

    def to_sample(self) -> BodySample:
        return BodySample(
            eye_contact=self.eye_contact_confidence if self.eye_contact else 0.0,
            motion_energy=MOTION_LEVELS.get(self.motion_level, _UNKNOWN_MOTION_LEVEL),
        )


class BodySampleSource(abc.ABC):
    """Strategy producing one raw body sample per frame."""

    name: str = "source"

    @abc.abstractmethod
    async def sample(self, frame: Any) -> Optional[BodySample]:
        """Return a sample, or None if this frame produced nothing usable.

        Raises:
            VisionSourceError: The source is unusable for the rest of the session.
            ValueError: The frame itself is malformed.
        """

    async def close(self) -> None:
        return None


class PrimaryBodySource(BodySampleSource):
    """Wraps an external vision classifier.

    Args:
        classifier: Async callable taking a frame and returning a payload.
        timeout_s: Longest acceptable silence, both per call and between
            usable judgments.
        clock: Monotonic clock in seconds.
    """

    name = "primary"

    def __init__(
        self,
        classifier: VisionClassifier,
        timeout_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._classifier = classifier
        self._timeout_s = timeout_s
        self._clock = clock
        self._last_result_at: Optional[float] = None

    async def sample(self, frame: Any) -> Optional[BodySample]:
        now = self._clock()
        if self._last_result_at is None:
            self._last_result_at = now

        try:
            payload = await asyncio.wait_for(self._classifier(frame), timeout=self._timeout_s)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            raise VisionSourceError(f"Vision classifier timed out after {self._timeout_s}s") from exc
        except Exception as exc:
            # Any classifier failure, including SDK and decode errors, ends the primary source.
            raise VisionSourceError(f"Vision classifier failed: {exc!r}") from exc

        try:
            judgment = VisionJudgment.from_payload(payload)
        except ValueError:
            logger.warning("Skipping malformed vision result", exc_info=True)
            judgment = None

        if judgment is None:
            if self._clock() - self._last_result_at >= self._timeout_s:
                raise VisionSourceError(
                    f"No usable vision result for {self._timeout_s}s"
                )
            return None

        self._last_result_at = self._clock()
        return judgment.to_sample()

    async def close(self) -> None:
        closer = getattr(self._classifier, "aclose", None) or getattr(self._classifier, "close", None)
        if closer is None:
            return
        result = closer()
        if asyncio.iscoroutine(result):
            await result


def to_rgb_array(frame: Any, width: int, height: int) -> np.ndarray:
    """Downsample a video frame to an ``(height, width, 3)`` uint8 RGB array."""
    if isinstance(frame, av.VideoFrame):
        return frame.reformat(width=width, height=height, format="rgb24").to_ndarray()

    arr = np.asarray(frame)
    if arr.ndim != 3 or arr.shape[2] < 3 or arr.shape[0] == 0 or arr.shape[1] == 0:
        raise ValueError(f"Expected an HxWx3 RGB frame, got shape {arr.shape}")
    arr = arr[:, :, :3]
    if arr.shape[0] != height or arr.shape[1] != width:
        rows = np.arange(height) * arr.shape[0] // height
        cols = np.arange(width) * arr.shape[1] // width
        arr = arr[rows][:, cols]
    return arr.astype(np.uint8, copy=False)


class FallbackBodySource(BodySampleSource):
    """Coarse local estimator that keeps the scoring pipeline alive.

    Motion is the mean absolute per-channel difference between consecutive
    frames over every fourth pixel, divided by an empirical divisor. Eye
    contact is a skin-tone ratio in the central face region mapped to a base
    confidence, plus bounded jitter so the signal does not look frozen.

    Args:
        config: Fallback constants.
        rng: Source of jitter; inject a seeded ``random.Random`` in tests.
    """

    name = "fallback"

    def __init__(
        self,
        config: Optional[BodySamplerConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._config = config or BodySamplerConfig()
        self._rng = rng or random.Random()
        self._previous: Optional[np.ndarray] = None

    async def sample(self, frame: Any) -> Optional[BodySample]:
        rgb = to_rgb_array(frame, self._config.frame_width, self._config.frame_height)
        motion = self.estimate_motion(rgb)
        eye = self.estimate_eye_contact(rgb)
        self._previous = rgb
        return BodySample(eye_contact=eye, motion_energy=motion)

    def estimate_motion(self, rgb: np.ndarray) -> float:
        if self._previous is None or self._previous.shape != rgb.shape:
            return self._config.first_frame_motion
        current = rgb.reshape(-1, 3)[:: self._config.pixel_stride].astype(np.int16)
        previous = self._previous.reshape(-1, 3)[:: self._config.pixel_stride].astype(np.int16)
        avg_diff = float(np.abs(current - previous).mean())
        if not math.isfinite(avg_diff):
            return self._config.first_frame_motion
        return min(1.0, avg_diff / self._config.motion_divisor)

    def estimate_eye_contact(self, rgb: np.ndarray) -> float:
        h, w = rgb.shape[:2]
        step = self._config.pixel_stride
        region = rgb[int(h * 0.1):int(h * 0.6):step, int(w * 0.25):int(w * 0.75):step].astype(np.int16)
        if region.size == 0:
            base = self._config.eye_contact_absent
        else:
            r, g, b = region[..., 0], region[..., 1], region[..., 2]
            skin = (r > 95) & (g > 40) & (b > 20) & (r > g) & (r > b) & (np.abs(r - g) > 15)
            ratio = float(skin.mean())
            base = (
                self._config.eye_contact_present
                if ratio > self._config.skin_ratio_threshold
                else self._config.eye_contact_absent
            )
        jitter = (self._rng.random() - 0.5) * 2.0 * self._config.eye_contact_jitter
        return min(1.0, max(0.0, base + jitter))


class BodySignalSampler:
    """Smooths body samples over rolling windows and writes body metrics.

    Args:
        metrics: Session metrics record; only body fields are written.
        config: Buffer sizes and fallback constants.
        primary: Vision-classifier source, or None to start on the fallback.
        fallback: Local estimator used from the start or after a downgrade.
        on_signals: Called with the smoothed signals after every tick.
    """

    def __init__(
        self,
        metrics: MetricsAggregator,
        config: Optional[BodySamplerConfig] = None,
        primary: Optional[BodySampleSource] = None,
        fallback: Optional[BodySampleSource] = None,
        on_signals: Optional[SignalsListener] = None,
    ) -> None:
        self._metrics = metrics
        self._config = config or BodySamplerConfig()
        self._fallback = fallback if fallback is not None else FallbackBodySource(self._config)
        self._source: BodySampleSource = primary if primary is not None else self._fallback
        self._on_signals = on_signals
        self._eye: deque[float] = deque(maxlen=self._config.buffer_size)
        self._motion: deque[float] = deque(maxlen=self._config.buffer_size)
        self._signals = BodySignals()
        self._running = False
        self._degraded = primary is None
        self._ticks = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def degraded(self) -> bool:
        """True when running on the fallback source."""
        return self._degraded

    @property
    def source_name(self) -> str:
        return self._source.name

    @property
    def current_signals(self) -> BodySignals:
        return self._signals

    def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        """Stop sampling and release the held source. Idempotent."""
        self._running = False
        await self._close_source(self._source)

    async def tick(self, frame: Any) -> BodySignals:
        if not self._running:
            return self._signals

        sample = await self._sample(frame)
        # A stop may have landed while the classifier call was suspended.
        if not self._running:
            return self._signals

        if sample is not None:
            self._eye.append(sample.eye_contact)
            self._motion.append(sample.motion_energy)
        self._ticks += 1

        if self._eye:
            self._signals = BodySignals(
                eye_contact_pct=_clamped_mean(self._eye, 0.5),
                motion_energy=_clamped_mean(self._motion, 0.3),
            )
            self._metrics.update_body(
                eye_contact_pct=self._signals.eye_contact_pct,
                motion_energy=self._signals.motion_energy,
            )
            if self._ticks % 10 == 0:
                logger.debug(
                    "Body signals (%s): eye=%.2f motion=%.2f",
                    self._source.name,
                    self._signals.eye_contact_pct,
                    self._signals.motion_energy,
                )

        if self._on_signals is not None:
            self._on_signals(self._signals)
        return self._signals

    async def _sample(self, frame: Any) -> Optional[BodySample]:
        try:
            return await self._source.sample(frame)
        except VisionSourceError as exc:
            if self._source is self._fallback:
                raise
            await self._downgrade(exc)
        except ValueError:
            logger.warning("Skipping unusable video frame", exc_info=True)
            return None

        try:
            return await self._source.sample(frame)
        except ValueError:
            logger.warning("Skipping unusable video frame", exc_info=True)
            return None

    async def _downgrade(self, reason: Exception) -> None:
        logger.warning("Primary vision source failed (%s); using local fallback for the rest of the session", reason)
        failed = self._source
        self._source = self._fallback
        self._degraded = True
        await self._close_source(failed)

    async def _close_source(self, source: BodySampleSource) -> None:
        try:
            await source.close()
        except (RuntimeError, OSError, ConnectionError):
            logger.exception("Error closing %s vision source", source.name)


def _clamped_mean(values: deque, neutral: float) -> float:
    if not values:
        return neutral
    avg = sum(values) / len(values)
    if not math.isfinite(avg):
        return neutral
    return min(1.0, max(0.0, avg))
