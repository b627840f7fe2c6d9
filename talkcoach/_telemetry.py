"""Per-stage latency tracking for the coaching pipeline.

Every synchronous stage must finish inside one tick to sustain ~10 Hz
sampling, so sampler ticks share a 20 ms budget. Budget violations are
logged at WARNING. When the opentelemetry API is installed and a meter
provider is configured, samples are also recorded into a histogram.

Stage budgets (ms):
    transcript_event   20
    prosody_tick       20
    body_tick          20
    scoring_tick       20
    tip_request      5000
"""

import logging
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

LATENCY_BUDGETS_MS: dict[str, float] = {
    "transcript_event": 20.0,
    "prosody_tick": 20.0,
    "body_tick": 20.0,
    "scoring_tick": 20.0,
    "tip_request": 5000.0,
}

# Samples kept per stage; a long session would otherwise grow without bound.
_MAX_SAMPLES = 2048

try:
    from opentelemetry import metrics as otel_metrics

    _OTEL_AVAILABLE = True
except ImportError:
    _OTEL_AVAILABLE = False
    logger.debug("opentelemetry not installed, latency stays in memory only")


class LatencyTracker:
    """Times pipeline stages and reports budget violations.

    Usage::

        tracker = LatencyTracker()
        with tracker.measure("body_tick"):
            await sampler.tick(frame)
        tracker.get_stats()["body_tick"]["p95_ms"]

    Args:
        service_name: OTEL meter name.
        budgets_ms: Per-stage budgets; defaults to `LATENCY_BUDGETS_MS`.
    """

    def __init__(
        self,
        service_name: str = "talkcoach",
        budgets_ms: Optional[dict[str, float]] = None,
    ) -> None:
        self._budgets = dict(LATENCY_BUDGETS_MS if budgets_ms is None else budgets_ms)
        self._samples: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=_MAX_SAMPLES))
        self._violations: dict[str, int] = defaultdict(int)
        self._histogram: Optional[object] = None

        if _OTEL_AVAILABLE:
            try:
                meter = otel_metrics.get_meter(service_name)
                self._histogram = meter.create_histogram(
                    name="talkcoach.stage_latency_ms",
                    description="Coaching pipeline stage latency in milliseconds",
                    unit="ms",
                )
            except RuntimeError:
                logger.debug("No OTEL meter provider configured")

    @contextmanager
    def measure(self, stage: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(stage, (time.perf_counter() - start) * 1000.0)

    def record(self, stage: str, elapsed_ms: float) -> None:
        self._samples[stage].append(elapsed_ms)

        if self._histogram is not None:
            try:
                self._histogram.record(elapsed_ms, {"stage": stage})
            except RuntimeError:
                logger.debug("OTEL histogram record failed for %s", stage)

        budget = self._budgets.get(stage)
        if budget is not None and elapsed_ms > budget:
            self._violations[stage] += 1
            logger.warning(
                "Latency budget exceeded: stage=%s elapsed=%.1fms budget=%.1fms",
                stage,
                elapsed_ms,
                budget,
            )

    def violations(self, stage: str) -> int:
        return self._violations.get(stage, 0)

    def get_stats(self) -> dict[str, dict[str, float]]:
        """Per-stage ``mean_ms``, ``max_ms``, ``p95_ms``, ``count`` and ``over_budget``."""
        stats: dict[str, dict[str, float]] = {}
        for stage, samples in self._samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            stats[stage] = {
                "mean_ms": round(sum(ordered) / n, 2),
                "max_ms": round(ordered[-1], 2),
                "p95_ms": round(ordered[max(0, int(n * 0.95) - 1)], 2),
                "count": float(n),
                "over_budget": float(self._violations.get(stage, 0)),
            }
        return stats

    def prometheus_text(self) -> str:
        """Stats in Prometheus text exposition format."""
        lines: list[str] = []
        for stage, s in self.get_stats().items():
            base = f'talkcoach_stage_latency_ms{{stage="{stage}"}}'
            lines += [
                f"# HELP {base} Stage latency in ms",
                f"# TYPE {base} gauge",
                f"{base}_mean {s['mean_ms']}",
                f"{base}_max {s['max_ms']}",
                f"{base}_p95 {s['p95_ms']}",
                f"{base}_count {s['count']}",
            ]
        return "\n".join(lines)

    def reset(self) -> None:
        self._samples.clear()
        self._violations.clear()
