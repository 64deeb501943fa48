from __future__ import annotations

from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from app.core.config import settings


class _NoOpMetric:
    def labels(self, *args: Any, **kwargs: Any) -> "_NoOpMetric":
        return self

    def observe(self, *_: Any, **__: Any) -> None:
        return None

    def inc(self, *_: Any, **__: Any) -> None:
        return None


def _metric_or_noop(metric_factory: Any) -> Any:
    if not settings.METRICS_ENABLED:
        return _NoOpMetric()
    return metric_factory()


RECOVERY_EVENTS = _metric_or_noop(
    lambda: Counter(
        f"{settings.METRICS_NAMESPACE}_recovery_events_total",
        "Cart recovery events partitioned by event name.",
        ["event"],
    )
)

SCAN_DURATION = _metric_or_noop(
    lambda: Histogram(
        f"{settings.METRICS_NAMESPACE}_recovery_scan_duration_seconds",
        "Duration of a full recovery scan pass in seconds.",
        buckets=settings.METRICS_LATENCY_BUCKETS,
    )
)


def record_recovery_event(event: str, amount: int = 1) -> None:
    if amount <= 0:
        return
    RECOVERY_EVENTS.labels(event=event).inc(amount)


def record_scan_duration(elapsed: float) -> None:
    SCAN_DURATION.observe(elapsed)


def export_metrics() -> tuple[bytes, str]:
    if not settings.METRICS_ENABLED:
        return b"", "text/plain; charset=utf-8"
    return generate_latest(), CONTENT_TYPE_LATEST
