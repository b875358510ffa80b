"""Per-model call metrics and threshold alerts."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

import numpy as np

from ..models.registry import ModelNotFoundError, ModelRegistry
from ..utils import now_utc_iso


FAILURE_RATE_THRESHOLD = 0.1
LATENCY_THRESHOLD_MS = 30000


@dataclass
class _CallSamples:
    provider: str
    latencies: list[float] = field(default_factory=list)
    outcomes: list[bool] = field(default_factory=list)
    last_updated: str = field(default_factory=now_utc_iso)


@dataclass(frozen=True)
class PerformanceMetrics:
    model: str
    provider: str
    total_calls: int
    success_count: int
    failure_count: int
    average_latency_ms: float
    p95_latency_ms: float
    success_rate: float
    failure_rate: float
    last_updated: str


@dataclass(frozen=True)
class PerformanceAlert:
    model: str
    alert_type: str
    value: float
    threshold: float
    message: str


class PerformanceMonitor:
    def __init__(
        self,
        failure_rate_threshold: float = FAILURE_RATE_THRESHOLD,
        latency_threshold_ms: float = LATENCY_THRESHOLD_MS,
    ) -> None:
        self.failure_rate_threshold = failure_rate_threshold
        self.latency_threshold_ms = latency_threshold_ms
        self._samples: dict[str, _CallSamples] = {}
        self._lock = threading.Lock()

    def record(self, model: str, provider: str, latency_ms: float, success: bool) -> PerformanceMetrics:
        with self._lock:
            samples = self._samples.setdefault(model, _CallSamples(provider=provider))
            samples.provider = provider
            samples.latencies.append(float(latency_ms))
            samples.outcomes.append(bool(success))
            samples.last_updated = now_utc_iso()
        return self.metrics(model)  # type: ignore[return-value]

    def metrics(self, model: str) -> PerformanceMetrics | None:
        with self._lock:
            samples = self._samples.get(model)
            if samples is None or not samples.outcomes:
                return None
            latencies = np.asarray(samples.latencies, dtype=float)
            outcomes = np.asarray(samples.outcomes, dtype=bool)
            provider = samples.provider
            last_updated = samples.last_updated
        total = int(outcomes.size)
        successes = int(outcomes.sum())
        return PerformanceMetrics(
            model=model,
            provider=provider,
            total_calls=total,
            success_count=successes,
            failure_count=total - successes,
            average_latency_ms=float(latencies.mean()),
            p95_latency_ms=float(np.percentile(latencies, 95)),
            success_rate=successes / total,
            failure_rate=(total - successes) / total,
            last_updated=last_updated,
        )

    def all_metrics(self) -> list[PerformanceMetrics]:
        with self._lock:
            names = sorted(self._samples)
        return [m for m in (self.metrics(name) for name in names) if m is not None]

    def metrics_by_provider(self, provider: str) -> list[PerformanceMetrics]:
        return [m for m in self.all_metrics() if m.provider == provider]

    def alerts_for(self, model: str) -> list[PerformanceAlert]:
        metrics = self.metrics(model)
        if metrics is None:
            return []
        alerts: list[PerformanceAlert] = []
        if metrics.failure_rate > self.failure_rate_threshold:
            alerts.append(
                PerformanceAlert(
                    model=model,
                    alert_type="high_failure_rate",
                    value=metrics.failure_rate,
                    threshold=self.failure_rate_threshold,
                    message=(
                        f"Model {model} failure rate {metrics.failure_rate:.1%} exceeds "
                        f"{self.failure_rate_threshold:.1%}."
                    ),
                )
            )
        if metrics.average_latency_ms > self.latency_threshold_ms:
            alerts.append(
                PerformanceAlert(
                    model=model,
                    alert_type="high_latency",
                    value=metrics.average_latency_ms,
                    threshold=self.latency_threshold_ms,
                    message=(
                        f"Model {model} average latency {metrics.average_latency_ms:.0f}ms exceeds "
                        f"{self.latency_threshold_ms:.0f}ms."
                    ),
                )
            )
        return alerts

    def check_alerts(self) -> list[PerformanceAlert]:
        alerts: list[PerformanceAlert] = []
        for metrics in self.all_metrics():
            alerts.extend(self.alerts_for(metrics.model))
        return alerts

    def reset(self, model: str) -> None:
        with self._lock:
            self._samples.pop(model, None)

    def apply_to_registry(self, registry: ModelRegistry) -> list[str]:
        """Push observed success rate and mean latency into ``registry``."""
        updated: list[str] = []
        for metrics in self.all_metrics():
            try:
                registry.update_metrics(
                    metrics.model,
                    latency=int(round(metrics.average_latency_ms)),
                    success_rate=metrics.success_rate,
                )
            except ModelNotFoundError:
                continue
            updated.append(metrics.model)
        return updated
