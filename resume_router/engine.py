"""Routing engine: registry, scenario policy, selector and monitoring wired together."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from .config import RouterSettings, load_overrides
from .models.registry import ModelInfo, ModelRegistry
from .models.scenarios import ScenarioConfig, ScenarioMappingStore
from .models.selectors import ModelSelection, ModelSelector
from .models.strategies import LatencyOptimizedStrategy, SelectionStrategy, default_strategies
from .monitoring.performance import PerformanceAlert, PerformanceMonitor
from .runs.events import EventWriter
from .runs.selection_log import AgentContext, SelectionLog


MIN_CALLS_BEFORE_DISABLE = 10


class RoutingEngine:
    def __init__(
        self,
        registry: ModelRegistry | None = None,
        store: ScenarioMappingStore | None = None,
        settings: RouterSettings | None = None,
        events_path: Path | None = None,
        monitor: PerformanceMonitor | None = None,
        min_calls_before_disable: int = MIN_CALLS_BEFORE_DISABLE,
    ) -> None:
        self.settings = settings or RouterSettings.from_env()
        self.registry = registry if registry is not None else ModelRegistry()
        if store is None:
            store = ScenarioMappingStore(load_overrides(self.settings.overrides_path))
        self.store = store
        path = events_path or self.settings.events_path
        self.events = EventWriter(path) if path else None
        self.selector = ModelSelector(
            self.store,
            log=SelectionLog(self.events),
            terminal_model=self.settings.terminal_model,
            strategies=self._strategies(),
        )
        self.monitor = monitor or PerformanceMonitor()
        self.min_calls_before_disable = max(1, min_calls_before_disable)
        self._auto_disabled: set[str] = set()

    def route(
        self,
        scenario: str,
        excluded_models: Sequence[str] = (),
        agent_context: AgentContext | None = None,
    ) -> ModelSelection:
        return self.selector.select_with_fallback(
            scenario,
            self.registry.list(),
            excluded_models=excluded_models,
            agent_context=agent_context,
        )

    def route_by_strategy(self, scenario: str, **context: Any) -> ModelInfo:
        return self.selector.select_model(self.registry.list(), scenario, **context)

    def update_scenario(self, scenario: str, **partial: Any) -> ScenarioConfig:
        config = self.store.update_scenario_config(scenario, **partial)
        self._emit("scenario_config_updated", scenario=scenario, fields=sorted(partial), config=config.as_dict())
        return config

    def set_model_available(self, name: str, is_available: bool) -> ModelInfo:
        model = self.registry.set_available(name, is_available)
        self._auto_disabled.discard(model.name)
        self._emit("model_status_changed", model=model.name, is_available=is_available)
        return model

    def report_result(self, model_name: str, latency_ms: float, success: bool) -> list[PerformanceAlert]:
        """Record one call outcome and refresh the registry from observed metrics.

        Once a model has at least ``min_calls_before_disable`` recorded calls
        and its failure rate crosses the alert threshold, it is marked
        unavailable so the next :meth:`route` skips it. A model disabled this
        way is re-enabled as soon as its failure rate is back under the
        threshold. Models switched off through :meth:`set_model_available`
        stay off.
        """
        model = self.registry.get(model_name)
        provider = model.provider if model else "unknown"
        name = model.name if model else model_name
        metrics = self.monitor.record(name, provider, latency_ms, success)
        if model is not None:
            model = self.registry.update_metrics(
                name,
                latency=int(round(metrics.average_latency_ms)),
                success_rate=metrics.success_rate,
            )
        alerts = self.monitor.alerts_for(name)
        for alert in alerts:
            self._emit(
                "performance_alert",
                model=alert.model,
                alert_type=alert.alert_type,
                value=alert.value,
                threshold=alert.threshold,
                message=alert.message,
            )
        if model is not None:
            failing = any(alert.alert_type == "high_failure_rate" for alert in alerts)
            if failing and model.is_available and metrics.total_calls >= self.min_calls_before_disable:
                self.set_model_available(name, False)
                self._auto_disabled.add(name)
            elif not failing and name in self._auto_disabled:
                self.set_model_available(name, True)
        return alerts

    def _strategies(self) -> dict[str, SelectionStrategy]:
        strategies = default_strategies()
        strategies["latency"] = LatencyOptimizedStrategy(
            on_threshold_exceeded=lambda payload: self._emit("latency_threshold_exceeded", **payload)
        )
        return strategies

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)
