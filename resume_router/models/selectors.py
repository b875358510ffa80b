"""Scenario-aware model selection with an ordered fallback chain.

Primary models are ranked by a weighted score. When none of them can be used,
the scenario's fallback list is walked strictly in configured order, and the
terminal local model is the last resort. Selection is pure in-memory work and
never retries; recovering from :class:`NoModelAvailableError` is the caller's
job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from ..runs.selection_log import (
    PATH_FALLBACK,
    PATH_PRIMARY,
    PATH_STRATEGY,
    PATH_TERMINAL,
    AgentContext,
    FallbackEvent,
    SelectionLog,
    SelectionLogEntry,
)
from .registry import ModelInfo
from .scenarios import STRATEGY_BALANCED, ScenarioMappingStore, SelectionWeights
from .strategies import NoModelAvailableError, SelectionContext, SelectionStrategy, default_strategies


DEFAULT_TERMINAL_MODEL = "ollama"


@dataclass(frozen=True)
class ModelSelection:
    model: ModelInfo
    scenario: str
    path: str
    fallback_event: FallbackEvent | None = None

    @property
    def fallback_reason(self) -> str | None:
        return self.fallback_event.reason if self.fallback_event else None


def score_model(model: ModelInfo, weights: SelectionWeights, max_cost: float, max_latency: float) -> float:
    """Weighted score, higher is better.

    Cost and latency are normalized against the largest value among the models
    being compared, so the weights trade off terms of comparable magnitude.
    """
    w = weights.resolved()
    cost_term = model.total_cost / max_cost if max_cost > 0 else 0.0
    latency_term = model.latency / max_latency if max_latency > 0 else 0.0
    return w.quality * model.success_rate - w.cost * cost_term - w.latency * latency_term  # type: ignore[operator]


def rank_primary(
    primary_models: Sequence[str],
    candidates: Iterable[ModelInfo],
    weights: SelectionWeights,
) -> list[ModelInfo]:
    """Order ``candidates`` named in ``primary_models`` by descending score.

    Pass the whole pool, usable or not, and filter the result afterwards:
    the cost and latency divisors then stay fixed, so dropping one primary
    never reorders the others. Ties keep the earlier position in
    ``primary_models``.
    """
    ordered: list[tuple[int, ModelInfo]] = []
    pool = list(candidates)
    for position, ref in enumerate(primary_models):
        for model in pool:
            if model.matches(ref) and all(model is not seen for _, seen in ordered):
                ordered.append((position, model))
    if not ordered:
        return []
    max_cost = max(model.total_cost for _, model in ordered)
    max_latency = max(model.latency for _, model in ordered)
    scored = [(-score_model(model, weights, max_cost, max_latency), position, model) for position, model in ordered]
    scored.sort(key=lambda item: (item[0], item[1]))
    return [model for _, _, model in scored]


def _is_excluded(model: ModelInfo, excluded: Iterable[str]) -> bool:
    return any(model.matches(ref) for ref in excluded)


def _find(ref: str, candidates: Iterable[ModelInfo]) -> ModelInfo | None:
    for model in candidates:
        if model.matches(ref):
            return model
    return None


class ModelSelector:
    def __init__(
        self,
        store: ScenarioMappingStore | None = None,
        *,
        log: SelectionLog | None = None,
        terminal_model: str | None = DEFAULT_TERMINAL_MODEL,
        strategies: dict[str, SelectionStrategy] | None = None,
    ) -> None:
        self.store = store if store is not None else ScenarioMappingStore()
        self.log = log if log is not None else SelectionLog()
        self.terminal_model = terminal_model or None
        self.strategies = strategies if strategies is not None else default_strategies()

    def select_model_for_scenario(self, scenario: str, candidates: Sequence[ModelInfo]) -> ModelInfo:
        config = self.store.get_scenario_config(scenario)
        ranked = [m for m in rank_primary(config.primary_models, candidates, config.weights) if m.is_available]
        if not ranked:
            raise NoModelAvailableError(f"No primary model available for scenario '{scenario}'.")
        chosen = ranked[0]
        self._record(scenario, chosen, PATH_PRIMARY, len(candidates))
        return chosen

    def select_with_fallback(
        self,
        scenario: str,
        candidates: Sequence[ModelInfo],
        excluded_models: Sequence[str] = (),
        agent_context: AgentContext | None = None,
    ) -> ModelSelection:
        config = self.store.get_scenario_config(scenario)
        excluded = tuple(excluded_models)
        usable = [m for m in candidates if m.is_available and not _is_excluded(m, excluded)]

        scored = rank_primary(config.primary_models, candidates, config.weights)
        ranked = [m for m in scored if m.is_available and not _is_excluded(m, excluded)]
        if ranked:
            chosen = ranked[0]
            self._record(scenario, chosen, PATH_PRIMARY, len(candidates))
            return ModelSelection(model=chosen, scenario=scenario, path=PATH_PRIMARY)

        chosen = None
        path = PATH_FALLBACK
        for ref in config.fallback_models:
            chosen = _find(ref, usable)
            if chosen is not None:
                break
        if chosen is None and self.terminal_model:
            chosen = _find(self.terminal_model, usable)
            path = PATH_TERMINAL
        if chosen is None:
            raise NoModelAvailableError(
                f"No model available for scenario '{scenario}': primary, fallback and terminal models "
                f"are all unavailable or excluded (excluded={list(excluded)})."
            )

        original = self._original_model(config.primary_models, scored)
        context = agent_context or AgentContext()
        event = FallbackEvent(
            original_model=original,
            fallback_model=chosen.name,
            scenario=scenario,
            excluded_models=excluded,
            reason=self._fallback_reason(original, candidates, excluded, path),
            agent_type=context.agent_type,
            workflow_step=context.workflow_step,
            user_id=context.user_id,
        )
        self._record(scenario, chosen, path, len(candidates), event)
        return ModelSelection(model=chosen, scenario=scenario, path=path, fallback_event=event)

    def select_model(self, candidates: Sequence[ModelInfo], scenario: str, **context: Any) -> ModelInfo:
        """Pick from all available candidates with the scenario's single-objective strategy."""
        config = self.store.get_scenario_config(scenario)
        usable = [model for model in candidates if model.is_available]
        if not usable:
            raise NoModelAvailableError(f"No models available for scenario '{scenario}'.")
        strategy = self.strategies.get(config.strategy) or self.strategies[STRATEGY_BALANCED]
        context.setdefault("min_quality", config.min_quality_score)
        context.setdefault("max_latency", config.max_latency_ms)
        chosen = strategy.select(usable, SelectionContext(scenario=scenario, **context))
        self._record(scenario, chosen, PATH_STRATEGY, len(candidates))
        return chosen

    def register_strategy(self, name: str, strategy: SelectionStrategy) -> None:
        self.strategies[name] = strategy

    def get_selection_log(self, limit: int | None = None) -> list[SelectionLogEntry]:
        return self.log.entries(limit)

    def clear_selection_log(self) -> None:
        self.log.clear()

    def selection_statistics(self) -> dict[str, Any]:
        return self.log.statistics()

    @staticmethod
    def _original_model(primary_models: Sequence[str], ranked: Sequence[ModelInfo]) -> str:
        if ranked:
            return ranked[0].name
        if primary_models:
            return primary_models[0]
        return "<no primary configured>"

    @staticmethod
    def _fallback_reason(original: str, candidates: Sequence[ModelInfo], excluded: Sequence[str], path: str) -> str:
        model = _find(original, candidates)
        if model is None:
            cause = f"Primary model '{original}' is not in the candidate pool"
        elif _is_excluded(model, excluded):
            cause = f"Primary model '{original}' was excluded"
        elif not model.is_available:
            cause = f"Primary model '{original}' is unavailable"
        else:
            cause = "No primary model is usable"
        if path == PATH_TERMINAL:
            return f"{cause}; fallback chain exhausted, using terminal local model."
        return f"{cause}; using fallback chain."

    def _record(
        self,
        scenario: str,
        model: ModelInfo,
        path: str,
        candidate_count: int,
        fallback_event: FallbackEvent | None = None,
    ) -> None:
        self.log.append(
            SelectionLogEntry(
                scenario=scenario,
                chosen_model=model.name,
                provider=model.provider,
                path=path,
                candidate_count=candidate_count,
                cost=model.total_cost,
                latency=model.latency,
                success_rate=model.success_rate,
                fallback_event=fallback_event,
            )
        )
