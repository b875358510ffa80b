"""Single-objective model selection strategies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

from .registry import ModelInfo


class NoModelAvailableError(RuntimeError):
    """Nothing in the candidate pool can serve the request."""


@dataclass(frozen=True)
class SelectionContext:
    scenario: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    max_latency: int | None = None
    max_cost: float | None = None
    min_quality: int | None = None


class SelectionStrategy(Protocol):
    name: str

    def select(self, models: Sequence[ModelInfo], context: SelectionContext) -> ModelInfo:
        ...


DEFAULT_QUALITY_RANKING = (
    "deepseek-r1:1.5b",
    "qwen-turbo",
    "qwen3-coder-flash",
    "glm-4.7",
    "Moonshot-Kimi-K2-Instruct",
    "deepseek-v3.2",
    "kimi-k2-thinking",
    "qwen3-max-preview",
)
DEFAULT_MIN_QUALITY = 6
DEFAULT_MAX_LATENCY_MS = 5000


def estimate_request_cost(model: ModelInfo, input_tokens: int = 1000, output_tokens: int = 500) -> float:
    return model.cost_per_input_token * input_tokens + model.cost_per_output_token * output_tokens


def _ranking_matches(model_name: str, ranked: str) -> bool:
    name = model_name.lower()
    ranked = ranked.lower()
    return name == ranked or name.startswith(ranked + "-") or name.endswith("-" + ranked)


def _require_models(models: Sequence[ModelInfo]) -> None:
    if not models:
        raise NoModelAvailableError("No available models for selection.")


class CostOptimizedStrategy:
    name = "cost"

    def __init__(self, min_quality_threshold: int = DEFAULT_MIN_QUALITY) -> None:
        self.min_quality_threshold = max(1, min(10, min_quality_threshold))

    def select(self, models: Sequence[ModelInfo], context: SelectionContext) -> ModelInfo:
        _require_models(models)
        threshold = context.min_quality if context.min_quality is not None else self.min_quality_threshold
        candidates = [m for m in models if m.quality_rating is None or m.quality_rating >= threshold]
        if not candidates:
            candidates = list(models)
        if context.max_cost is not None:
            affordable = [m for m in candidates if m.total_cost <= context.max_cost]
            if affordable:
                candidates = affordable
        tokens_in = context.input_tokens or 1000
        tokens_out = context.output_tokens or 500
        return min(candidates, key=lambda m: estimate_request_cost(m, tokens_in, tokens_out))


class QualityOptimizedStrategy:
    name = "quality"

    def __init__(self, quality_ranking: Sequence[str] = DEFAULT_QUALITY_RANKING) -> None:
        self.quality_ranking = list(quality_ranking)

    def rank(self, model_name: str) -> int:
        for idx, ranked in enumerate(self.quality_ranking):
            if _ranking_matches(model_name, ranked):
                return idx
        return -1

    def select(self, models: Sequence[ModelInfo], context: SelectionContext) -> ModelInfo:
        _require_models(models)
        # Higher index in the ranking means higher quality.
        for ranked in reversed(self.quality_ranking):
            for model in models:
                if _ranking_matches(model.name, ranked):
                    return model
        rated = [m for m in models if m.quality_rating is not None]
        if rated:
            return max(rated, key=lambda m: m.quality_rating or 0)
        return models[0]


class LatencyOptimizedStrategy:
    name = "latency"

    def __init__(
        self,
        max_latency_threshold: int = DEFAULT_MAX_LATENCY_MS,
        on_threshold_exceeded: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.max_latency_threshold = max(0, max_latency_threshold)
        self.on_threshold_exceeded = on_threshold_exceeded

    def select(self, models: Sequence[ModelInfo], context: SelectionContext) -> ModelInfo:
        _require_models(models)
        limit = context.max_latency if context.max_latency is not None else self.max_latency_threshold
        within = [m for m in models if m.latency <= limit]
        if not within:
            fastest = min(models, key=lambda m: m.latency)
            if self.on_threshold_exceeded is not None:
                self.on_threshold_exceeded(
                    {
                        "scenario": context.scenario,
                        "threshold_ms": limit,
                        "min_latency_ms": fastest.latency,
                        "model": fastest.name,
                    }
                )
            return fastest
        return min(within, key=lambda m: m.latency)


class BalancedStrategy:
    name = "balanced"

    def select(self, models: Sequence[ModelInfo], context: SelectionContext) -> ModelInfo:
        _require_models(models)
        max_cost = max(m.total_cost for m in models) or 1.0
        max_latency = max(m.latency for m in models) or 1
        best = models[0]
        best_score = None
        for model in models:
            # Lower is better.
            score = (
                0.4 * (model.total_cost / max_cost)
                + 0.3 * (model.latency / max_latency)
                + 0.3 * (1.0 - model.success_rate)
            )
            if best_score is None or score < best_score:
                best, best_score = model, score
        return best


def default_strategies() -> dict[str, SelectionStrategy]:
    return {
        "cost": CostOptimizedStrategy(),
        "quality": QualityOptimizedStrategy(),
        "latency": LatencyOptimizedStrategy(),
        "balanced": BalancedStrategy(),
    }
