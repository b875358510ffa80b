"""Scenario to model routing policy."""

from __future__ import annotations

import threading
from copy import deepcopy
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from ..utils import coerce_float
from .registry import ModelInfo


RESUME_PARSING = "resume-parsing"
JOB_DESCRIPTION_PARSING = "job-description-parsing"
RESUME_OPTIMIZATION = "resume-optimization"
RESUME_ANALYSIS = "resume-analysis"
RESUME_CONTENT_OPTIMIZATION = "resume-content-optimization"
INTERVIEW_QUESTION_GENERATION = "interview-question-generation"
MATCH_SCORE_CALCULATION = "match-score-calculation"
AGENT_STAR_EXTRACTION = "agent-star-extraction"
AGENT_KEYWORD_MATCHING = "agent-keyword-matching"
AGENT_INTRODUCTION_GENERATION = "agent-introduction-generation"
AGENT_CONTEXT_ANALYSIS = "agent-context-analysis"
AGENT_CUSTOM_QUESTION_GENERATION = "agent-custom-question-generation"
AGENT_QUESTION_PRIORITIZATION = "agent-question-prioritization"
AGENT_INTERVIEW_INITIALIZATION = "agent-interview-initialization"
AGENT_RESPONSE_PROCESSING = "agent-response-processing"
AGENT_RESPONSE_ANALYSIS = "agent-response-analysis"
AGENT_INTERVIEW_CONCLUSION = "agent-interview-conclusion"
AGENT_CONTEXT_COMPRESSION = "agent-context-compression"
AGENT_RAG_RETRIEVAL = "agent-rag-retrieval"
AGENT_EMBEDDING_GENERATION = "agent-embedding-generation"
GENERAL = "general"

STRATEGY_QUALITY = "quality"
STRATEGY_COST = "cost"
STRATEGY_LATENCY = "latency"
STRATEGY_BALANCED = "balanced"
STRATEGIES = (STRATEGY_QUALITY, STRATEGY_COST, STRATEGY_LATENCY, STRATEGY_BALANCED)

_UPDATABLE_FIELDS = (
    "primary_models",
    "fallback_models",
    "weights",
    "strategy",
    "min_quality_score",
    "max_latency_ms",
)


class UnknownScenarioError(ValueError):
    def __init__(self, scenario: str) -> None:
        super().__init__(f"Scenario configuration not found for: {scenario}")
        self.scenario = scenario


@dataclass(frozen=True)
class SelectionWeights:
    """Relative weights for the quality, cost and latency terms of a score.

    Weights need not sum to one and may be negative. A dimension set to NaN
    or None falls back to the default weight for that dimension when the
    weights are resolved for scoring.
    """

    quality: float | None = 0.4
    cost: float | None = 0.3
    latency: float | None = 0.3

    def resolved(self) -> "SelectionWeights":
        quality = coerce_float(self.quality)
        cost = coerce_float(self.cost)
        latency = coerce_float(self.latency)
        return SelectionWeights(
            quality=DEFAULT_WEIGHTS.quality if quality is None else quality,
            cost=DEFAULT_WEIGHTS.cost if cost is None else cost,
            latency=DEFAULT_WEIGHTS.latency if latency is None else latency,
        )

    @classmethod
    def coerce(cls, value: "SelectionWeights | Mapping[str, Any]") -> "SelectionWeights":
        if isinstance(value, SelectionWeights):
            return value
        if not isinstance(value, Mapping):
            raise TypeError(f"Weights must be a mapping, got {type(value).__name__}.")
        unknown = set(value) - {"quality", "cost", "latency"}
        if unknown:
            raise ValueError(f"Unknown weight dimensions: {', '.join(sorted(unknown))}")
        return cls(
            quality=value.get("quality"),
            cost=value.get("cost"),
            latency=value.get("latency"),
        )

    def merged(self, value: "SelectionWeights | Mapping[str, Any]") -> "SelectionWeights":
        """Apply ``value`` on top of these weights.

        A full :class:`SelectionWeights` replaces them; a mapping only changes
        the dimensions it names.
        """
        if isinstance(value, SelectionWeights):
            return value
        self.coerce(value)
        return replace(self, **{key: value[key] for key in ("quality", "cost", "latency") if key in value})

    def as_dict(self) -> dict[str, float | None]:
        return {"quality": self.quality, "cost": self.cost, "latency": self.latency}


DEFAULT_WEIGHTS = SelectionWeights(quality=0.4, cost=0.3, latency=0.3)
_COST_WEIGHTS = SelectionWeights(quality=0.3, cost=0.5, latency=0.2)
_QUALITY_WEIGHTS = SelectionWeights(quality=0.6, cost=0.2, latency=0.2)
_LATENCY_WEIGHTS = SelectionWeights(quality=0.2, cost=0.2, latency=0.6)


@dataclass
class ScenarioConfig:
    scenario: str
    primary_models: list[str] = field(default_factory=list)
    fallback_models: list[str] = field(default_factory=list)
    weights: SelectionWeights = DEFAULT_WEIGHTS
    strategy: str = STRATEGY_BALANCED
    min_quality_score: int | None = None
    max_latency_ms: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "primary_models": list(self.primary_models),
            "fallback_models": list(self.fallback_models),
            "weights": self.weights.as_dict(),
            "strategy": self.strategy,
            "min_quality_score": self.min_quality_score,
            "max_latency_ms": self.max_latency_ms,
        }


_PREMIUM = ["qwen:qwen3-max-preview", "qwen:kimi-k2-thinking", "siliconcloud:deepseek-ai/DeepSeek-R1-0528-Qwen3-8B"]


def _cost(scenario: str, primary: list[str], fallback: list[str]) -> ScenarioConfig:
    return ScenarioConfig(scenario, primary, fallback, _COST_WEIGHTS, STRATEGY_COST, min_quality_score=6)


def _quality(scenario: str, fallback: list[str]) -> ScenarioConfig:
    return ScenarioConfig(scenario, list(_PREMIUM), fallback, _QUALITY_WEIGHTS, STRATEGY_QUALITY, min_quality_score=8)


def _balanced(scenario: str, primary: list[str], fallback: list[str]) -> ScenarioConfig:
    return ScenarioConfig(scenario, primary, fallback, DEFAULT_WEIGHTS, STRATEGY_BALANCED)


_DEFAULT_SCENARIO_CONFIGS: dict[str, ScenarioConfig] = {
    config.scenario: config
    for config in (
        _cost(
            RESUME_PARSING,
            ["ollama:deepseek-r1:1.5b", "qwen:qwen-turbo", "qwen:qwen3-coder-flash"],
            ["qwen:glm-4.7", "qwen:qwen3-max-preview"],
        ),
        _quality(RESUME_OPTIMIZATION, ["qwen:deepseek-v3.2", "qwen:glm-4.7"]),
        _quality(RESUME_ANALYSIS, ["qwen:deepseek-v3.2", "qwen:glm-4.7"]),
        _quality(RESUME_CONTENT_OPTIMIZATION, ["qwen:deepseek-v3.2", "qwen:glm-4.7"]),
        _balanced(
            INTERVIEW_QUESTION_GENERATION,
            ["qwen:qwen3-max-preview", "qwen:deepseek-v3.2", "qwen:Moonshot-Kimi-K2-Instruct"],
            ["qwen:glm-4.7", "qwen:qwen-turbo"],
        ),
        _cost(
            JOB_DESCRIPTION_PARSING,
            ["ollama:deepseek-r1:1.5b", "qwen:qwen-turbo"],
            ["qwen:glm-4.7", "qwen:qwen3-coder-flash"],
        ),
        _balanced(
            MATCH_SCORE_CALCULATION,
            ["qwen:qwen3-max-preview", "qwen:deepseek-v3.2", "qwen:glm-4.7"],
            ["qwen:qwen-turbo", "qwen:Moonshot-Kimi-K2-Instruct"],
        ),
        _cost(
            AGENT_STAR_EXTRACTION,
            ["qwen:qwen-turbo", "qwen:qwen3-coder-flash"],
            ["qwen:glm-4.7", "ollama:deepseek-r1:1.5b"],
        ),
        _cost(
            AGENT_KEYWORD_MATCHING,
            ["qwen:qwen-turbo", "qwen:qwen3-coder-flash"],
            ["qwen:glm-4.7", "ollama:deepseek-r1:1.5b"],
        ),
        _quality(AGENT_INTRODUCTION_GENERATION, ["qwen:deepseek-v3.2", "qwen:Moonshot-Kimi-K2-Instruct"]),
        _cost(
            AGENT_CONTEXT_ANALYSIS,
            ["qwen:qwen-turbo", "ollama:deepseek-r1:1.5b"],
            ["qwen:glm-4.7", "qwen:qwen3-coder-flash"],
        ),
        _quality(AGENT_CUSTOM_QUESTION_GENERATION, ["qwen:deepseek-v3.2", "qwen:glm-4.7"]),
        _balanced(
            AGENT_QUESTION_PRIORITIZATION,
            ["qwen:glm-4.7", "qwen:deepseek-v3.2"],
            ["qwen:qwen-turbo", "qwen:Moonshot-Kimi-K2-Instruct"],
        ),
        _quality(AGENT_INTERVIEW_INITIALIZATION, ["qwen:deepseek-v3.2", "qwen:glm-4.7"]),
        ScenarioConfig(
            AGENT_RESPONSE_PROCESSING,
            ["qwen:qwen-turbo", "qwen:glm-4.7"],
            ["ollama:deepseek-r1:1.5b", "qwen:qwen3-coder-flash"],
            _LATENCY_WEIGHTS,
            STRATEGY_LATENCY,
            max_latency_ms=2000,
        ),
        _balanced(
            AGENT_RESPONSE_ANALYSIS,
            ["qwen:deepseek-v3.2", "qwen:glm-4.7"],
            ["qwen:qwen-turbo", "qwen:Moonshot-Kimi-K2-Instruct"],
        ),
        _quality(AGENT_INTERVIEW_CONCLUSION, ["qwen:deepseek-v3.2", "qwen:glm-4.7"]),
        _cost(
            AGENT_CONTEXT_COMPRESSION,
            ["qwen:qwen-turbo", "ollama:deepseek-r1:1.5b"],
            ["qwen:glm-4.7", "qwen:qwen3-coder-flash"],
        ),
        _cost(
            AGENT_RAG_RETRIEVAL,
            ["qwen:qwen-turbo", "ollama:deepseek-r1:1.5b"],
            ["qwen:glm-4.7", "qwen:qwen3-coder-flash"],
        ),
        _cost(
            AGENT_EMBEDDING_GENERATION,
            ["qwen:text-embedding-v3", "ollama:deepseek-r1:1.5b"],
            ["qwen:text-embedding-v3"],
        ),
        _balanced(
            GENERAL,
            ["qwen:qwen3-max-preview", "qwen:deepseek-v3.2"],
            ["qwen:glm-4.7", "qwen:qwen-turbo"],
        ),
    )
}

SCENARIOS = tuple(_DEFAULT_SCENARIO_CONFIGS)


def is_known_scenario(scenario: str) -> bool:
    return scenario in _DEFAULT_SCENARIO_CONFIGS


class ScenarioMappingStore:
    """Per-scenario routing policy, mutable at runtime.

    Reads hand out deep copies, so callers can never mutate the stored policy
    except through :meth:`update_scenario_config`. Updates are last-write-wins
    and visible to the very next read.
    """

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._lock = threading.Lock()
        self._configs: dict[str, ScenarioConfig] = deepcopy(_DEFAULT_SCENARIO_CONFIGS)
        if overrides:
            self.apply_overrides(overrides)

    def get_scenario_config(self, scenario: str) -> ScenarioConfig:
        with self._lock:
            config = self._configs.get(scenario)
            if config is None:
                # Unknown keys route with the general policy.
                config = replace(self._configs[GENERAL], scenario=scenario)
            return deepcopy(config)

    def update_scenario_config(self, scenario: str, **partial: Any) -> ScenarioConfig:
        unknown = set(partial) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown scenario config fields: {', '.join(sorted(unknown))}")
        changes: dict[str, Any] = {}
        for key, value in partial.items():
            if value is None and key in ("primary_models", "fallback_models", "weights", "strategy"):
                continue
            if key in ("primary_models", "fallback_models"):
                if isinstance(value, str):
                    raise TypeError(f"{key} must be a list of model names, not a string.")
                changes[key] = [str(name) for name in value]
            elif key == "weights":
                SelectionWeights.coerce(value)
                changes[key] = value
            elif key == "strategy":
                if value not in STRATEGIES:
                    raise ValueError(f"Unknown selection strategy '{value}'.")
                changes[key] = value
            else:
                changes[key] = None if value is None else int(value)
        with self._lock:
            existing = self._configs.get(scenario)
            if existing is None:
                raise UnknownScenarioError(scenario)
            if "weights" in changes:
                changes["weights"] = existing.weights.merged(changes["weights"])
            updated = replace(existing, **changes)
            self._configs[scenario] = updated
            return deepcopy(updated)

    def apply_overrides(self, overrides: Mapping[str, Mapping[str, Any]]) -> list[str]:
        """Merge per-scenario override payloads; unknown scenarios are skipped."""
        applied: list[str] = []
        for scenario, payload in overrides.items():
            if not is_known_scenario(scenario) or not isinstance(payload, Mapping):
                continue
            fields = {key: payload[key] for key in _UPDATABLE_FIELDS if key in payload}
            self.update_scenario_config(scenario, **fields)
            applied.append(scenario)
        return applied

    def scenarios(self) -> list[str]:
        with self._lock:
            return list(self._configs)

    def primary_models(self, scenario: str) -> list[str]:
        return self.get_scenario_config(scenario).primary_models

    def fallback_models(self, scenario: str) -> list[str]:
        return self.get_scenario_config(scenario).fallback_models

    def selection_weights(self, scenario: str) -> SelectionWeights:
        return self.get_scenario_config(scenario).weights

    def recommended_models(self, scenario: str, pool: Iterable[ModelInfo]) -> list[str]:
        config = self.get_scenario_config(scenario)
        refs = config.primary_models + config.fallback_models
        return [model.name for model in pool if any(model.matches(ref) for ref in refs)]

    def reset_to_defaults(self) -> None:
        with self._lock:
            self._configs = deepcopy(_DEFAULT_SCENARIO_CONFIGS)
