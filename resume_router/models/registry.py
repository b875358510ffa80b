"""Registry of LLM backends known to the router."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping

from ..utils import parse_flag


HEALTH_STATUSES = ("healthy", "degraded", "unhealthy")


class ModelNotFoundError(KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Model '{self.name}' not found in registry."


@dataclass(frozen=True)
class ModelInfo:
    name: str
    provider: str
    context_window: int = 32768
    cost_per_input_token: float = 0.0
    cost_per_output_token: float = 0.0
    latency: int = 1000
    success_rate: float = 1.0
    is_available: bool = True
    family: str | None = None
    quality_rating: int | None = None
    health_status: str = "healthy"
    features: tuple[str, ...] = ("chat",)

    @property
    def total_cost(self) -> float:
        return self.cost_per_input_token + self.cost_per_output_token

    @property
    def qualified_name(self) -> str:
        return f"{self.provider}:{self.name}"

    def matches(self, ref: str) -> bool:
        """True when ``ref`` names this model, bare or provider-qualified."""
        return ref == self.name or ref == self.qualified_name

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "ModelInfo":
        features = payload.get("features") or ("chat",)
        if isinstance(features, str):
            features = (features,)
        return cls(
            name=str(payload["name"]),
            provider=str(payload.get("provider", "unknown")),
            context_window=int(payload.get("context_window", 32768)),
            cost_per_input_token=float(payload.get("cost_per_input_token", 0.0)),
            cost_per_output_token=float(payload.get("cost_per_output_token", 0.0)),
            latency=int(payload.get("latency", 1000)),
            success_rate=float(payload.get("success_rate", 1.0)),
            is_available=parse_flag(payload.get("is_available"), True),
            family=payload.get("family"),  # type: ignore[arg-type]
            quality_rating=payload.get("quality_rating"),  # type: ignore[arg-type]
            health_status=str(payload.get("health_status", "healthy")),
            features=tuple(str(item) for item in features),  # type: ignore[union-attr]
        )


_DEFAULT_MODELS: dict[str, ModelInfo] = {
    "qwen3-max-preview": ModelInfo(
        name="qwen3-max-preview",
        provider="qwen",
        family="qwen",
        cost_per_input_token=0.00004,
        cost_per_output_token=0.0001,
        latency=1200,
        quality_rating=9,
        features=("chat", "function-calling", "reasoning", "code"),
    ),
    "qwen-turbo": ModelInfo(
        name="qwen-turbo",
        provider="qwen",
        family="qwen",
        cost_per_input_token=0.00001,
        cost_per_output_token=0.00002,
        latency=500,
        quality_rating=7,
    ),
    "qwen3-coder-flash": ModelInfo(
        name="qwen3-coder-flash",
        provider="qwen",
        family="qwen",
        cost_per_input_token=0.00001,
        cost_per_output_token=0.00002,
        latency=500,
        quality_rating=7,
        features=("chat", "code"),
    ),
    "deepseek-v3.2": ModelInfo(
        name="deepseek-v3.2",
        provider="qwen",
        family="deepseek",
        context_window=65536,
        cost_per_input_token=0.00002,
        cost_per_output_token=0.00004,
        latency=1000,
        quality_rating=9,
    ),
    "kimi-k2-thinking": ModelInfo(
        name="kimi-k2-thinking",
        provider="qwen",
        family="kimi",
        context_window=128000,
        cost_per_input_token=0.00004,
        cost_per_output_token=0.0001,
        latency=2500,
        quality_rating=9,
        features=("chat", "reasoning"),
    ),
    "Moonshot-Kimi-K2-Instruct": ModelInfo(
        name="Moonshot-Kimi-K2-Instruct",
        provider="qwen",
        family="kimi",
        context_window=128000,
        cost_per_input_token=0.00004,
        cost_per_output_token=0.0001,
        latency=1800,
        quality_rating=8,
    ),
    "glm-4.7": ModelInfo(
        name="glm-4.7",
        provider="qwen",
        family="glm",
        cost_per_input_token=0.00002,
        cost_per_output_token=0.00004,
        latency=1000,
        quality_rating=8,
    ),
    "deepseek-ai/DeepSeek-R1-0528-Qwen3-8B": ModelInfo(
        name="deepseek-ai/DeepSeek-R1-0528-Qwen3-8B",
        provider="siliconcloud",
        family="deepseek",
        cost_per_input_token=0.00002,
        cost_per_output_token=0.00004,
        latency=800,
        quality_rating=8,
        features=("chat", "reasoning"),
    ),
    "text-embedding-v3": ModelInfo(
        name="text-embedding-v3",
        provider="qwen",
        family="qwen",
        context_window=8192,
        cost_per_input_token=0.000001,
        latency=300,
        quality_rating=7,
        features=("embedding",),
    ),
    "deepseek-r1:1.5b": ModelInfo(
        name="deepseek-r1:1.5b",
        provider="ollama",
        family="deepseek",
        latency=750,
        quality_rating=7,
    ),
    "ollama": ModelInfo(
        name="ollama",
        provider="ollama",
        family="llama",
        latency=1500,
        quality_rating=6,
    ),
}


class ModelRegistry:
    """Live pool of models; availability and metrics are refreshed in place."""

    def __init__(self, models: Mapping[str, ModelInfo] | Iterable[ModelInfo] | None = None) -> None:
        if models is None:
            self._models = dict(_DEFAULT_MODELS)
        elif isinstance(models, Mapping):
            self._models = dict(models)
        else:
            self._models = {model.name: model for model in models}

    def register(self, model: ModelInfo) -> None:
        if model.name in self._models:
            raise ValueError(f"Model '{model.name}' is already registered.")
        self._models[model.name] = model

    def get(self, name: str) -> ModelInfo | None:
        model = self._models.get(name)
        if model is not None:
            return model
        for candidate in self._models.values():
            if candidate.matches(name):
                return candidate
        return None

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def list(self) -> list[ModelInfo]:
        return list(self._models.values())

    def available(self) -> list[ModelInfo]:
        return [model for model in self._models.values() if model.is_available]

    def by_family(self, family: str) -> list[ModelInfo]:
        return [model for model in self._models.values() if model.family == family]

    def by_provider(self, provider: str) -> list[ModelInfo]:
        return [model for model in self._models.values() if model.provider == provider]

    def set_available(self, name: str, is_available: bool) -> ModelInfo:
        model = self._require(name)
        updated = replace(model, is_available=is_available)
        self._models[model.name] = updated
        return updated

    def update_metrics(
        self,
        name: str,
        *,
        latency: int | None = None,
        success_rate: float | None = None,
    ) -> ModelInfo:
        model = self._require(name)
        changes: dict[str, object] = {}
        if latency is not None:
            changes["latency"] = int(latency)
        if success_rate is not None:
            changes["success_rate"] = min(1.0, max(0.0, float(success_rate)))
        updated = replace(model, **changes)  # type: ignore[arg-type]
        self._models[model.name] = updated
        return updated

    def set_health_status(self, name: str, status: str) -> ModelInfo:
        if status not in HEALTH_STATUSES:
            raise ValueError(f"Unknown health status '{status}'.")
        model = self._require(name)
        changes: dict[str, object] = {"health_status": status}
        if status == "unhealthy":
            changes["is_available"] = False
        updated = replace(model, **changes)  # type: ignore[arg-type]
        self._models[model.name] = updated
        return updated

    def clear(self) -> None:
        self._models.clear()

    def __len__(self) -> int:
        return len(self._models)

    def _require(self, name: str) -> ModelInfo:
        model = self.get(name)
        if model is None:
            raise ModelNotFoundError(name)
        return model
