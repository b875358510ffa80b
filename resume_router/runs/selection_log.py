"""In-memory record of model selection decisions."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from ..utils import now_utc_iso, serialize
from .events import EventWriter


PATH_PRIMARY = "primary"
PATH_FALLBACK = "fallback"
PATH_TERMINAL = "terminal"
PATH_STRATEGY = "strategy"


@dataclass(frozen=True)
class AgentContext:
    agent_type: str | None = None
    workflow_step: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class FallbackEvent:
    original_model: str
    fallback_model: str
    scenario: str
    excluded_models: tuple[str, ...] = ()
    reason: str = ""
    agent_type: str | None = None
    workflow_step: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class SelectionLogEntry:
    scenario: str
    chosen_model: str
    provider: str
    path: str
    candidate_count: int
    cost: float
    latency: int
    success_rate: float
    fallback_event: FallbackEvent | None = None
    timestamp: str = field(default_factory=now_utc_iso)

    @property
    def is_fallback(self) -> bool:
        return self.fallback_event is not None


class SelectionLog:
    """Append-only selection history, cleared only on request.

    Growth is unbounded; callers that keep a selector alive for a long time
    are expected to drain it with :meth:`clear`.
    """

    def __init__(self, events: EventWriter | None = None) -> None:
        self._entries: list[SelectionLogEntry] = []
        self._lock = threading.Lock()
        self.events = events

    def append(self, entry: SelectionLogEntry) -> SelectionLogEntry:
        with self._lock:
            self._entries.append(entry)
        if self.events is not None:
            event_type = "model_fallback" if entry.is_fallback else "model_selected"
            self.events.emit(event_type, **serialize(entry))
        return entry

    def entries(self, limit: int | None = None) -> list[SelectionLogEntry]:
        with self._lock:
            if limit is None:
                return list(self._entries)
            if limit <= 0:
                return []
            return self._entries[-limit:]

    def latest(self) -> SelectionLogEntry | None:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def fallback_events(self) -> list[FallbackEvent]:
        with self._lock:
            return [entry.fallback_event for entry in self._entries if entry.fallback_event is not None]

    def clear(self) -> None:
        with self._lock:
            self._entries = []

    def statistics(self) -> dict[str, Any]:
        entries = self.entries()
        total = len(entries)
        fallbacks = sum(1 for entry in entries if entry.is_fallback)
        by_scenario: dict[str, dict[str, Any]] = {}
        by_model: dict[str, dict[str, Any]] = {}
        for entry in entries:
            scenario_stats = by_scenario.setdefault(entry.scenario, {"count": 0, "fallbacks": 0, "models": []})
            scenario_stats["count"] += 1
            if entry.is_fallback:
                scenario_stats["fallbacks"] += 1
            if entry.chosen_model not in scenario_stats["models"]:
                scenario_stats["models"].append(entry.chosen_model)
            model_stats = by_model.setdefault(entry.chosen_model, {"count": 0, "scenarios": []})
            model_stats["count"] += 1
            if entry.scenario not in model_stats["scenarios"]:
                model_stats["scenarios"].append(entry.scenario)
        for scenario_stats in by_scenario.values():
            scenario_stats["fallback_rate"] = scenario_stats["fallbacks"] / scenario_stats["count"]
        return {
            "total_selections": total,
            "fallback_count": fallbacks,
            "fallback_rate": (fallbacks / total) if total else 0.0,
            "paths": dict(Counter(entry.path for entry in entries)),
            "scenarios": by_scenario,
            "models": by_model,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
