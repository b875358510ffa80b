"""Router settings from the environment and the scenario override file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .models.scenarios import ScenarioConfig
from .models.selectors import DEFAULT_TERMINAL_MODEL
from .utils import getenv_flag, read_json, write_json


DEFAULT_OVERRIDES_PATH = Path.home() / ".resume_router" / "scenario_overrides.json"


@dataclass(frozen=True)
class RouterSettings:
    terminal_model: str | None = DEFAULT_TERMINAL_MODEL
    overrides_path: Path = DEFAULT_OVERRIDES_PATH
    events_path: Path | None = None

    @classmethod
    def from_env(cls) -> "RouterSettings":
        raw_terminal = os.getenv("RESUME_ROUTER_TERMINAL_MODEL")
        if raw_terminal is None:
            terminal: str | None = DEFAULT_TERMINAL_MODEL
        else:
            # An empty value disables the terminal local fallback.
            terminal = raw_terminal.strip() or None
        overrides = os.getenv("RESUME_ROUTER_OVERRIDES")
        overrides_path = Path(overrides).expanduser() if overrides else DEFAULT_OVERRIDES_PATH
        events_path = None
        raw_events = os.getenv("RESUME_ROUTER_EVENTS")
        if raw_events and getenv_flag("RESUME_ROUTER_EVENTS_ENABLED", True):
            events_path = Path(raw_events).expanduser()
        return cls(terminal_model=terminal, overrides_path=overrides_path, events_path=events_path)


def load_overrides(path: Path | None = None) -> dict[str, dict[str, Any]]:
    payload = read_json(path or DEFAULT_OVERRIDES_PATH, {})
    if not isinstance(payload, dict):
        return {}
    return {str(key): dict(val) for key, val in payload.items() if isinstance(val, dict)}


def save_override(config: ScenarioConfig, path: Path | None = None) -> None:
    target = path or DEFAULT_OVERRIDES_PATH
    merged = load_overrides(target)
    payload = config.as_dict()
    payload.pop("scenario", None)
    merged.setdefault(config.scenario, {}).update(payload)
    write_json(target, merged)


def models_from_payload(payload: Any) -> list[Mapping[str, Any]]:
    """Accept either a list of model rows or ``{"models": [...]}``."""
    if isinstance(payload, dict):
        payload = payload.get("models", [])
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, dict) and row.get("name")]
