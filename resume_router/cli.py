"""resume-router CLI entrypoints."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

from .config import RouterSettings, load_overrides, models_from_payload, save_override
from .engine import RoutingEngine
from .models.registry import ModelInfo, ModelRegistry
from .models.scenarios import ScenarioMappingStore
from .models.strategies import NoModelAvailableError
from .runs.selection_log import AgentContext
from .utils import load_dotenv, read_json, serialize


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="resume-router", description="Scenario-aware LLM model routing")
    sub = parser.add_subparsers(dest="command")

    scenarios = sub.add_parser("scenarios", help="List known scenarios")
    scenarios.add_argument("--json", action="store_true", dest="as_json")

    show = sub.add_parser("show", help="Show the routing policy for a scenario")
    show.add_argument("--scenario", required=True)

    select = sub.add_parser("select", help="Select a model for a scenario")
    select.add_argument("--scenario", required=True)
    select.add_argument("--models", help="JSON file with the candidate model pool")
    select.add_argument("--exclude", action="append", default=[], help="Model to exclude (repeatable)")
    select.add_argument("--agent-type", dest="agent_type")
    select.add_argument("--workflow-step", dest="workflow_step")
    select.add_argument("--user-id", dest="user_id")
    select.add_argument("--events", help="Path to events.jsonl")

    configure = sub.add_parser("configure", help="Persist a scenario override")
    configure.add_argument("--scenario", required=True)
    configure.add_argument("--primary", nargs="+", help="Primary models in preference order")
    configure.add_argument("--fallback", nargs="+", help="Fallback models in chain order")
    configure.add_argument("--weights", help="quality,cost,latency")

    return parser


def _parse_weights(raw: str) -> dict[str, float]:
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 3:
        raise ValueError("--weights expects three comma-separated numbers: quality,cost,latency")
    quality, cost, latency = (float(part) for part in parts)
    return {"quality": quality, "cost": cost, "latency": latency}


def _load_registry(path: str | None) -> ModelRegistry:
    if not path:
        return ModelRegistry()
    rows = models_from_payload(read_json(Path(path), []))
    return ModelRegistry(ModelInfo.from_dict(row) for row in rows)


def _handle_scenarios(args: argparse.Namespace, settings: RouterSettings) -> int:
    store = ScenarioMappingStore(load_overrides(settings.overrides_path))
    if args.as_json:
        print(json.dumps(store.scenarios()))
        return 0
    for scenario in store.scenarios():
        config = store.get_scenario_config(scenario)
        print(f"{scenario:<36} {config.strategy:<9} primary={','.join(config.primary_models)}")
    return 0


def _handle_show(args: argparse.Namespace, settings: RouterSettings) -> int:
    store = ScenarioMappingStore(load_overrides(settings.overrides_path))
    print(json.dumps(store.get_scenario_config(args.scenario).as_dict(), indent=2))
    return 0


def _handle_select(args: argparse.Namespace, settings: RouterSettings) -> int:
    events_path = Path(args.events) if args.events else None
    engine = RoutingEngine(_load_registry(args.models), settings=settings, events_path=events_path)
    context = None
    if args.agent_type or args.workflow_step or args.user_id:
        context = AgentContext(agent_type=args.agent_type, workflow_step=args.workflow_step, user_id=args.user_id)
    try:
        selection = engine.route(args.scenario, excluded_models=args.exclude, agent_context=context)
    except NoModelAvailableError as exc:
        print(f"Selection failed: {exc}")
        return 1
    payload: dict[str, Any] = {
        "scenario": selection.scenario,
        "model": selection.model.name,
        "provider": selection.model.provider,
        "path": selection.path,
    }
    if selection.fallback_event is not None:
        payload["fallback_event"] = serialize(selection.fallback_event)
    print(json.dumps(payload, indent=2))
    return 0


def _handle_configure(args: argparse.Namespace, settings: RouterSettings) -> int:
    store = ScenarioMappingStore(load_overrides(settings.overrides_path))
    partial: dict[str, Any] = {}
    if args.primary:
        partial["primary_models"] = args.primary
    if args.fallback:
        partial["fallback_models"] = args.fallback
    try:
        if args.weights:
            partial["weights"] = _parse_weights(args.weights)
        config = store.update_scenario_config(args.scenario, **partial)
    except ValueError as exc:
        print(f"Configuration rejected: {exc}")
        return 1
    save_override(config, settings.overrides_path)
    print(f"Saved override for {args.scenario} to {settings.overrides_path}")
    return 0


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = RouterSettings.from_env()
    if args.command == "scenarios":
        raise SystemExit(_handle_scenarios(args, settings))
    if args.command == "show":
        raise SystemExit(_handle_show(args, settings))
    if args.command == "select":
        raise SystemExit(_handle_select(args, settings))
    if args.command == "configure":
        raise SystemExit(_handle_configure(args, settings))
    parser.print_help()
    raise SystemExit(1)


if __name__ == "__main__":
    main()
