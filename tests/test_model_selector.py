from __future__ import annotations

from dataclasses import replace

import pytest

from resume_router.models.registry import ModelInfo
from resume_router.models.scenarios import RESUME_OPTIMIZATION, RESUME_PARSING, ScenarioMappingStore
from resume_router.models.selectors import ModelSelector, rank_primary
from resume_router.models.strategies import NoModelAvailableError
from resume_router.runs.selection_log import AgentContext


def _model(name: str, available: bool = True, **kwargs) -> ModelInfo:
    params = {
        "provider": "test",
        "cost_per_input_token": 0.00001,
        "cost_per_output_token": 0.00002,
        "latency": 1000,
        "success_rate": 0.95,
    }
    params.update(kwargs)
    return ModelInfo(name=name, is_available=available, **params)


def _selector(primary: list[str], fallback: list[str], **kwargs) -> ModelSelector:
    store = ScenarioMappingStore()
    store.update_scenario_config(RESUME_PARSING, primary_models=primary, fallback_models=fallback)
    return ModelSelector(store, **kwargs)


def test_select_model_for_scenario_empty_candidates_raises() -> None:
    selector = _selector(["primary-model"], ["fallback-1"])
    with pytest.raises(NoModelAvailableError, match="No primary model available for scenario 'resume-parsing'."):
        selector.select_model_for_scenario(RESUME_PARSING, [])


def test_select_model_for_scenario_all_primaries_unavailable_raises() -> None:
    selector = _selector(["a", "b"], ["c"])
    candidates = [_model("a", False), _model("b", False), _model("c")]
    with pytest.raises(NoModelAvailableError):
        selector.select_model_for_scenario(RESUME_PARSING, candidates)


def test_select_model_for_scenario_single_available_primary() -> None:
    selector = _selector(["a", "b"], [])
    candidates = [_model("a", False), _model("b"), _model("unrelated")]
    assert selector.select_model_for_scenario(RESUME_PARSING, candidates).name == "b"


def test_weighted_score_prefers_faster_model_when_latency_dominates() -> None:
    selector = _selector(["slow", "fast"], [])
    selector.store.update_scenario_config(RESUME_PARSING, weights={"quality": 0.0, "cost": 0.0, "latency": 1.0})
    candidates = [_model("slow", latency=3000), _model("fast", latency=500)]
    assert selector.select_model_for_scenario(RESUME_PARSING, candidates).name == "fast"


def test_weighted_score_prefers_reliable_model_when_quality_dominates() -> None:
    selector = _selector(["fast", "reliable"], [])
    selector.store.update_scenario_config(RESUME_PARSING, weights={"quality": 1.0, "cost": 0.0, "latency": 0.0})
    candidates = [_model("fast", latency=200, success_rate=0.7), _model("reliable", latency=4000, success_rate=0.99)]
    assert selector.select_model_for_scenario(RESUME_PARSING, candidates).name == "reliable"


def test_weighted_score_prefers_cheaper_model_when_cost_dominates() -> None:
    selector = _selector(["pricey", "cheap"], [])
    selector.store.update_scenario_config(RESUME_PARSING, weights={"quality": 0.0, "cost": 1.0, "latency": 0.0})
    candidates = [
        _model("pricey", cost_per_input_token=0.0004, cost_per_output_token=0.001),
        _model("cheap", cost_per_input_token=0.00001, cost_per_output_token=0.00002),
    ]
    assert selector.select_model_for_scenario(RESUME_PARSING, candidates).name == "cheap"


def test_score_ties_break_by_primary_order() -> None:
    candidates = [_model("second"), _model("first")]
    selector = _selector(["first", "second"], [])
    assert selector.select_model_for_scenario(RESUME_PARSING, candidates).name == "first"
    ranked = rank_primary(["second", "first"], candidates, selector.store.selection_weights(RESUME_PARSING))
    assert [m.name for m in ranked] == ["second", "first"]


def test_nan_weight_uses_default_for_that_dimension() -> None:
    selector = _selector(["slow", "fast"], [])
    selector.store.update_scenario_config(
        RESUME_PARSING, weights={"quality": float("nan"), "cost": 0.0, "latency": None}
    )
    candidates = [_model("slow", latency=3000), _model("fast", latency=500)]
    # Latency falls back to its default weight, so the faster model wins.
    assert selector.select_model_for_scenario(RESUME_PARSING, candidates).name == "fast"


def test_provider_qualified_references_resolve() -> None:
    selector = _selector(["qwen:qwen-turbo"], ["ollama:deepseek-r1:1.5b"])
    candidates = [
        _model("qwen-turbo", False, provider="qwen"),
        _model("deepseek-r1:1.5b", provider="ollama"),
    ]
    selection = selector.select_with_fallback(RESUME_PARSING, candidates)
    assert selection.model.name == "deepseek-r1:1.5b"
    assert selection.path == "fallback"


def test_select_with_fallback_documented_example() -> None:
    selector = _selector(["gpt-4"], ["qwen-turbo", "deepseek-chat"])
    candidates = [
        _model("gpt-4", False, provider="openai"),
        _model("qwen-turbo", False, provider="qwen"),
        _model("deepseek-chat", provider="deepseek"),
        _model("ollama", provider="ollama"),
    ]
    selection = selector.select_with_fallback(RESUME_PARSING, candidates)

    assert selection.model.name == "deepseek-chat"
    log = selector.get_selection_log()
    assert len(log) == 1
    assert log[0].fallback_event is not None
    assert log[0].fallback_event.original_model == "gpt-4"
    assert log[0].fallback_event.fallback_model == "deepseek-chat"


def test_select_with_fallback_is_deterministic() -> None:
    selector = _selector(["a", "b", "c"], ["d"])
    candidates = [_model("a", latency=900), _model("b", latency=900), _model("c", False), _model("d")]
    picks = {selector.select_with_fallback(RESUME_PARSING, candidates, ["x"]).model.name for _ in range(10)}
    assert picks == {"a"}


def test_fallback_chain_order_respected() -> None:
    selector = _selector(["primary-model"], ["fallback-1", "fallback-2", "fallback-3"])
    candidates = [
        _model("fallback-3"),
        _model("primary-model", False),
        _model("fallback-1", False),
        _model("fallback-2", False),
        _model("other"),
    ]
    assert selector.select_with_fallback(RESUME_PARSING, candidates).model.name == "fallback-3"


def test_fallback_chain_is_ordered_not_scored() -> None:
    selector = _selector(["primary-model"], ["worse", "better"])
    candidates = [
        _model("primary-model", False),
        _model("worse", latency=4000, success_rate=0.5),
        _model("better", latency=100, success_rate=1.0),
    ]
    assert selector.select_with_fallback(RESUME_PARSING, candidates).model.name == "worse"


def test_excluded_primary_moves_to_fallback() -> None:
    selector = _selector(["primary-model"], ["fallback-1", "fallback-2"])
    candidates = [_model("primary-model"), _model("fallback-1"), _model("fallback-2")]
    selection = selector.select_with_fallback(RESUME_PARSING, candidates, ["primary-model"])
    assert selection.model.name == "fallback-1"
    assert selection.fallback_event is not None
    assert selection.fallback_event.excluded_models == ("primary-model",)
    assert "excluded" in selection.fallback_event.reason


def test_excluded_primary_uses_next_primary_without_event() -> None:
    selector = _selector(["a", "b"], ["c"])
    candidates = [_model("a", latency=100), _model("b", latency=2000), _model("c")]
    selection = selector.select_with_fallback(RESUME_PARSING, candidates, ["a"])
    assert selection.model.name == "b"
    assert selection.fallback_event is None


def _uneven_primaries() -> tuple[ModelSelector, list[ModelInfo]]:
    selector = _selector(["a", "b", "c"], [])
    selector.store.update_scenario_config(RESUME_PARSING, weights={"quality": 0.0, "cost": 1.0, "latency": 0.9})
    candidates = [
        _model("a", cost_per_input_token=0.0, cost_per_output_token=0.0, latency=10000),
        _model("b", cost_per_input_token=0.5, cost_per_output_token=0.0, latency=5000),
        _model("c", cost_per_input_token=1.0, cost_per_output_token=0.0, latency=100),
    ]
    return selector, candidates


def test_excluding_winner_returns_runner_up() -> None:
    selector, candidates = _uneven_primaries()
    ranked = rank_primary(["a", "b", "c"], candidates, selector.store.selection_weights(RESUME_PARSING))
    assert [m.name for m in ranked] == ["a", "b", "c"]

    selection = selector.select_with_fallback(RESUME_PARSING, candidates, ["a"])
    assert selection.model.name == "b"
    assert selection.path == "primary"


@pytest.mark.parametrize(
    ("excluded", "expected"),
    [([], "a"), (["a"], "b"), (["b"], "a"), (["c"], "a"), (["a", "b"], "c"), (["a", "c"], "b")],
)
def test_ranking_is_stable_under_exclusion(excluded: list[str], expected: str) -> None:
    selector, candidates = _uneven_primaries()
    assert selector.select_with_fallback(RESUME_PARSING, candidates, excluded).model.name == expected


@pytest.mark.parametrize(("unavailable", "expected"), [("a", "b"), ("b", "a"), ("c", "a")])
def test_ranking_is_stable_when_a_primary_goes_down(unavailable: str, expected: str) -> None:
    selector, candidates = _uneven_primaries()
    candidates = [replace(m, is_available=m.name != unavailable) for m in candidates]
    assert selector.select_with_fallback(RESUME_PARSING, candidates).model.name == expected
    assert selector.select_model_for_scenario(RESUME_PARSING, candidates).name == expected


def test_excluded_fallback_is_skipped() -> None:
    selector = _selector(["p"], ["f1", "f2"])
    candidates = [_model("p", False), _model("f1"), _model("f2")]
    assert selector.select_with_fallback(RESUME_PARSING, candidates, ["f1"]).model.name == "f2"


def test_terminal_local_model_is_last_resort() -> None:
    selector = _selector(["primary-model"], ["fallback-1"])
    candidates = [_model("primary-model", False), _model("fallback-1", False), _model("ollama", provider="ollama")]
    selection = selector.select_with_fallback(RESUME_PARSING, candidates)
    assert selection.model.name == "ollama"
    assert selection.path == "terminal"
    assert selection.fallback_event is not None
    assert selection.fallback_event.fallback_model == "ollama"
    assert selection.fallback_reason.endswith("using terminal local model.")


def test_terminal_model_name_is_configurable() -> None:
    selector = _selector(["p"], ["f"], terminal_model="local-llama")
    candidates = [_model("p", False), _model("f", False), _model("ollama"), _model("local-llama")]
    assert selector.select_with_fallback(RESUME_PARSING, candidates).model.name == "local-llama"


def test_terminal_model_can_be_disabled() -> None:
    selector = _selector(["p"], ["f"], terminal_model=None)
    candidates = [_model("p", False), _model("f", False), _model("ollama")]
    with pytest.raises(NoModelAvailableError):
        selector.select_with_fallback(RESUME_PARSING, candidates)


def test_excluded_terminal_model_is_not_used() -> None:
    selector = _selector(["p"], ["f"])
    candidates = [_model("p", False), _model("f", False), _model("ollama")]
    with pytest.raises(NoModelAvailableError, match="No model available for scenario 'resume-parsing'"):
        selector.select_with_fallback(RESUME_PARSING, candidates, ["ollama"])


def test_exhausted_chain_raises_and_logs_nothing() -> None:
    selector = _selector(["primary-model"], ["fallback-1"])
    candidates = [_model("primary-model", False), _model("fallback-1", False), _model("ollama", False)]
    with pytest.raises(NoModelAvailableError):
        selector.select_with_fallback(RESUME_PARSING, candidates)
    assert selector.get_selection_log() == []


def test_empty_pool_raises() -> None:
    selector = _selector(["primary-model"], ["fallback-1"])
    with pytest.raises(NoModelAvailableError):
        selector.select_with_fallback(RESUME_PARSING, [])


def test_fallback_event_carries_scenario_and_agent_context() -> None:
    store = ScenarioMappingStore()
    store.update_scenario_config(RESUME_OPTIMIZATION, primary_models=["primary-model"], fallback_models=["fallback-model"])
    selector = ModelSelector(store)
    candidates = [_model("primary-model", False), _model("fallback-model")]
    context = AgentContext(agent_type="pitch-perfect", workflow_step="star-extraction", user_id="user-123")

    selector.select_with_fallback(RESUME_OPTIMIZATION, candidates, agent_context=context)

    event = selector.get_selection_log()[-1].fallback_event
    assert event is not None
    assert event.scenario == RESUME_OPTIMIZATION
    assert event.original_model == "primary-model"
    assert event.fallback_model == "fallback-model"
    assert event.agent_type == "pitch-perfect"
    assert event.workflow_step == "star-extraction"
    assert event.user_id == "user-123"


def test_original_model_is_best_scored_primary() -> None:
    selector = _selector(["slow", "fast"], ["f"])
    candidates = [_model("slow", False, latency=4000), _model("fast", False, latency=300), _model("f")]
    event = selector.select_with_fallback(RESUME_PARSING, candidates).fallback_event
    assert event is not None
    assert event.original_model == "fast"


def test_original_model_named_even_when_absent_from_pool() -> None:
    selector = _selector(["missing"], ["f"])
    event = selector.select_with_fallback(RESUME_PARSING, [_model("f")]).fallback_event
    assert event is not None
    assert event.original_model == "missing"
    assert "not in the candidate pool" in event.reason


def test_clean_primary_selection_records_no_fallback_event() -> None:
    selector = _selector(["primary-model"], ["fallback-1"])
    candidates = [_model("primary-model"), _model("fallback-1")]
    selection = selector.select_with_fallback(RESUME_PARSING, candidates)
    assert selection.path == "primary"
    assert selection.fallback_event is None
    latest = selector.get_selection_log()[-1]
    assert latest.chosen_model == "primary-model"
    assert latest.fallback_event is None


def test_config_update_takes_effect_on_next_selection() -> None:
    selector = _selector(["a"], ["b"])
    candidates = [_model("a"), _model("b"), _model("c")]
    assert selector.select_with_fallback(RESUME_PARSING, candidates).model.name == "a"

    selector.store.update_scenario_config(RESUME_PARSING, primary_models=["c"])
    assert selector.select_with_fallback(RESUME_PARSING, candidates).model.name == "c"

    selector.store.update_scenario_config(RESUME_PARSING, primary_models=["gone"], fallback_models=["b"])
    assert selector.select_with_fallback(RESUME_PARSING, candidates).model.name == "b"


def test_clear_selection_log() -> None:
    selector = _selector(["a"], [])
    selector.select_with_fallback(RESUME_PARSING, [_model("a")])
    assert len(selector.get_selection_log()) == 1
    selector.clear_selection_log()
    assert selector.get_selection_log() == []


def test_select_model_uses_scenario_strategy() -> None:
    selector = ModelSelector()
    candidates = [
        _model("cheap", quality_rating=7, cost_per_input_token=0.0, cost_per_output_token=0.0),
        _model("pricey", quality_rating=9, cost_per_input_token=0.001, cost_per_output_token=0.002),
        _model("offline", False, cost_per_input_token=0.0, cost_per_output_token=0.0),
    ]
    # resume-parsing is cost optimized by default.
    assert selector.select_model(candidates, RESUME_PARSING).name == "cheap"
    assert selector.get_selection_log()[-1].path == "strategy"


def test_select_model_raises_without_available_candidates() -> None:
    selector = ModelSelector()
    with pytest.raises(NoModelAvailableError):
        selector.select_model([_model("a", False)], RESUME_PARSING)
