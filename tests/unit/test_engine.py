"""Unit tests for the workflow engine."""

from __future__ import annotations

import random
from typing import Any
from unittest.mock import Mock

import pytest
import yaml

from prompt_tuner.cache.prompt_cache import PromptCache
from prompt_tuner.errors import HandlerNotFoundError
from prompt_tuner.generation.provider import GenerationResult, ImageGenerator
from prompt_tuner.scoring.scorer import SimilarityScorer
from prompt_tuner.workflow.context import Deadline
from prompt_tuner.workflow.definition import (
    DEFAULT_DEFINITION_PATH,
    WorkflowDefinition,
)
from prompt_tuner.workflow.engine import (
    IllegalTransitionError,
    ResultRecord,
    RunState,
    WorkflowEngine,
    transition,
)
from prompt_tuner.workflow.handlers import CompleteWorkflow, HandlerRegistry, build_handlers
from prompt_tuner.workflow.http import HttpTransport


def _bundled(**config: Any) -> dict[str, Any]:
    data = yaml.safe_load(DEFAULT_DEFINITION_PATH.read_text(encoding="utf-8"))
    data["config"].update(config)
    return data


def _definition(**config: Any) -> WorkflowDefinition:
    return WorkflowDefinition.from_mapping(_bundled(**config))


def _engine(
    definition: WorkflowDefinition,
    scorer: SimilarityScorer,
    generator: ImageGenerator,
    cache: PromptCache | None = None,
) -> WorkflowEngine:
    handlers = build_handlers(
        scorer=scorer, generator=generator, cache=cache, rng=random.Random(3)
    )
    return WorkflowEngine(definition, handlers, cache=cache)


def test_passes_on_first_iteration(
    scorer: SimilarityScorer, generator: ImageGenerator, memory_cache: PromptCache
) -> None:
    engine = _engine(_definition(target_score=0.1), scorer, generator, memory_cache)

    result = engine.execute("an owl with a hat", "wizard")

    assert result.success is True
    assert result.status == "passed"
    assert result.iterations == 1
    assert result.cached is False
    assert result.image_url is not None
    assert "mystical wizard moonbird" in (result.final_prompt or "")
    assert result.final_prompt is not None and "more detailed" not in result.final_prompt


def test_accepted_result_is_cached(
    scorer: SimilarityScorer, generator: ImageGenerator, memory_cache: PromptCache
) -> None:
    engine = _engine(_definition(target_score=0.1), scorer, generator, memory_cache)

    result = engine.execute("An Owl with a Hat", "wizard")

    entry = memory_cache.get("an owl with a hat")
    assert entry is not None
    assert entry.style == "wizard"
    assert entry.final_prompt == result.final_prompt
    assert entry.image_url == result.image_url
    assert (entry.expires_at - entry.created_at).total_seconds() == 3600


def test_exhausts_after_max_iterations(
    scorer: SimilarityScorer, memory_cache: PromptCache
) -> None:
    generator = Mock(spec=ImageGenerator)
    generator.generate.return_value = GenerationResult(url="https://images.test/owl.png")
    engine = _engine(
        _definition(target_score=0.95, max_iterations=3), scorer, generator, memory_cache
    )

    result = engine.execute("owl with hat", "wizard")

    assert result.success is False
    assert result.status == "exhausted"
    assert result.iterations == 3
    assert result.score is not None and result.score < 0.95
    assert generator.generate.call_count == 3
    assert memory_cache.get("owl with hat") is None

    prompts = [call.args[0] for call in generator.generate.call_args_list]
    assert prompts[1].startswith(prompts[0] + ", ")
    assert prompts[2].startswith(prompts[1] + ", ")
    assert result.final_prompt == prompts[2]


def test_loop_cap_bounds_iterations_even_if_guard_stays_true(
    scorer: SimilarityScorer, generator: ImageGenerator
) -> None:
    data = _bundled(target_score=0.99, max_iterations=2)
    for step in data["steps"]:
        if step["name"] == "mutate":
            step["condition"] = "true"
    engine = _engine(WorkflowDefinition.from_mapping(data), scorer, generator)

    result = engine.execute("owl", "cyber")

    assert result.status == "exhausted"
    assert result.iterations == 2


def test_single_iteration_never_loops(
    scorer: SimilarityScorer, generator: ImageGenerator
) -> None:
    engine = _engine(_definition(target_score=0.99, max_iterations=1), scorer, generator)

    result = engine.execute("owl", "cosmic")

    assert result.iterations == 1
    assert result.status == "exhausted"


def test_cache_hit_skips_generation(
    scorer: SimilarityScorer, memory_cache: PromptCache
) -> None:
    memory_cache.set(
        "owl with hat",
        {
            "prompt": "owl with hat",
            "final_prompt": "owl with hat, mystical wizard moonbird",
            "style": "wizard",
            "score": 0.91,
            "features": {},
            "image_url": "https://images.test/cached.png",
        },
    )
    generator = Mock(spec=ImageGenerator)
    engine = _engine(_definition(), scorer, generator, memory_cache)

    result = engine.execute("Owl with HAT", "wizard")

    assert result.status == "cached"
    assert result.cached is True
    assert result.success is True
    assert result.score == 0.91
    assert result.final_prompt == "owl with hat, mystical wizard moonbird"
    generator.generate.assert_not_called()


def test_cache_hit_with_other_style_is_ignored(
    scorer: SimilarityScorer, generator: ImageGenerator, memory_cache: PromptCache
) -> None:
    memory_cache.set(
        "owl",
        {
            "prompt": "owl",
            "style": "cyber",
            "score": 0.9,
            "image_url": "https://images.test/c.png",
        },
    )
    engine = _engine(_definition(target_score=0.1), scorer, generator, memory_cache)

    assert engine.execute("owl", "wizard").status == "passed"


def test_consult_cache_false_runs_workflow(
    scorer: SimilarityScorer, generator: ImageGenerator, memory_cache: PromptCache
) -> None:
    memory_cache.set(
        "owl",
        {
            "prompt": "owl",
            "style": "wizard",
            "score": 0.9,
            "image_url": "https://images.test/c.png",
        },
    )
    engine = _engine(_definition(target_score=0.1), scorer, generator, memory_cache)

    result = engine.execute("owl", "wizard", consult_cache=False)

    assert result.status == "passed"
    assert result.cached is False


def test_generator_error_yields_failed_result(scorer: SimilarityScorer) -> None:
    generator = Mock(spec=ImageGenerator)
    generator.generate.return_value = GenerationResult(error="rate limited")
    engine = _engine(_definition(), scorer, generator)

    result = engine.execute("owl", "wizard")

    assert result.success is False
    assert result.status == "failed"
    assert result.error is not None and "rate limited" in result.error
    assert result.image_url is None
    assert result.final_prompt is None
    assert result.score is None


def test_cancelled_deadline_yields_failed_result(
    scorer: SimilarityScorer, generator: ImageGenerator
) -> None:
    deadline = Deadline(60)
    deadline.cancel()
    engine = _engine(_definition(), scorer, generator)

    result = engine.execute("owl", "wizard", deadline=deadline)

    assert result.status == "failed"
    assert result.error is not None and "cancelled" in result.error


def test_missing_handler_fails_at_construction(
    scorer: SimilarityScorer, generator: ImageGenerator
) -> None:
    handlers = build_handlers(scorer=scorer, generator=generator)
    partial = HandlerRegistry(
        {name: handlers.get(name) for name in handlers if name != "mutate_prompt"}
    )

    with pytest.raises(HandlerNotFoundError, match="mutate_prompt"):
        WorkflowEngine(_definition(), partial)


def test_broken_guard_skips_step(
    scorer: SimilarityScorer, generator: ImageGenerator
) -> None:
    data = _bundled(target_score=0.1)
    for step in data["steps"]:
        if step["name"] == "cache":
            step["condition"] = "${NOT_SET} > 1"
    cache = Mock(spec=PromptCache)
    cache.get.return_value = None
    engine = _engine(WorkflowDefinition.from_mapping(data), scorer, generator, cache)

    result = engine.execute("owl", "wizard")

    assert result.status == "passed"
    cache.set.assert_not_called()


def test_missing_result_variable_yields_failed_result(
    scorer: SimilarityScorer, generator: ImageGenerator
) -> None:
    engine = _engine(_definition(result_variable="NOTHING_HERE"), scorer, generator)

    result = engine.execute("owl", "wizard")

    assert result.status == "failed"
    assert result.error is not None and "NOTHING_HERE" in result.error


def test_api_action_posts_inputs_as_json() -> None:
    definition = WorkflowDefinition.from_mapping(
        {
            "config": {"max_iterations": 1, "target_score": 0.5, "threshold": 0.7},
            "actions": {
                "enrich": {"type": "api", "endpoint": "https://api.test/enrich"},
                "complete": {"type": "function", "handler": "complete_workflow"},
            },
            "steps": [
                {
                    "name": "enrich",
                    "action": "enrich",
                    "inputs": {"prompt": "${USER_PROMPT}", "threshold": "${config.threshold}"},
                    "outputs": {"image_url": "${IMAGE_URL}", "score": "SCORE"},
                },
                {
                    "name": "complete",
                    "action": "complete",
                    "inputs": {
                        "image_url": "${IMAGE_URL}",
                        "final_prompt": "${USER_PROMPT}",
                        "score": "${SCORE}",
                        "iterations": 1,
                        "passed": True,
                    },
                    "outputs": {"result": "WORKFLOW_RESULT"},
                },
            ],
        }
    )
    session = Mock()
    session.headers = {}
    response = session.request.return_value
    response.ok = True
    response.json.return_value = {"image_url": "https://images.test/api.png", "score": 0.88}
    engine = WorkflowEngine(
        definition,
        HandlerRegistry({"complete_workflow": CompleteWorkflow()}),
        transport=HttpTransport(session),
    )

    result = engine.execute("owl", "wizard")

    session.request.assert_called_once_with(
        "POST",
        "https://api.test/enrich",
        json={"prompt": "owl", "threshold": 0.7},
        timeout=30.0,
    )
    assert result.status == "passed"
    assert result.image_url == "https://images.test/api.png"
    assert result.score == 0.88


def test_api_failure_yields_failed_result() -> None:
    definition = WorkflowDefinition.from_mapping(
        {
            "config": {"max_iterations": 1, "target_score": 0.5},
            "actions": {"remote": {"type": "api", "endpoint": "https://api.test/x"}},
            "steps": [{"name": "remote", "action": "remote"}],
        }
    )
    session = Mock()
    session.headers = {}
    response = session.request.return_value
    response.ok = False
    response.status_code = 503
    response.reason = "Service Unavailable"
    engine = WorkflowEngine(definition, HandlerRegistry(), transport=HttpTransport(session))

    result = engine.execute("owl", "wizard")

    assert result.status == "failed"
    assert result.error is not None and "503" in result.error


def test_result_record_failed_factory() -> None:
    record = ResultRecord.failed("boom", iterations=2)

    assert record.success is False
    assert record.status == "failed"
    assert record.error == "boom"
    assert record.iterations == 2


def test_run_state_transitions() -> None:
    assert transition(RunState.IDLE, RunState.RUNNING) is RunState.RUNNING
    with pytest.raises(IllegalTransitionError):
        transition(RunState.IDLE, RunState.PASSED)
    with pytest.raises(IllegalTransitionError):
        transition(RunState.CACHED, RunState.RUNNING)


def _without_mutate_guard(**config: Any) -> WorkflowDefinition:
    data = _bundled(**config)
    for step in data["steps"]:
        if step["name"] == "mutate":
            del step["condition"]
    return WorkflowDefinition.from_mapping(data)


def test_passing_evaluation_leaves_loop_without_guard(scorer: SimilarityScorer) -> None:
    generator = Mock(spec=ImageGenerator)
    generator.generate.return_value = GenerationResult(url="https://images.test/owl.png")
    engine = _engine(
        _without_mutate_guard(target_score=0.1, max_iterations=3), scorer, generator
    )

    result = engine.execute("owl with hat", "wizard")

    assert result.status == "passed"
    assert result.iterations == 1
    assert generator.generate.call_count == 1
    assert result.final_prompt == generator.generate.call_args.args[0]


def test_last_evaluation_skips_mutation_without_guard(scorer: SimilarityScorer) -> None:
    generator = Mock(spec=ImageGenerator)
    generator.generate.return_value = GenerationResult(url="https://images.test/owl.png")
    engine = _engine(
        _without_mutate_guard(target_score=0.99, max_iterations=3), scorer, generator
    )

    result = engine.execute("owl with hat", "wizard")

    assert result.status == "exhausted"
    assert result.iterations == 3
    assert generator.generate.call_count == 3
    assert result.final_prompt == generator.generate.call_args.args[0]


def test_generator_exception_yields_failed_result(scorer: SimilarityScorer) -> None:
    generator = Mock(spec=ImageGenerator)
    generator.generate.side_effect = ConnectionError("backend down")
    engine = _engine(_definition(), scorer, generator)

    result = engine.execute("owl", "wizard")

    assert result.success is False
    assert result.status == "failed"
    assert result.error is not None and "backend down" in result.error


def test_unexpected_handler_exception_yields_failed_result(
    scorer: SimilarityScorer, generator: ImageGenerator
) -> None:
    handlers = build_handlers(scorer=scorer, generator=generator)
    registry = HandlerRegistry({name: handlers.get(name) for name in handlers})
    registry.register("calculate_score", lambda inputs, context: {"score": "high"})
    engine = WorkflowEngine(_definition(), registry)

    result = engine.execute("owl", "wizard")

    assert result.status == "failed"
    assert result.error is not None and "check_threshold" in result.error
