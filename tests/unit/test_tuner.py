"""Unit tests for the tuner composition root."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest
import yaml

from prompt_tuner.cache.store import InMemoryKVStore, JsonFileKVStore, RedisKVStore
from prompt_tuner.core.config import CacheConfig, ScoringConfig, TunerConfig
from prompt_tuner.core.tuner import Tuner, build_relevance, build_store
from prompt_tuner.errors import ConfigurationError
from prompt_tuner.generation.deterministic_provider import DeterministicImageGenerator
from prompt_tuner.generation.provider import GenerationResult, ImageGenerator
from prompt_tuner.scoring.relevance import FixedRelevance, RandomRelevance
from prompt_tuner.workflow.definition import (
    DEFAULT_DEFINITION_PATH,
    WorkflowDefinition,
)


def _easy_definition() -> WorkflowDefinition:
    data = yaml.safe_load(DEFAULT_DEFINITION_PATH.read_text(encoding="utf-8"))
    data["config"]["target_score"] = 0.1
    return WorkflowDefinition.from_mapping(data)


def test_build_store_selects_backend(tmp_path: Path) -> None:
    assert isinstance(build_store(CacheConfig(backend="memory")), InMemoryKVStore)
    assert isinstance(
        build_store(CacheConfig(backend="file", file_path=tmp_path / "c.json")), JsonFileKVStore
    )
    assert isinstance(build_store(CacheConfig(backend="redis")), RedisKVStore)


def test_build_relevance_selects_strategy() -> None:
    assert isinstance(build_relevance(ScoringConfig(relevance="fixed")), FixedRelevance)
    assert isinstance(build_relevance(ScoringConfig(relevance="random", seed=1)), RandomRelevance)


def test_tuner_wires_components(tuner_config: TunerConfig) -> None:
    with Tuner(tuner_config) as tuner:
        assert isinstance(tuner.generator, DeterministicImageGenerator)
        assert isinstance(tuner.store, JsonFileKVStore)
        assert len(tuner.definition.steps) == 7


def test_second_run_is_served_from_cache(tuner_config: TunerConfig) -> None:
    with Tuner(tuner_config, definition=_easy_definition()) as tuner:
        first = tuner.run("An owl with a hat", "wizard")
        second = tuner.run("an owl with a hat", "wizard")

    assert first.status == "passed"
    assert second.status == "cached"
    assert second.final_prompt == first.final_prompt
    assert second.image_url == first.image_url


def test_cache_survives_between_tuners(tuner_config: TunerConfig) -> None:
    with Tuner(tuner_config, definition=_easy_definition()) as tuner:
        tuner.run("cosmic owl", "cosmic")

    with Tuner(tuner_config, definition=_easy_definition()) as tuner:
        assert tuner.run("cosmic owl", "cosmic").cached is True


def test_consult_cache_disabled(tuner_config: TunerConfig) -> None:
    config = tuner_config.model_copy(update={"consult_cache": False})

    with Tuner(config, definition=_easy_definition(), store=InMemoryKVStore()) as tuner:
        tuner.run("owl", "cyber")
        again = tuner.run("owl", "cyber")

    assert again.status == "passed"
    assert again.cached is False


def test_generation_timeout_is_bounded_without_run_deadline(tuner_config: TunerConfig) -> None:
    config = tuner_config.model_copy(
        update={"run_timeout_seconds": 0.0, "http_timeout_seconds": 12.5}
    )
    generator = Mock(spec=ImageGenerator)
    generator.generate.return_value = GenerationResult(url="https://images.test/owl.png")

    with Tuner(
        config, definition=_easy_definition(), generator=generator, store=InMemoryKVStore()
    ) as tuner:
        tuner.run("owl", "wizard")

    assert generator.generate.call_args.kwargs["timeout"] == 12.5


def test_missing_openai_key_is_a_configuration_error(tuner_config: TunerConfig) -> None:
    config = tuner_config.model_copy(
        update={
            "generator": tuner_config.generator.model_copy(
                update={"provider": "openai", "openai_api_key": None}
            )
        }
    )

    with pytest.raises(ConfigurationError, match="API key"):
        Tuner(config, store=InMemoryKVStore())
