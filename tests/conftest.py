"""Test configuration and fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from prompt_tuner.cache.prompt_cache import PromptCache
from prompt_tuner.cache.store import InMemoryKVStore
from prompt_tuner.core.config import CacheConfig, GeneratorConfig, ScoringConfig, TunerConfig
from prompt_tuner.generation.deterministic_provider import DeterministicImageGenerator
from prompt_tuner.scoring.relevance import FixedRelevance
from prompt_tuner.scoring.scorer import SimilarityScorer


class FakeClock:
    """Controllable UTC clock for cache expiry tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def generator_config() -> GeneratorConfig:
    """Provide an offline generator configuration."""
    return GeneratorConfig(
        provider="deterministic",
        deterministic_base_url="https://images.test/tuner",
    )


@pytest.fixture
def cache_config(temp_state_dir: Path) -> CacheConfig:
    """Provide a file-backed cache configuration."""
    return CacheConfig(
        backend="file",
        file_path=temp_state_dir / "prompt_cache.json",
        ttl_seconds=600,
    )


@pytest.fixture
def scoring_config() -> ScoringConfig:
    """Provide a reproducible scoring configuration."""
    return ScoringConfig(
        relevance="fixed",
        fixed_relevance=0.75,
        seed=7,
    )


@pytest.fixture
def tuner_config(
    generator_config: GeneratorConfig,
    cache_config: CacheConfig,
    scoring_config: ScoringConfig,
) -> TunerConfig:
    """Provide a test tuner configuration."""
    return TunerConfig(
        log_level="DEBUG",
        debug=True,
        generator=generator_config,
        cache=cache_config,
        scoring=scoring_config,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def memory_store() -> InMemoryKVStore:
    return InMemoryKVStore()


@pytest.fixture
def memory_cache(memory_store: InMemoryKVStore, clock: FakeClock) -> PromptCache:
    """Provide an in-memory prompt cache driven by the fake clock."""
    return PromptCache(memory_store, clock=clock)


@pytest.fixture
def scorer() -> SimilarityScorer:
    """Provide a scorer with a fixed relevance signal."""
    return SimilarityScorer(relevance=FixedRelevance(0.75))


@pytest.fixture
def generator() -> DeterministicImageGenerator:
    return DeterministicImageGenerator(GeneratorConfig(provider="deterministic"))
