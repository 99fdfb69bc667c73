"""Prompt tuner composition root."""

import logging
import random

from prompt_tuner.cache.prompt_cache import PromptCache
from prompt_tuner.cache.store import InMemoryKVStore, JsonFileKVStore, KVStore, RedisKVStore
from prompt_tuner.core.config import CacheConfig, ScoringConfig, TunerConfig
from prompt_tuner.generation.factory import GeneratorFactory
from prompt_tuner.generation.provider import ImageGenerator
from prompt_tuner.scoring.relevance import FixedRelevance, RandomRelevance, RelevanceStrategy
from prompt_tuner.scoring.scorer import SimilarityScorer
from prompt_tuner.workflow.context import Deadline
from prompt_tuner.workflow.definition import WorkflowDefinition, load_workflow
from prompt_tuner.workflow.engine import ResultRecord, WorkflowEngine
from prompt_tuner.workflow.handlers import build_handlers
from prompt_tuner.workflow.http import HttpTransport

logger = logging.getLogger(__name__)


def build_store(config: CacheConfig) -> KVStore:
    """Create the key-value store selected by `config.backend`."""
    if config.backend == "memory":
        return InMemoryKVStore()
    if config.backend == "redis":
        return RedisKVStore(url=config.redis_url)
    return JsonFileKVStore(path=config.file_path)


def build_relevance(config: ScoringConfig) -> RelevanceStrategy:
    if config.relevance == "fixed":
        return FixedRelevance(config.fixed_relevance)
    return RandomRelevance(random.Random(config.seed))


class Tuner:
    """Wires the workflow engine and its collaborators from configuration.

    The tuner owns the store, the HTTP transport and the image generator it
    creates; call `close()` (or use it as a context manager) when done.
    """

    def __init__(
        self,
        config: TunerConfig | None = None,
        *,
        definition: WorkflowDefinition | None = None,
        generator: ImageGenerator | None = None,
        store: KVStore | None = None,
    ) -> None:
        """Initialize the tuner.

        Args:
            config: Configuration object. If None, loads from environment.
            definition: Workflow to run. If None, loads `config.workflow_path`
                or the bundled definition.
            generator: Image generator override, mainly for tests.
            store: Cache store override, mainly for tests.
        """
        self.config = config or TunerConfig()

        logger.info("Initializing prompt tuner")

        self.definition = definition or load_workflow(self.config.workflow_path)
        self.store: KVStore = store or build_store(self.config.cache)
        self.cache = PromptCache(
            self.store,
            namespace=self.config.cache.namespace,
            default_ttl=self.config.cache.ttl_seconds,
        )
        self.scorer = SimilarityScorer(relevance=build_relevance(self.config.scoring))
        self.generator: ImageGenerator = generator or GeneratorFactory.create(
            self.config.generator
        )
        self.transport = HttpTransport(default_timeout=self.config.http_timeout_seconds)

        handlers = build_handlers(
            scorer=self.scorer,
            generator=self.generator,
            cache=self.cache,
            rng=random.Random(self.config.scoring.seed),
            generation_timeout=self.config.http_timeout_seconds,
        )
        self.engine = WorkflowEngine(
            self.definition,
            handlers,
            transport=self.transport,
            cache=self.cache,
            http_timeout=self.config.http_timeout_seconds,
        )

        logger.info(
            "Prompt tuner initialized",
            extra={
                "generator": self.config.generator.provider,
                "cache_backend": self.config.cache.backend,
                "relevance": self.config.scoring.relevance,
            },
        )

    def run(self, prompt: str, style: str, *, deadline: Deadline | None = None) -> ResultRecord:
        """Run the workflow once for `prompt` in `style`.

        Args:
            prompt: The user's prompt text.
            style: Target style name (e.g. "wizard", "cosmic", "cyber").
            deadline: Optional externally controlled deadline. If None, one is
                created from `config.run_timeout_seconds`.

        Returns:
            The run's result record; failures are reported in the record.
        """
        if deadline is None:
            deadline = Deadline(self.config.run_timeout_seconds or None)
        return self.engine.execute(
            prompt, style, deadline=deadline, consult_cache=self.config.consult_cache
        )

    def close(self) -> None:
        self.engine.close()
        self.transport.close()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            close_store()

    def __enter__(self) -> "Tuner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
