"""Action handlers and the static registry the engine dispatches to.

Every handler takes the resolved step inputs plus the run's execution context
and returns a mapping of output fields.
"""

from __future__ import annotations

import logging
import math
import random
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from prompt_tuner.cache.prompt_cache import PromptCache, normalize_key
from prompt_tuner.errors import HandlerNotFoundError, RemoteCallError, TunerError
from prompt_tuner.generation.provider import ImageGenerator
from prompt_tuner.scoring.scorer import SimilarityScorer
from prompt_tuner.workflow.context import ExecutionContext

logger = logging.getLogger(__name__)

STYLE_PROMPTS: dict[str, str] = {
    "wizard": "mystical wizard moonbird, magical staff, ethereal glow, ancient symbols",
    "cosmic": "cosmic moonbird, starfield background, nebula colors, space dust",
    "cyber": "cyberpunk moonbird, neon lights, digital circuits, chrome feathers",
    "default": "moonbird creature, detailed feathers, artistic style",
}

MUTATIONS: tuple[str, ...] = (
    "more detailed",
    "vibrant colors",
    "dramatic lighting",
    "intricate patterns",
    "mystical atmosphere",
    "enhanced textures",
)

DEFAULT_MUTATION_RATE = 0.3


class Handler(Protocol):
    """A named unit of work a step can invoke."""

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class SetupPrompt:
    """Append the style's phrase list to the user prompt and mint a prompt id."""

    style_prompts: Mapping[str, str] = field(default_factory=lambda: dict(STYLE_PROMPTS))

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]:
        base_prompt = str(inputs.get("base_prompt") or "").strip()
        style = str(inputs.get("style") or "")
        enhancement = self.style_prompts.get(style, self.style_prompts["default"])
        prompt_id = str(uuid.uuid4())
        enhanced_prompt = f"{base_prompt}, {enhancement}" if base_prompt else enhancement

        logger.info(
            "Setup prompt", extra={"prompt_id": prompt_id, "enhanced_prompt": enhanced_prompt}
        )
        return {"prompt_id": prompt_id, "enhanced_prompt": enhanced_prompt}


@dataclass(frozen=True, slots=True)
class GenerateImage:
    """Call the image generator; a reported error aborts the run."""

    generator: ImageGenerator
    max_timeout: float | None = None

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]:
        prompt = str(inputs.get("prompt") or "")
        style = str(inputs.get("style") or "")

        context.deadline.check("generate_image")
        try:
            result = self.generator.generate(
                prompt, style, timeout=context.deadline.timeout(self.max_timeout)
            )
        except TunerError:
            raise
        except Exception as e:
            raise RemoteCallError(f"Image generation failed: {type(e).__name__}: {e}") from e
        if not result.ok:
            raise RemoteCallError(f"Image generation failed: {result.error or 'no image returned'}")

        logger.info(
            "Image generated",
            extra={"run_id": context.run_id, "style": style, "image_url": result.url},
        )
        return {"image_url": result.url}


@dataclass(frozen=True, slots=True)
class CalculateScore:
    """Score the current enhanced prompt against the target style."""

    scorer: SimilarityScorer

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]:
        image_url = inputs.get("image_url")
        target_style = str(inputs.get("target_style") or "")
        prompt = context.get("ENHANCED_PROMPT") or inputs.get("prompt") or ""

        result = self.scorer.score_image(str(prompt), target_style, image_url)

        logger.info(
            "Calculated score",
            extra={
                "run_id": context.run_id,
                "image_url": image_url,
                "score": result.score,
                "features": result.features,
            },
        )
        return {"score": result.score, "features": dict(result.features)}


@dataclass(frozen=True, slots=True)
class CheckThreshold:
    """Compare the score to the target and count one refinement iteration."""

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]:
        score = inputs.get("score")
        target = inputs.get("target")
        if target is None:
            target = context.target_score

        passed = score is not None and float(score) >= float(target)
        iterations = int(context.get("ITERATIONS") or 0) + 1

        context.set("ITERATIONS", iterations)
        context.iteration = iterations

        logger.info(
            "Threshold check",
            extra={
                "run_id": context.run_id,
                "score": score,
                "target": target,
                "passed": passed,
                "iterations": iterations,
            },
        )
        return {"passed": passed, "iterations": iterations}


@dataclass(frozen=True, slots=True)
class MutatePrompt:
    """Append a random subset of the mutation catalog to the prompt.

    The subset holds ``ceil(len(catalog) * mutation_rate)`` phrases, at least one.
    """

    rng: random.Random = field(default_factory=random.Random)
    catalog: tuple[str, ...] = MUTATIONS

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]:
        current_prompt = str(inputs.get("current_prompt") or "")
        rate = inputs.get("mutation_rate")
        rate = DEFAULT_MUTATION_RATE if rate is None else float(rate)

        count = min(max(math.ceil(len(self.catalog) * rate), 1), len(self.catalog))
        selected = self.rng.sample(self.catalog, count)

        mutated_prompt = f"{current_prompt}, {', '.join(selected)}"
        mutation_type = "+".join(selected)

        logger.info(
            "Mutated prompt",
            extra={
                "run_id": context.run_id,
                "prompt": current_prompt,
                "mutated": mutated_prompt,
                "mutations": selected,
            },
        )
        return {"mutated_prompt": mutated_prompt, "mutation_type": mutation_type}


@dataclass(frozen=True, slots=True)
class CachePrompt:
    """Store an accepted result in the prompt cache, keyed by the user prompt."""

    cache: PromptCache | None = None

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]:
        prompt = str(inputs.get("prompt") or "")
        if self.cache is None:
            logger.info("Prompt cache disabled; skipping", extra={"prompt": prompt})
            return {"cached": False, "cache_id": None}

        context.deadline.check("cache_prompt")
        ttl = inputs.get("ttl")
        stored = self.cache.set(
            prompt,
            {
                "prompt": prompt,
                "final_prompt": inputs.get("final_prompt"),
                "style": inputs.get("style"),
                "score": inputs.get("score"),
                "features": inputs.get("features") or {},
                "image_url": inputs.get("image_url"),
            },
            ttl=int(ttl) if ttl is not None else None,
        )

        cache_id = normalize_key(prompt) if stored else None
        logger.info("Caching prompt", extra={"cache_id": cache_id, "stored": stored})
        return {"cached": stored, "cache_id": cache_id}


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(frozen=True, slots=True)
class CompleteWorkflow:
    """Assemble the final result record."""

    clock: Callable[[], str] = _utc_iso_now

    def __call__(self, inputs: Mapping[str, Any], context: ExecutionContext) -> dict[str, Any]:
        passed = bool(inputs.get("passed", True))
        result = {
            "success": passed,
            "status": "passed" if passed else "exhausted",
            "image_url": inputs.get("image_url"),
            "final_prompt": inputs.get("final_prompt"),
            "score": inputs.get("score"),
            "iterations": inputs.get("iterations"),
            "timestamp": self.clock(),
        }

        logger.info("Workflow completed", extra={"result": result})
        return {"result": result}


class HandlerRegistry:
    """Static name -> handler table, validated when a workflow is bound to it."""

    def __init__(self, handlers: Mapping[str, Handler] | None = None) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def get(self, name: str) -> Handler:
        try:
            return self._handlers[name]
        except KeyError:
            raise HandlerNotFoundError(name) from None

    def require(self, names: Iterable[str]) -> None:
        """Fail fast if any of `names` is not registered."""
        for name in sorted(names):
            if name not in self._handlers:
                raise HandlerNotFoundError(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._handlers))


def build_handlers(
    *,
    scorer: SimilarityScorer,
    generator: ImageGenerator,
    cache: PromptCache | None = None,
    rng: random.Random | None = None,
    generation_timeout: float | None = None,
) -> HandlerRegistry:
    """Registry with the built-in prompt tuning handlers."""
    return HandlerRegistry(
        {
            "setup_prompt": SetupPrompt(),
            "generate_image": GenerateImage(generator=generator, max_timeout=generation_timeout),
            "calculate_score": CalculateScore(scorer=scorer),
            "check_threshold": CheckThreshold(),
            "mutate_prompt": MutatePrompt(rng=rng or random.Random()),
            "cache_prompt": CachePrompt(cache=cache),
            "complete_workflow": CompleteWorkflow(),
        }
    )
