"""Similarity scoring of prompts against style reference vectors."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from prompt_tuner.scoring.relevance import RandomRelevance, RelevanceStrategy
from prompt_tuner.scoring.vectors import (
    C,
    RankedPrompt,
    ReferenceVectors,
    Vector,
    cosine_similarity,
    default_reference_vectors,
    find_similar_prompts,
    prompt_vector,
)

logger = logging.getLogger(__name__)

STYLE_WEIGHT = 0.6
RELEVANCE_WEIGHT = 0.4
DEFAULT_SCORE = 0.5


@dataclass(frozen=True, slots=True)
class ScoreResult:
    score: float
    features: dict[str, float] = field(default_factory=dict)

    @classmethod
    def default(cls) -> ScoreResult:
        return cls(
            score=DEFAULT_SCORE,
            features={
                "style_alignment": DEFAULT_SCORE,
                "prompt_relevance": DEFAULT_SCORE,
                "overall_quality": DEFAULT_SCORE,
            },
        )


class SimilarityScorer:
    """Score prompts by cosine similarity to a style's reference vector.

    The overall score blends style alignment with a secondary relevance signal:
    ``0.6 * style_alignment + 0.4 * prompt_relevance``.
    """

    def __init__(
        self,
        reference_vectors: ReferenceVectors | None = None,
        relevance: RelevanceStrategy | None = None,
    ) -> None:
        self.reference_vectors = reference_vectors or default_reference_vectors()
        self.relevance = relevance or RandomRelevance()

    def extract_prompt_vector(self, prompt: str) -> Vector:
        return prompt_vector(prompt)

    def score_image(self, prompt: str, style: str, image_url: str | None = None) -> ScoreResult:
        reference = self.reference_vectors.get(style)
        if reference is None:
            logger.warning("No reference embedding for style", extra={"style": style})
            return ScoreResult.default()

        style_alignment = cosine_similarity(self.extract_prompt_vector(prompt), reference)
        prompt_relevance = self.relevance.estimate(prompt, style, image_url)
        overall_quality = STYLE_WEIGHT * style_alignment + RELEVANCE_WEIGHT * prompt_relevance

        features = {
            "style_alignment": style_alignment,
            "prompt_relevance": prompt_relevance,
            "overall_quality": overall_quality,
        }
        logger.info(
            "Image scored",
            extra={"style": style, "score": overall_quality, "features": features},
        )
        return ScoreResult(score=overall_quality, features=features)

    def find_similar_prompts(
        self, prompt: str, candidates: Iterable[C], top_k: int = 5
    ) -> list[RankedPrompt[C]]:
        return find_similar_prompts(prompt, candidates, top_k)
