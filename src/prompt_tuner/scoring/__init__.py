"""Scoring package initialization."""

from prompt_tuner.scoring.relevance import FixedRelevance, RandomRelevance, RelevanceStrategy
from prompt_tuner.scoring.scorer import ScoreResult, SimilarityScorer
from prompt_tuner.scoring.vectors import (
    ReferenceVectors,
    cosine_similarity,
    default_reference_vectors,
    find_similar_prompts,
)

__all__ = [
    "FixedRelevance",
    "RandomRelevance",
    "ReferenceVectors",
    "RelevanceStrategy",
    "ScoreResult",
    "SimilarityScorer",
    "cosine_similarity",
    "default_reference_vectors",
    "find_similar_prompts",
]
