"""Hashed bag-of-words vectors for prompts and visual styles.

Tokens are hashed into a fixed number of buckets with sha256, so the same keyword
list produces the same vector in every process (unlike the salted builtin `hash`).
"""

from __future__ import annotations

import hashlib
import string
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Generic, Protocol, TypeVar

import numpy as np
import numpy.typing as npt

VECTOR_DIM = 50

Vector = npt.NDArray[np.float64]

DEFAULT_STYLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "wizard": ("magical", "mystical", "staff", "ethereal", "ancient", "symbols", "glow"),
    "cosmic": ("space", "stars", "nebula", "galaxy", "cosmic", "celestial", "universe"),
    "cyber": ("neon", "digital", "cyber", "tech", "futuristic", "circuit", "chrome"),
}


def bucket_for(token: str, dim: int = VECTOR_DIM) -> int:
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % dim


def tokenize(text: str) -> list[str]:
    """Lowercase, split on whitespace and drop punctuation hugging each token."""
    tokens = (raw.strip(string.punctuation) for raw in text.lower().split())
    return [token for token in tokens if token]


def normalize(vector: Vector) -> Vector:
    magnitude = float(np.linalg.norm(vector))
    if magnitude == 0.0:
        return vector
    return vector / magnitude


def _freeze(vector: Vector) -> Vector:
    vector.setflags(write=False)
    return vector


def style_vector(keywords: Iterable[str], dim: int = VECTOR_DIM) -> Vector:
    """Build a unit vector with one marked bucket per keyword."""
    vector = np.zeros(dim, dtype=np.float64)
    for keyword in keywords:
        vector[bucket_for(keyword.lower(), dim)] = 1.0
    return _freeze(normalize(vector))


def prompt_vector(prompt: str, dim: int = VECTOR_DIM) -> Vector:
    """Build a unit vector counting prompt tokens per bucket."""
    vector = np.zeros(dim, dtype=np.float64)
    for token in tokenize(prompt):
        vector[bucket_for(token, dim)] += 1.0
    return _freeze(normalize(vector))


def cosine_similarity(first: Vector, second: Vector) -> float:
    if first.shape != second.shape:
        raise ValueError("Vectors must have the same length")
    denominator = float(np.linalg.norm(first)) * float(np.linalg.norm(second))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(first, second)) / denominator


class ReferenceVectors(Mapping[str, Vector]):
    """Read-only mapping of style name to reference vector."""

    def __init__(self, vectors: Mapping[str, Vector]) -> None:
        self._vectors = {
            style: _freeze(np.array(vec, dtype=np.float64)) for style, vec in vectors.items()
        }

    @classmethod
    def from_keywords(
        cls, keywords: Mapping[str, Sequence[str]], dim: int = VECTOR_DIM
    ) -> ReferenceVectors:
        return cls({style: style_vector(words, dim) for style, words in keywords.items()})

    def __getitem__(self, style: str) -> Vector:
        return self._vectors[style]

    def __iter__(self) -> Iterator[str]:
        return iter(self._vectors)

    def __len__(self) -> int:
        return len(self._vectors)


@lru_cache(maxsize=1)
def default_reference_vectors() -> ReferenceVectors:
    """Process-wide reference vectors for the built-in styles, built once."""
    return ReferenceVectors.from_keywords(DEFAULT_STYLE_KEYWORDS)


class PromptCandidate(Protocol):
    @property
    def prompt(self) -> str: ...


C = TypeVar("C", bound=PromptCandidate)


@dataclass(frozen=True, slots=True)
class RankedPrompt(Generic[C]):
    candidate: C
    similarity: float


def find_similar_prompts(
    prompt: str, candidates: Iterable[C], top_k: int = 5
) -> list[RankedPrompt[C]]:
    """Rank candidates by cosine similarity to `prompt`, best first."""
    target = prompt_vector(prompt)
    ranked = [
        RankedPrompt(
            candidate=candidate,
            similarity=cosine_similarity(target, prompt_vector(candidate.prompt)),
        )
        for candidate in candidates
    ]
    ranked.sort(key=lambda item: item.similarity, reverse=True)
    return ranked[: max(top_k, 0)]
