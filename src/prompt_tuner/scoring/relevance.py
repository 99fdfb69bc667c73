"""Pluggable prompt relevance strategies."""

import random
from abc import ABC, abstractmethod

RELEVANCE_MIN = 0.6
RELEVANCE_MAX = 0.9


class RelevanceStrategy(ABC):
    """Abstract base class for the secondary relevance signal.

    This stands in for a real visual-quality estimate and can be swapped
    without touching the scorer or the workflow engine.
    """

    @abstractmethod
    def estimate(self, prompt: str, style: str, image_url: str | None = None) -> float:
        """Estimate how well an image matches its prompt.

        Args:
            prompt: Prompt the image was generated from.
            style: Target style name.
            image_url: Location of the generated image, if any.

        Returns:
            A value in [0.6, 0.9].
        """
        pass


class RandomRelevance(RelevanceStrategy):
    """Uniformly random relevance in [0.6, 0.9]."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def estimate(self, prompt: str, style: str, image_url: str | None = None) -> float:
        return self._rng.uniform(RELEVANCE_MIN, RELEVANCE_MAX)


class FixedRelevance(RelevanceStrategy):
    """Constant relevance, useful for reproducible runs."""

    def __init__(self, value: float = 0.75) -> None:
        if not RELEVANCE_MIN <= value <= RELEVANCE_MAX:
            raise ValueError(
                f"Relevance must be within [{RELEVANCE_MIN}, {RELEVANCE_MAX}], got {value}"
            )
        self.value = value

    def estimate(self, prompt: str, style: str, image_url: str | None = None) -> float:
        return self.value
