"""Abstract base class for image generators."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Outcome of one generation call: exactly one of `url` or `error` is set."""

    url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.url is not None and self.error is None


class ImageGenerator(ABC):
    """Abstract base class for image generation backends.

    This interface allows pluggable generators (OpenAI, deterministic placeholder, ...).
    Implementations report failures through `GenerationResult.error` instead of raising.
    """

    @abstractmethod
    def generate(
        self, prompt: str, style: str, *, timeout: float | None = None
    ) -> GenerationResult:
        """Generate one image.

        Args:
            prompt: Prompt describing the image.
            style: Target style name.
            timeout: Seconds the call may take, if bounded.

        Returns:
            The generated image URL, or an error message.
        """
        pass
