"""Deterministic placeholder generator for offline runs and tests."""

import hashlib
import logging

from prompt_tuner.core.config import GeneratorConfig
from prompt_tuner.generation.provider import GenerationResult, ImageGenerator

logger = logging.getLogger(__name__)


class DeterministicImageGenerator(ImageGenerator):
    """Return a stable URL derived from (style, prompt) without calling any model."""

    def __init__(self, config: GeneratorConfig | None = None) -> None:
        base_url = (config or GeneratorConfig()).deterministic_base_url
        self.base_url = base_url.rstrip("/")

    def generate(
        self, prompt: str, style: str, *, timeout: float | None = None
    ) -> GenerationResult:
        digest = hashlib.sha256(f"{style}|{prompt}".encode("utf-8")).hexdigest()[:16]
        url = f"{self.base_url}/{style}/{digest}.png"
        logger.debug("Placeholder image generated", extra={"url": url})
        return GenerationResult(url=url)
