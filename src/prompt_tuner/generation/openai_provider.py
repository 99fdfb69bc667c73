"""OpenAI image generator implementation."""

import logging

from openai import OpenAI, OpenAIError

from prompt_tuner.core.config import GeneratorConfig
from prompt_tuner.errors import ConfigurationError
from prompt_tuner.generation.provider import GenerationResult, ImageGenerator

logger = logging.getLogger(__name__)

STYLE_SUFFIXES: dict[str, str] = {
    "wizard": "magical wizard style, mystical, fantasy art",
    "cosmic": "cosmic space art, nebula background, stars",
    "cyber": "cyberpunk style, neon, futuristic",
    "default": "digital art, high quality",
}


class OpenAIImageGenerator(ImageGenerator):
    """OpenAI Images API generator."""

    def __init__(self, config: GeneratorConfig, client: OpenAI | None = None) -> None:
        """Initialize the OpenAI generator.

        Args:
            config: Generator configuration.
            client: Pre-built client, mainly for tests.

        Raises:
            ConfigurationError: If API key is not provided.
        """
        if client is None and not config.openai_api_key:
            raise ConfigurationError(
                "OpenAI API key is required (set TUNER_GENERATOR_OPENAI_API_KEY)"
            )

        self.config = config
        self.client = client or OpenAI(api_key=config.openai_api_key)
        self.model = config.openai_model
        self.size = config.image_size

        logger.info(f"OpenAI image generator initialized with model: {self.model}")

    def generate(
        self, prompt: str, style: str, *, timeout: float | None = None
    ) -> GenerationResult:
        suffix = STYLE_SUFFIXES.get(style, STYLE_SUFFIXES["default"])
        full_prompt = f"{prompt}, {suffix}, highly detailed, professional artwork"

        logger.debug(f"Generating image for prompt: {full_prompt[:100]}...")

        try:
            response = self.client.images.generate(
                model=self.model,
                prompt=full_prompt,
                size=self.size,  # type: ignore[arg-type]
                n=1,
                timeout=timeout,
            )
        except OpenAIError as e:
            logger.error("OpenAI image generation failed", extra={"style": style, "error": str(e)})
            return GenerationResult(error=str(e))

        if not response.data or not response.data[0].url:
            return GenerationResult(error="No image generated")

        logger.info("OpenAI image generated", extra={"style": style, "model": self.model})
        return GenerationResult(url=response.data[0].url)
