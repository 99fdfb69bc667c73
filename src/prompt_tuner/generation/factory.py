"""Provider name -> image generator construction."""

import logging
from collections.abc import Callable

from prompt_tuner.core.config import GeneratorConfig
from prompt_tuner.errors import ConfigurationError
from prompt_tuner.generation.deterministic_provider import DeterministicImageGenerator
from prompt_tuner.generation.openai_provider import OpenAIImageGenerator
from prompt_tuner.generation.provider import ImageGenerator

logger = logging.getLogger(__name__)

GeneratorBuilder = Callable[[GeneratorConfig], ImageGenerator]


class GeneratorFactory:
    """Builds the image generator named by `GeneratorConfig.provider`.

    Extra providers can be registered at runtime, e.g. a stub backend in tests.
    """

    _builders: dict[str, GeneratorBuilder] = {
        "openai": OpenAIImageGenerator,
        "deterministic": DeterministicImageGenerator,
    }

    @classmethod
    def register(cls, provider: str, builder: GeneratorBuilder) -> None:
        cls._builders[provider] = builder

    @classmethod
    def providers(cls) -> list[str]:
        return sorted(cls._builders)

    @classmethod
    def create(cls, config: GeneratorConfig) -> ImageGenerator:
        """Raises `ConfigurationError` for an unknown provider or incomplete settings."""
        builder = cls._builders.get(config.provider)
        if builder is None:
            raise ConfigurationError(
                f"Unsupported image generator {config.provider!r}; "
                f"expected one of {', '.join(cls.providers())}"
            )

        logger.info("Creating image generator", extra={"provider": config.provider})
        return builder(config)
