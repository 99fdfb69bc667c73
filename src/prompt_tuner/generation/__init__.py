"""Image generation package initialization."""

from prompt_tuner.generation.factory import GeneratorFactory
from prompt_tuner.generation.provider import GenerationResult, ImageGenerator

__all__ = [
    "GenerationResult",
    "GeneratorFactory",
    "ImageGenerator",
]
