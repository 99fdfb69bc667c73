"""Core package initialization."""

from prompt_tuner.core.config import CacheConfig, GeneratorConfig, ScoringConfig, TunerConfig

__all__ = [
    "CacheConfig",
    "GeneratorConfig",
    "ScoringConfig",
    "TunerConfig",
]
