"""Core configuration for the prompt tuner."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from prompt_tuner.logging import configure_logging


class GeneratorConfig(BaseSettings):
    """Configuration for the image generation backend."""

    provider: Literal["openai", "deterministic"] = Field(
        default="openai",
        description="Image generator to use",
    )

    # OpenAI settings
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="dall-e-2",
        description="OpenAI image model to use",
    )
    image_size: str = Field(
        default="1024x1024",
        description="Requested image size",
    )

    # Deterministic settings
    deterministic_base_url: str = Field(
        default="https://images.invalid/tuner",
        description="Base URL for generated placeholder image links",
    )

    model_config = SettingsConfigDict(
        env_prefix="TUNER_GENERATOR_",
        env_file=".env",
        extra="ignore",
    )


class CacheConfig(BaseSettings):
    """Configuration for the prompt cache."""

    backend: Literal["memory", "file", "redis"] = Field(
        default="file",
        description="Key-value store backing the prompt cache",
    )
    file_path: Path = Field(
        default=Path(".state/prompt_cache.json"),
        description="JSON file used by the file backend",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL used by the redis backend",
    )
    namespace: str = Field(
        default="prompt:",
        description="Key prefix for cached prompts",
    )
    ttl_seconds: int = Field(
        default=3600,
        gt=0,
        description="Default time-to-live for cached prompts",
    )

    model_config = SettingsConfigDict(
        env_prefix="TUNER_CACHE_",
        env_file=".env",
        extra="ignore",
    )


class ScoringConfig(BaseSettings):
    """Configuration for the similarity scorer."""

    relevance: Literal["random", "fixed"] = Field(
        default="random",
        description="Prompt relevance strategy",
    )
    seed: int | None = Field(
        default=None,
        description="Seed for the random relevance strategy and prompt mutation",
    )
    fixed_relevance: float = Field(
        default=0.75,
        ge=0.6,
        le=0.9,
        description="Relevance value returned by the fixed strategy",
    )

    model_config = SettingsConfigDict(
        env_prefix="TUNER_SCORING_",
        env_file=".env",
        extra="ignore",
    )


class TunerConfig(BaseSettings):
    """Main configuration for the prompt tuner."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    workflow_path: Path | None = Field(
        default=None,
        description="Workflow definition YAML (defaults to the bundled definition)",
    )
    run_timeout_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="Wall-clock budget for a single run (0 means no deadline)",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound for a single api action or image generation call",
    )
    consult_cache: bool = Field(
        default=True,
        description="Look up the prompt cache before running the workflow",
    )

    generator: GeneratorConfig = Field(
        default_factory=GeneratorConfig,
        description="Image generator configuration",
    )
    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Prompt cache configuration",
    )
    scoring: ScoringConfig = Field(
        default_factory=ScoringConfig,
        description="Scoring configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="TUNER_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level)

        if self.debug:
            logging.getLogger("prompt_tuner").setLevel(logging.DEBUG)
