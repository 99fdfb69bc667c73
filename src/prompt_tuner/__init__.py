"""Prompt Tuner.

Iterative prompt refinement for styled image generation:
- YAML-defined workflows with guarded steps and bounded loops
- hashed bag-of-words style scoring
- a TTL prompt cache over memory, JSON file or Redis stores
"""

__version__ = "0.1.0"

from prompt_tuner.core.config import TunerConfig

__all__ = ["__version__", "TunerConfig"]
