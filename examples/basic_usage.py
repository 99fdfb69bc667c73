#!/usr/bin/env python3
"""Programmatic prompt tuning example.

This demonstrates using the tuner components directly:

* load settings from `.env`
* run the bundled refinement workflow for one prompt
* show what the prompt cache holds afterwards

Pass `--offline` to use the deterministic placeholder generator instead of OpenAI.
"""

from __future__ import annotations

import argparse
from typing import Sequence

from prompt_tuner.core.config import GeneratorConfig, TunerConfig
from prompt_tuner.core.tuner import Tuner


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refine a prompt (programmatic example).")
    parser.add_argument("--prompt", required=True, help="Prompt text to refine")
    parser.add_argument("--style", default="wizard", help="Target style: wizard, cosmic or cyber")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use the deterministic placeholder generator",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = TunerConfig()
    if args.offline:
        settings = settings.model_copy(
            update={"generator": GeneratorConfig(provider="deterministic")}
        )
    settings.setup_logging()

    with Tuner(settings) as tuner:
        result = tuner.run(args.prompt, args.style)
        stats = tuner.cache.get_stats()

    print(f"Status: {result.status} after {result.iterations} iteration(s)")
    if result.error:
        print(f"Error: {result.error}")
        return 1

    print(f"Final prompt: {result.final_prompt}")
    print(f"Score: {result.score}")
    print(f"Image: {result.image_url}")
    print(f"Cache: {stats.total} entries, average score {stats.avg_score:.2f}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
