"""CLI entrypoint for the prompt tuner."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from prompt_tuner import __version__
from prompt_tuner.cache.prompt_cache import PromptCache
from prompt_tuner.core.config import TunerConfig
from prompt_tuner.core.tuner import Tuner, build_store
from prompt_tuner.errors import ConfigurationError, HandlerNotFoundError
from prompt_tuner.generation.deterministic_provider import DeterministicImageGenerator
from prompt_tuner.scoring.scorer import SimilarityScorer
from prompt_tuner.workflow.context import Deadline
from prompt_tuner.workflow.definition import load_workflow
from prompt_tuner.workflow.handlers import build_handlers

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prompt-tuner",
        description="Iteratively refine an image prompt toward a target style",
    )
    parser.add_argument("--version", action="version", version=f"prompt-tuner {__version__}")
    parser.add_argument(
        "--workflow",
        default=None,
        help="Workflow definition YAML (overrides TUNER_WORKFLOW_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the refinement workflow for a prompt")
    run.add_argument("prompt", help="Prompt text to refine")
    run.add_argument("--style", default="wizard", help="Target style, e.g. wizard, cosmic, cyber")
    run.add_argument(
        "--no-cache",
        action="store_true",
        help="Skip the prompt cache lookup before running",
    )
    run.add_argument(
        "--timeout-seconds",
        type=float,
        default=None,
        help="Wall-clock budget for the run (overrides TUNER_RUN_TIMEOUT_SECONDS)",
    )

    subparsers.add_parser(
        "validate", help="Load the workflow definition and check its handlers are registered"
    )

    cache_get = subparsers.add_parser("cache-get", help="Show the cached result for a prompt")
    cache_get.add_argument("prompt", help="Prompt text (normalized before lookup)")

    cache_similar = subparsers.add_parser(
        "cache-similar", help="List cached prompts similar to a prompt"
    )
    cache_similar.add_argument("prompt", help="Prompt text to compare")
    cache_similar.add_argument("--style", required=True, help="Style the entries must match")
    cache_similar.add_argument(
        "--threshold",
        type=float,
        default=0.8,
        help="Minimum word overlap (0..1)",
    )
    cache_similar.add_argument(
        "--nearest",
        action="store_true",
        help="Rank by prompt vector similarity instead of word overlap",
    )

    subparsers.add_parser("cache-stats", help="Show prompt cache statistics")

    return parser


def _build_cache(settings: TunerConfig) -> PromptCache:
    return PromptCache(
        build_store(settings.cache),
        namespace=settings.cache.namespace,
        default_ttl=settings.cache.ttl_seconds,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = TunerConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    if args.workflow:
        settings = settings.model_copy(update={"workflow_path": Path(args.workflow)})

    settings.setup_logging()

    try:
        if args.command == "run":
            with Tuner(settings) as tuner:
                timeout = (
                    args.timeout_seconds
                    if args.timeout_seconds is not None
                    else settings.run_timeout_seconds
                )
                if args.no_cache:
                    result = tuner.engine.execute(
                        args.prompt,
                        args.style,
                        deadline=Deadline(timeout or None),
                        consult_cache=False,
                    )
                else:
                    result = tuner.run(args.prompt, args.style, deadline=Deadline(timeout or None))

            print(result.model_dump_json(indent=2))
            return 0 if result.success else 1

        if args.command == "validate":
            definition = load_workflow(settings.workflow_path)
            handlers = build_handlers(
                scorer=SimilarityScorer(), generator=DeterministicImageGenerator()
            )
            handlers.require(definition.handler_names())
            print(
                f"Workflow OK: {len(definition.steps)} steps, {len(definition.actions)} actions, "
                f"max_iterations={definition.config.max_iterations}, "
                f"target_score={definition.config.target_score}"
            )
            return 0

        if args.command == "cache-get":
            entry = _build_cache(settings).get(args.prompt)
            if entry is None:
                print(f"No cached entry for {args.prompt!r}")
                return 1
            print(entry.model_dump_json(indent=2))
            return 0

        if args.command == "cache-similar":
            cache = _build_cache(settings)
            if args.nearest:
                ranked = cache.find_nearest(args.prompt, args.style)
                rows = [
                    {
                        "prompt": r.candidate.prompt,
                        "score": r.candidate.score,
                        "similarity": r.similarity,
                    }
                    for r in ranked
                ]
            else:
                entries = cache.find_similar(args.prompt, args.style, threshold=args.threshold)
                rows = [{"prompt": e.prompt, "score": e.score} for e in entries]

            if not rows:
                print("No similar cached prompts")
                return 0
            print(json.dumps(rows, indent=2))
            return 0

        if args.command == "cache-stats":
            stats = _build_cache(settings).get_stats()
            print(stats.model_dump_json(indent=2))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (ConfigurationError, HandlerNotFoundError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
