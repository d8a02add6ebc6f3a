# src/main.py — v2
"""CLI entry point: generate, status, cache-stats, sweep commands.

Usage:
    gen3d generate "A red cube" [--user U] [--format GLB] [--pbr]
    gen3d generate --image https://example.com/chair.png
    gen3d status <task_id>
    gen3d cache-stats
    gen3d sweep
    gen3d --log-file ~/.gen3d/logs/cli.log generate "A chair"

``status`` and the cache commands only see earlier runs when the task
store and cache use the sqlite or redis backends.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from gen3d.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose, args.log_file)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="gen3d",
        description=f"gen3d v{__version__} - cached text/image to 3D generation",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file", default=None,
        help="Also write logs to this file (rotation and retention from settings)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- generate ---
    p_generate = subparsers.add_parser(
        "generate", help="Generate a 3D asset from a prompt or image",
    )
    p_generate.add_argument("input", help="Prompt text, or image URL/base64 with --image")
    p_generate.add_argument(
        "--image", action="store_true",
        help="Treat input as an image instead of a text prompt",
    )
    p_generate.add_argument("--user", default="cli", help="User id (default: cli)")
    p_generate.add_argument(
        "--format", dest="result_format", default=None,
        choices=["OBJ", "GLB", "STL", "USDZ", "FBX", "MP4"],
        help="Result format (default: PROVIDER_DEFAULT_RESULT_FORMAT)",
    )
    p_generate.add_argument("--pbr", action="store_true", default=None, help="Enable PBR materials")
    p_generate.add_argument(
        "--timeout", type=float, default=None,
        help="Overall deadline in seconds (default: PROVIDER_TIMEOUT_S)",
    )
    p_generate.set_defaults(func=_cmd_generate)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show one task")
    p_status.add_argument("task_id", help="Task id returned by generate")
    p_status.set_defaults(func=_cmd_status)

    # --- cache-stats ---
    p_stats = subparsers.add_parser("cache-stats", help="Show cache statistics")
    p_stats.set_defaults(func=_cmd_cache_stats)

    # --- sweep ---
    p_sweep = subparsers.add_parser("sweep", help="Remove expired cache entries")
    p_sweep.add_argument(
        "--evict", type=int, default=None,
        help="Also evict this many least-used entries",
    )
    p_sweep.set_defaults(func=_cmd_sweep)

    return parser


async def _cmd_generate(args: argparse.Namespace) -> int:
    """Run one generation and print the resulting task."""
    from gen3d.api.facade import GenerationService
    from gen3d.api.models import GenerationParams

    params = GenerationParams(result_format=args.result_format, enable_pbr=args.pbr)
    async with GenerationService() as service:
        if args.image:
            task = await service.generate_image(args.user, args.input, params, args.timeout)
        else:
            task = await service.generate_text(args.user, args.input, params, args.timeout)

    _print_task(task)
    return 0 if task.status in ("COMPLETED", "CACHED") else 2


async def _cmd_status(args: argparse.Namespace) -> int:
    from gen3d.api.facade import GenerationService

    async with GenerationService() as service:
        task = await service.get_task(args.task_id)
    if task is None:
        logger.error("Task not found: %s", args.task_id)
        return 1
    _print_task(task)
    return 0


async def _cmd_cache_stats(args: argparse.Namespace) -> int:
    from gen3d.api.facade import GenerationService

    async with GenerationService() as service:
        stats = await service.cache_statistics()

    print("\nCache statistics:")
    print(f"  Entries:   {stats.total_entries}")
    print(f"  Hits:      {stats.hits}")
    print(f"  Misses:    {stats.misses}")
    print(f"  Hit rate:  {stats.hit_rate:.1%}")
    print(f"  Bytes:     {stats.total_bytes}")
    return 0


async def _cmd_sweep(args: argparse.Namespace) -> int:
    from gen3d.api.facade import GenerationService

    async with GenerationService() as service:
        removed = await service.sweep_cache()
        evicted = await service.evict_cache(args.evict) if args.evict else 0

    print(f"Swept {removed} expired entries, evicted {evicted}")
    return 0


def _print_task(task: object) -> None:
    """Print a GenerationTask as indented JSON."""
    print(json.dumps(task.model_dump(mode="json"), indent=2))


def _setup_logging(verbose: bool, log_file: str | None = None) -> None:
    """Configure logging for CLI usage."""
    from gen3d.logging.logger import setup_logging

    rotation, retention = "10MB", 30
    if log_file:
        from gen3d.config.settings import load_settings

        settings = load_settings()
        rotation, retention = settings.log_rotation, settings.log_retention

    setup_logging(
        level="DEBUG" if verbose else "INFO",
        log_format="text",
        log_file=log_file,
        rotation=rotation,
        retention=retention,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
