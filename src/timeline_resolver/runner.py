"""Diagnostic command line: resolve subjects one at a time and print JSON lines.

Examples
--------
$ timeline-resolve 603 550 --verbose
$ timeline-resolve 999001 --title "Last Samurai" --year 2003 --genre Drama --overview "Japan, 1876..."
$ timeline-resolve 603 --override 2199 --label "2199"
$ timeline-resolve 11 --override --label "No period"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import httpx

from timeline_resolver.components import ResolverComponents, build_components
from timeline_resolver.config import ResolverConfig, load_config
from timeline_resolver.errors import StoreUnavailable
from timeline_resolver.models import UNKNOWN, AttributionEntry, SubjectMetadata

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNRESOLVED = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="timeline-resolve",
        description="Resolve the in-story time period of movies.",
    )
    p.add_argument("subject_ids", nargs="+", help="TMDb movie ids")
    p.add_argument("--config", help="YAML config file")
    p.add_argument("--cache-version", type=int, help="Override the ephemeral cache version")
    p.add_argument("--reset-cache", action="store_true", help="Drop the ephemeral cache before resolving")
    p.add_argument("--timeout", type=float, help="HTTP timeout seconds")
    p.add_argument("--verbose", action="store_true", help="Verbose logging")

    # Offline metadata (skips TMDb)
    meta = p.add_argument_group("metadata", "Supply metadata directly instead of fetching it from TMDb")
    meta.add_argument("--title", help="Display title")
    meta.add_argument("--original-title", default="", help="Original-language title")
    meta.add_argument("--year", type=int, help="Release year")
    meta.add_argument("--overview", default="", help="Synopsis")
    meta.add_argument("--genre", action="append", default=[], help="Genre tag (repeatable)")

    # Overrides
    override = p.add_argument_group("override", "Store a user-verified period")
    override.add_argument(
        "--override",
        nargs="*",
        type=int,
        metavar="YEAR",
        help="START [END] years; pass no years together with --label for a sentinel period",
    )
    override.add_argument("--label", help="Period label for --override")
    override.add_argument("--notes", help="Notes stored with the override")
    return p


def init_logging(verbose: bool) -> logging.Logger:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    return logging.getLogger("timeline_resolver")


def validate_arguments(args: argparse.Namespace) -> str | None:
    """Return an error message for inconsistent arguments, or None."""
    if args.override is not None:
        if len(args.subject_ids) != 1:
            return "--override applies to exactly one subject id"
        if len(args.override) > 2:
            return "--override takes at most START and END"
        if not args.override and not args.label:
            return "--override without years needs --label"
    if args.title and len(args.subject_ids) != 1:
        return "--title applies to exactly one subject id"
    return None


def apply_cli_overrides(config: ResolverConfig, args: argparse.Namespace) -> ResolverConfig:
    if args.cache_version is not None:
        config.cache_version = args.cache_version
    if args.timeout is not None:
        config.request_timeout = args.timeout
    return config


def metadata_from_args(subject_id: str, args: argparse.Namespace) -> SubjectMetadata:
    return SubjectMetadata(
        subject_id=subject_id,
        title=args.title,
        original_title=args.original_title,
        release_date=f"{args.year}-01-01" if args.year else None,
        overview=args.overview,
        genres=list(args.genre),
    )


def emit(entry: AttributionEntry, out: Any = None) -> None:
    out = out or sys.stdout
    out.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
    out.flush()


async def run(args: argparse.Namespace, components: ResolverComponents) -> int:
    logger = components.logger
    orchestrator = components.orchestrator
    try:
        if args.override is not None:
            years = list(args.override)
            entry = await orchestrator.apply_override(
                args.subject_ids[0],
                start_year=years[0] if years else None,
                end_year=years[1] if len(years) > 1 else None,
                period_label=args.label,
                canonical_title=args.title or "",
                notes=args.notes,
            )
            emit(entry)
            return EXIT_OK

        exit_code = EXIT_OK
        for subject_id in args.subject_ids:
            if args.title:
                metadata = metadata_from_args(subject_id, args)
            elif components.metadata is not None:
                try:
                    metadata = await components.metadata.fetch(subject_id)
                except httpx.HTTPError as e:
                    logger.error("TMDb lookup for %s failed: %s", subject_id, e)
                    return EXIT_ERROR
                if metadata is None:
                    logger.error("No TMDb movie with id %s", subject_id)
                    exit_code = EXIT_UNRESOLVED
                    continue
            else:
                logger.error("TMDB_API_KEY is not set; pass --title to supply metadata directly")
                return EXIT_ERROR

            entry = await orchestrator.resolve(metadata)
            emit(entry)
            if entry.period_label == UNKNOWN:
                exit_code = EXIT_UNRESOLVED
        return exit_code
    finally:
        await components.aclose()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the timeline resolver.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code: 0=success, 1=error, 2=some subjects unresolved.
    """
    args = build_arg_parser().parse_args(argv)
    logger = init_logging(args.verbose)

    validation_error = validate_arguments(args)
    if validation_error:
        logger.error(validation_error)
        return EXIT_ERROR

    try:
        config = apply_cli_overrides(load_config(args.config), args)
    except (OSError, ValueError, TypeError) as e:
        logger.error("Could not load config: %s", e)
        return EXIT_ERROR

    try:
        components = build_components(config, logger)
    except StoreUnavailable as e:
        logger.error("Could not open stores: %s", e)
        return EXIT_ERROR
    if args.reset_cache:
        components.store.reset()

    try:
        return asyncio.run(run(args, components))
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
