#!/usr/bin/env python3
"""CLI entry point for timeline-resolve command.

Resolves the in-story time period of movies by TMDb id.
"""

import sys


def main() -> None:
    """Entry point for timeline-resolve command."""
    from timeline_resolver.runner import main as resolve_main

    sys.exit(resolve_main())


if __name__ == "__main__":
    main()
