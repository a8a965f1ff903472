"""Command line helper to try a login against a configured source."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import sys

from .config import load_sources
from .errors import AuthenticationError, SqlAuthError
from .source import SqlAuthSource

EXIT_DENIED = 1
EXIT_ERROR = 2


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sqlauth", description=__doc__)
    parser.add_argument("config", help="TOML file with [sources.<name>] tables")
    parser.add_argument("source", help="Authentication source to use")
    parser.add_argument("username", help="Username to authenticate")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        sources = load_sources(args.config)
        if args.source not in sources:
            print(f"Unknown source '{args.source}'. Available: {', '.join(sources)}", file=sys.stderr)
            return EXIT_ERROR
        source = SqlAuthSource(args.source, sources[args.source])
        password = getpass.getpass(f"Password for {args.username}: ")
        attributes = asyncio.run(source.login(args.username, password))
    except AuthenticationError:
        print("Incorrect username or password.", file=sys.stderr)
        return EXIT_DENIED
    except SqlAuthError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    print(json.dumps(attributes, indent=2, ensure_ascii=False))
    return 0


__all__ = ["main"]
