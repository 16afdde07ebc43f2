"""
Gathyr CLI: run the RSS feed MCP server over stdio.

Usage:
    gathyr serve [--config PATH] [--log-level LEVEL] [--log-file PATH]
    gathyr check-feed URL [--max-items N]
    python -m gathyr --help

Commands:
    serve         Serve the feed tools on stdin/stdout until stdin closes.
    check-feed    Fetch one feed and print its normalized snapshot as JSON.

stdout carries the protocol, so all logging goes to stderr (and, optionally,
a log file).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

import yaml
from dotenv import load_dotenv

from gathyr.core.config import GathyrConfig
from gathyr.core.types import DEFAULT_MAX_ITEMS, FeedConfig
from gathyr.errors import GathyrError
from gathyr.feeds.fetcher import FeedFetcher
from gathyr.feeds.registry import build_snapshot
from gathyr.mcp.server import run_stdio
from gathyr.version import __version__

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("Gathyr")


def configure_logging(level: str = "info", log_file: Optional[str] = None) -> None:
    """Route log records to stderr and, when given, a log file."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def load_config(path: Optional[str]) -> GathyrConfig:
    if path:
        return GathyrConfig.from_yaml(path)
    return GathyrConfig.from_env()


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────

def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def cmd_serve(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
        print(f"Error: could not load config {args.config}: {exc}", file=sys.stderr)
        return 1

    configure_logging(
        args.log_level or config.server.log_level,
        args.log_file or config.server.log_file,
    )
    logger.info("Starting %s %s RSS feed server...", config.server.name, config.server.version)
    try:
        asyncio.run(run_stdio(config))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    except OSError as exc:
        logger.error("Error starting RSS feed server: %s", exc)
        return 1
    return 0


async def _check_feed(url: str, max_items: int) -> dict:
    fetcher = FeedFetcher()
    try:
        parsed = await fetcher.fetch(url)
    finally:
        await fetcher.aclose()
    config = FeedConfig(name="check", url=url, max_items=max_items)
    return build_snapshot(config, parsed).to_wire()


def cmd_check_feed(args: argparse.Namespace) -> int:
    """Fetch one feed and print the snapshot the server would cache for it."""
    configure_logging(args.log_level or "warning")
    try:
        snapshot = asyncio.run(_check_feed(args.url, args.max_items))
    except (GathyrError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(snapshot, indent=2, ensure_ascii=False))
    return 0


# ─────────────────────────────────────────────────────────────────────────────
# Argument parsing
# ─────────────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gathyr",
        description="Gathyr: RSS feeds over a line-delimited MCP protocol.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  gathyr serve\n"
               "  gathyr serve --config gathyr.yaml --log-level debug\n"
               "  gathyr check-feed https://news.google.com/rss --max-items 5\n",
    )
    parser.add_argument("--version", action="version", version=f"gathyr {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser(
        "serve",
        help="Serve feed tools over stdio.",
        description=(
            "Reads line-delimited JSON requests from stdin and writes responses\n"
            "to stdout. Feeds come from RSS_FEED_URL_<n> variables (a .env file\n"
            "in the working directory is loaded first) or from --config."
        ),
    )
    serve.add_argument(
        "--config",
        type=str,
        default=None,
        metavar="PATH",
        help="YAML config file (default: environment variables).",
    )
    serve.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: GATHYR_LOG_LEVEL or info).",
    )
    serve.add_argument(
        "--log-file",
        type=str,
        default=None,
        metavar="PATH",
        help="Also append logs to this file (default: GATHYR_LOG_FILE).",
    )

    check = subparsers.add_parser(
        "check-feed",
        help="Fetch one feed and print its normalized snapshot.",
    )
    check.add_argument("url", type=str, help="Feed URL.")
    check.add_argument(
        "--max-items",
        type=_non_negative_int,
        default=DEFAULT_MAX_ITEMS,
        help=f"Items to keep (default: {DEFAULT_MAX_ITEMS}).",
    )
    check.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning).",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    if args.command == "check-feed":
        return cmd_check_feed(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
