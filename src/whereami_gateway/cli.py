#!/usr/bin/env python3
"""
Command line probe for a running whereami backend.

Runs one gateway operation and prints every event the client emits, which is
handy to check a backend (or offline mode) without a UI attached.

Usage examples:

  # Version info from the default local backend
  whereami-gateway version

  # Waypoints from a backend on another port, events as JSON lines
  whereami-gateway --port 43100 --json waypoints

  # Offline mode: synthesized results, no network
  whereami-gateway --port -1 location
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from typing import Any, List, Optional, Sequence

from .client import WhereamiClient
from .config import GatewayConfig
from .errors import ValidationFailure
from .logging import get_logger, setup_logging

logger = get_logger(__name__, service="whereami-cli")


def _plain(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict) and not isinstance(value, type):
        return _plain(to_dict())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {key: _plain(item) for key, item in dataclasses.asdict(value).items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="whereami-gateway", description="Probe the whereami backend API")
    parser.add_argument("--port", type=int, default=None, help="Backend port (negative for offline mode)")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Per-request timeout in milliseconds")
    parser.add_argument("--json", action="store_true", help="Print events as JSON lines")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("version", help="Backend version information")
    sub.add_parser("waypoints", help="List waypoints")
    sub.add_parser("tags", help="Distinct tag vocabulary")
    sub.add_parser("location", help="Current location fix")
    recent = sub.add_parser("recent", help="Recent searches")
    recent.add_argument("--limit", type=int, default=None)
    suggest = sub.add_parser("suggest", help="Search suggestions")
    suggest.add_argument("query")
    clusters = sub.add_parser("clusters", help="Clustered waypoints for a zoom level")
    clusters.add_argument("--zoom", type=int, default=10)
    clusters.add_argument("--grid", type=int, default=60)
    clusters.add_argument("--bookmarks-only", action="store_true")
    return parser


def _print_event(name: str, args: Sequence[Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps({"event": name, "args": _plain(list(args))}, ensure_ascii=False, default=str))
    else:
        print(f"{name}: " + ", ".join(repr(_plain(arg)) for arg in args))


def _usage_error(message: str, as_json: bool) -> int:
    logger.error(message)
    if as_json:
        print(json.dumps(ValidationFailure(message).to_payload()), file=sys.stderr)
    return 2


async def run(args: argparse.Namespace) -> int:
    overrides = {}
    if args.port is not None:
        overrides["api_port"] = args.port
    if args.timeout_ms is not None:
        overrides["request_timeout_ms"] = args.timeout_ms
    config = GatewayConfig(**overrides)
    failures: List[str] = []

    async with WhereamiClient(config) as client:
        def observe(name: str, *event_args: Any) -> None:
            if name.endswith("_failed"):
                failures.append(name)
            _print_event(name, event_args, args.json)

        client.events.subscribe_all(observe)

        if args.command == "version":
            client.get_version()
        elif args.command == "waypoints":
            client.get_waypoints()
        elif args.command == "location":
            client.get_location()
        elif args.command == "recent":
            client.get_recent_searches(args.limit)
        elif args.command == "suggest":
            if client.suggest(args.query) is None:
                return _usage_error("query must not be blank", args.json)
        elif args.command == "clusters":
            if client.get_clusters(args.zoom, args.grid, args.bookmarks_only) is None:
                return _usage_error(f"invalid cluster query (zoom={args.zoom}, grid={args.grid})", args.json)
        elif args.command == "tags":
            def tags_failed(message: str) -> None:
                failures.append("distinct_tags_failed")
                _print_event("distinct_tags_failed", [message], args.json)

            client.get_distinct_tags(
                lambda tags: _print_event("distinct_tags", [tags], args.json),
                tags_failed,
            )
        await client.drain()

    return 1 if failures else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("whereami-cli", level=args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
