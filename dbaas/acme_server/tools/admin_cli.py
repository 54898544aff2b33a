"""
Admin CLI tool for Acme Server.

Operator commands against a store, without starting the HTTP host:
- init-schema: Create or verify the schema and print the fingerprint
- snapshot: Export the registered descriptors to JSON
- recent: Show the latest lifecycle events
- history: Show every event of one row
- summary: Show row and event counts per entity

Usage:
    acme-admin init-schema
    acme-admin snapshot -o descriptors.lock.json
    acme-admin recent --limit 20
    acme-admin history Booking 1 --format json
    acme-admin summary

The store location comes from the same environment variables as the
server (ACME_CONNECTION_STRING, ConnectionStrings__DefaultConnection) and
can be overridden with --connection-string.

Invariants:
    - Every command bootstraps first, so the schema is checked before use
    - Drift or a bad limit exits non-zero with the error on stderr
    - No command writes entity rows or events

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep JSON output sorted for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from ..config import ServerConfig
from ..context import AppContext, bootstrap
from ..errors import AcmeError
from ..schema import DuplicateRegistrationError, RegistryFrozenError
from ..store.event_log import LifecycleEvent

logger = logging.getLogger(__name__)


class AdminCLI:
    """CLI commands over a bootstrapped AppContext.

    Example:
        >>> cli = AdminCLI(bootstrap(config))
        >>> print(cli.snapshot())
        >>> print(cli.format_events(asyncio.run(cli.recent(10))))
    """

    def __init__(self, context: AppContext) -> None:
        self.context = context

    def snapshot(self) -> str:
        """Registered descriptors as JSON, with the fingerprint."""
        data = {"fingerprint": self.context.fingerprint, **self.context.registry.to_dict()}
        return json.dumps(data, indent=2, sort_keys=True)

    async def recent(self, limit: int) -> list[LifecycleEvent]:
        return await self.context.reports.recent_activity(limit)

    async def history(self, entity: str, key: str) -> list[LifecycleEvent]:
        return await self.context.reports.entity_history(entity, key)

    async def summary(self) -> dict[str, Any]:
        return await self.context.reports.summary()

    @staticmethod
    def format_events(events: list[LifecycleEvent], fmt: str = "text") -> str:
        """Render events as one line each, or as a JSON array."""
        if fmt == "json":
            return json.dumps([e.to_dict() for e in events], indent=2, sort_keys=True)
        if not events:
            return "No events"
        lines = []
        for e in events:
            actor = e.actor or "-"
            lines.append(
                f"#{e.seq} {e.ts_ms} {e.kind.value:<7} {e.entity_type}[{e.entity_key}] "
                f"by {actor}: {json.dumps(e.data, sort_keys=True)}"
            )
        return "\n".join(lines)

    @staticmethod
    def format_summary(summary: dict[str, Any], fmt: str = "text") -> str:
        """Render a summary as a table, or as JSON."""
        if fmt == "json":
            return json.dumps(summary, indent=2, sort_keys=True)
        lines = [f"Fingerprint: {summary['fingerprint']}"]
        for row in summary["entities"]:
            events = ", ".join(f"{k}={v}" for k, v in sorted(row["events"].items())) or "none"
            flag = " (read-only)" if row["read_only"] else ""
            lines.append(f"  {row['entity']}{flag}: {row['rows']} rows, events: {events}")
        return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the admin tool."""
    parser = argparse.ArgumentParser(description="Acme store administration tool")
    parser.add_argument(
        "--connection-string",
        "-c",
        help="Store location (default: from environment)",
    )
    parser.add_argument("--descriptors", help="YAML/JSON file with extra entity descriptors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # init-schema command
    subparsers.add_parser("init-schema", help="Create or verify the schema")

    # snapshot command
    snapshot_parser = subparsers.add_parser("snapshot", help="Export descriptors to JSON")
    snapshot_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    # recent command
    recent_parser = subparsers.add_parser("recent", help="Show the latest events")
    recent_parser.add_argument("--limit", "-n", type=int, default=50, help="Events to show")
    recent_parser.add_argument("--format", choices=["text", "json"], default="text")

    # history command
    history_parser = subparsers.add_parser("history", help="Show the events of one row")
    history_parser.add_argument("entity", help="Entity name")
    history_parser.add_argument("key", help="Primary-key value")
    history_parser.add_argument("--format", choices=["text", "json"], default="text")

    # summary command
    summary_parser = subparsers.add_parser("summary", help="Row and event counts")
    summary_parser.add_argument("--format", choices=["text", "json"], default="text")

    return parser


def _load_config(args: argparse.Namespace) -> ServerConfig:
    config = ServerConfig.from_env()
    if args.connection_string:
        config = replace(
            config,
            storage=replace(config.storage, connection_string=args.connection_string),
        )
    if args.descriptors:
        config = replace(config, descriptors_file=args.descriptors)
    config.validate()
    return config


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
        context = bootstrap(config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except (DuplicateRegistrationError, RegistryFrozenError) as e:
        print(f"Descriptor error: {e}", file=sys.stderr)
        sys.exit(1)
    except AcmeError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        for problem in e.details.get("problems", []):
            print(f"  - {problem}", file=sys.stderr)
        sys.exit(1)

    cli = AdminCLI(context)

    try:
        if args.command == "init-schema":
            print(f"Schema ready ({len(context.registry)} entities)")
            print(f"Fingerprint: {context.fingerprint}")

        elif args.command == "snapshot":
            output = cli.snapshot()
            if args.output:
                with open(args.output, "w") as f:
                    f.write(output)
                print(f"Descriptors exported to {args.output}", file=sys.stderr)
            else:
                print(output)

        elif args.command == "recent":
            events = asyncio.run(cli.recent(args.limit))
            print(cli.format_events(events, args.format))

        elif args.command == "history":
            events = asyncio.run(cli.history(args.entity, args.key))
            print(cli.format_events(events, args.format))

        elif args.command == "summary":
            summary = asyncio.run(cli.summary())
            print(cli.format_summary(summary, args.format))

    except AcmeError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
