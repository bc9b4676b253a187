#!/usr/bin/env python3
"""Command-line interface for SnipSync.

This module provides read-only commands for inspecting a server's store,
plus a connectivity check against a running server.

Commands:
    status                  Show row counts and configuration
    changes [--since MS]    Show records changed after a watermark
    show SNIPPET_ID         Show a snippet with its contents and tags
    tombstones [--since MS] Show the deletion log
    ping --server URL       Check a running server and show its clock
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from snipsync.core.config import Config
from snipsync.core.database import Database
from snipsync.core.delta import get_changes_since
from snipsync.core.sync_client import SyncClient, SyncClientError
from snipsync.core.timestamp_utils import current_timestamp_ms, format_timestamp
from snipsync.core.validation import ValidationError

CHANGE_KINDS = ("folders", "snippets", "snippetContents", "tags", "snippetTags")


def format_record(kind: str, record: Dict[str, Any]) -> str:
    """Format one pulled record as a single line.

    Args:
        kind: Key of the record's list in a change set (e.g. "folders")
        record: Wire dictionary of the record

    Returns:
        Formatted line
    """
    if kind == "snippetTags":
        return (
            f"  {record['snippetId']} -> {record['tagId']}"
            f"  (linked {format_timestamp(record['createdAt'])})"
        )
    label = record.get("name") or record.get("label") or ""
    return f"  {record['id']}  {label}  (updated {format_timestamp(record['updatedAt'])})"


def cmd_status(db: Database, config: Config, args: argparse.Namespace) -> int:
    """Show store statistics and server settings.

    Args:
        db: Database instance
        config: Config instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    counts = db.get_counts()
    if args.format == "json":
        status = {
            "database_file": db.db_path,
            "server_host": config.get_server_host(),
            "server_port": config.get_server_port(),
            "authentication": bool(config.get_api_keys()),
            "counts": counts,
        }
        print(json.dumps(status, indent=2))
    else:
        print(f"Database: {db.db_path}")
        print(f"Server: {config.get_server_host()}:{config.get_server_port()}")
        print(f"Authentication: {'enabled' if config.get_api_keys() else 'disabled'}")
        print()
        for table, count in counts.items():
            print(f"{table}: {count}")
    return 0


def cmd_changes(db: Database, args: argparse.Namespace) -> int:
    """Show what a pull with the given watermark would return.

    Args:
        db: Database instance
        args: Parsed command-line arguments (should have since attribute)

    Returns:
        Exit code (0 for success)
    """
    changes = get_changes_since(db, args.since)
    data = changes.changes_dict()

    if args.format == "json":
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return 0

    if changes.record_count == 0:
        print(f"No changes since {args.since}.")
        return 0

    for kind in CHANGE_KINDS:
        records: List[Dict[str, Any]] = data[kind]
        if not records:
            continue
        print(f"{kind} ({len(records)}):")
        for record in records:
            print(format_record(kind, record))
    return 0


def cmd_show(db: Database, args: argparse.Namespace) -> int:
    """Show one snippet with its contents and tags.

    Args:
        db: Database instance
        args: Parsed command-line arguments (should have snippet_id attribute)

    Returns:
        Exit code (0 for success, 1 if the snippet does not exist)
    """
    snippet = db.get_snippet(args.snippet_id)
    if snippet is None:
        print(f"Error: Snippet {args.snippet_id} not found", file=sys.stderr)
        return 1

    contents = db.get_contents_for_snippet(snippet.id)
    tag_ids = [link.tag_id for link in db.get_tags_for_snippet(snippet.id)]

    if args.format == "json":
        data = snippet.to_dict()
        data["contents"] = [c.to_dict() for c in contents]
        data["tagIds"] = tag_ids
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return 0

    print(f"ID: {snippet.id}")
    print(f"Name: {snippet.name}")
    print(f"Folder: {snippet.folder_id or '(none)'}")
    print(f"Updated: {format_timestamp(snippet.updated_at)}")
    tag_names = []
    for tag_id in tag_ids:
        tag = db.get_tag(tag_id)
        tag_names.append(tag.name if tag else tag_id)
    print(f"Tags: {', '.join(tag_names) if tag_names else '(none)'}")
    for content in contents:
        print()
        print(f"[{content.label or content.id}] ({content.language or 'plain'})")
        print(content.value or "")
    return 0


def cmd_tombstones(db: Database, args: argparse.Namespace) -> int:
    """Show tombstones logged after a watermark.

    Args:
        db: Database instance
        args: Parsed command-line arguments (should have since attribute)

    Returns:
        Exit code (0 for success)
    """
    since = args.since if args.since > 0 else None
    tombstones = db.get_tombstones(since)

    if args.format == "json":
        print(json.dumps([t.to_dict() for t in tombstones], indent=2))
        return 0

    if not tombstones:
        print("No tombstones found.")
        return 0

    for tombstone in tombstones:
        print(
            f"{tombstone.table_name}  {tombstone.record_id}  "
            f"deleted {format_timestamp(tombstone.deleted_at)}"
        )
    return 0


def cmd_ping(config: Config, args: argparse.Namespace) -> int:
    """Ping a running server.

    Args:
        config: Config instance (supplies a default API key)
        args: Parsed command-line arguments (should have server, api_key attributes)

    Returns:
        Exit code (0 for success, 1 if the server could not be reached)
    """
    api_keys = config.get_api_keys()
    api_key = args.api_key or (api_keys[0] if api_keys else None)
    client = SyncClient(args.server, api_key=api_key, timeout=args.timeout)

    try:
        server_time = client.ping()
    except SyncClientError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    skew_ms = server_time - current_timestamp_ms()
    if args.format == "json":
        print(json.dumps({"serverTime": server_time, "skewMs": skew_ms}, indent=2))
    else:
        print(f"Server time: {format_timestamp(server_time)} ({server_time})")
        print(f"Clock skew: {skew_ms} ms")
    return 0


def add_cli_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add CLI subparser and its nested subcommands.

    Args:
        subparsers: Parent subparsers object to add CLI parser to
    """
    cli_parser = subparsers.add_parser(
        "cli",
        help="Command-line interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    cli_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)"
    )

    # Nested subcommands for CLI
    cli_subparsers = cli_parser.add_subparsers(dest="cli_command", help="CLI commands")

    cli_subparsers.add_parser(
        "status",
        help="Show row counts and server settings"
    )

    changes_parser = cli_subparsers.add_parser(
        "changes",
        help="Show records changed after a watermark"
    )
    changes_parser.add_argument(
        "--since",
        type=int,
        default=0,
        help="Watermark in milliseconds (default: 0, everything)"
    )

    show_parser = cli_subparsers.add_parser(
        "show",
        help="Show a snippet with its contents and tags"
    )
    show_parser.add_argument("snippet_id", help="Snippet ID")

    tombstones_parser = cli_subparsers.add_parser(
        "tombstones",
        help="Show the deletion log"
    )
    tombstones_parser.add_argument(
        "--since",
        type=int,
        default=0,
        help="Watermark in milliseconds (default: 0, everything)"
    )

    ping_parser = cli_subparsers.add_parser(
        "ping",
        help="Check a running sync server"
    )
    ping_parser.add_argument(
        "--server",
        required=True,
        help="Server URL, e.g. http://127.0.0.1:8384"
    )
    ping_parser.add_argument(
        "--api-key",
        default=None,
        help="API key (default: first key from config)"
    )
    ping_parser.add_argument(
        "--timeout",
        type=int,
        default=10,
        help="Request timeout in seconds (default: 10)"
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run CLI with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have cli_command attribute)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    # Check if CLI command was provided
    if not hasattr(args, 'cli_command') or not args.cli_command:
        print("Error: No CLI command specified. Use --help for available commands.", file=sys.stderr)
        return 1

    try:
        config = Config(config_dir=config_dir)
        if args.cli_command == "ping":
            return cmd_ping(config, args)
        db = Database(config.get_database_file())
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1

    # Execute command
    try:
        if args.cli_command == "status":
            return cmd_status(db, config, args)
        elif args.cli_command == "changes":
            return cmd_changes(db, args)
        elif args.cli_command == "tombstones":
            return cmd_tombstones(db, args)
        elif args.cli_command == "show":
            return cmd_show(db, args)
        else:
            print(f"Error: Unknown command '{args.cli_command}'", file=sys.stderr)
            return 1
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1
    finally:
        db.close()
