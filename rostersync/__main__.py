"""CLI entry point for rostersync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import load_config
from .engine import Engine, open_engine
from .models import Employee
from .store import LocalStoreError


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


def _format_timestamp(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000).isoformat(timespec="seconds")


def _print_employee(employee: Employee) -> None:
    print(
        f"{employee.employee_id:>8}  {employee.first_name} {employee.last_name}"
        f"  [{employee.department or '-'}]  {employee.position or '-'}"
        f"  {employee.email or ''}"
    )


# Optional record fields exposed as --flags on add/update
RECORD_FIELDS = [
    "department",
    "position",
    "hire_date",
    "birth_date",
    "gender",
    "email",
    "phone_number",
    "address",
]


def _add_record_arguments(parser: argparse.ArgumentParser) -> None:
    for name in RECORD_FIELDS:
        parser.add_argument(f"--{name.replace('_', '-')}", dest=name, default=None)


def _record_overrides(args: argparse.Namespace, names: list[str]) -> dict[str, Any]:
    return {
        name: getattr(args, name)
        for name in names
        if getattr(args, name, None) is not None
    }


async def cmd_status(args: argparse.Namespace) -> int:
    """Show sync status, outbox counts and remote reachability."""
    config = load_config(args.config)
    engine = open_engine(config)

    try:
        reachable = await engine.remote.check_connection()
        state = engine.store.get_sync_state()

        status_data = {
            "timestamp": datetime.now().isoformat(),
            "node": {"name": config.node.name},
            "remote": {
                "base_url": config.remote.api_base,
                "reachable": reachable,
            },
            "sync": {
                "is_online": reachable,
                "is_syncing": state.is_syncing,
                "last_sync_timestamp": state.last_sync_timestamp,
                "unsynced_changes": engine.change_log.count_unsynced(),
            },
            "outbox": engine.change_log.get_stats(),
            "store": engine.store.get_stats(),
            "replica": engine.replica.describe(),
        }
    finally:
        await engine.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    sync = status_data["sync"]
    print(f"Node: {config.node.name}")
    print(f"Remote: {config.remote.api_base} ({'reachable' if reachable else 'unreachable'})")
    print(f"Last sync: {_format_timestamp(sync['last_sync_timestamp'])}")
    print(f"Unsynced changes: {sync['unsynced_changes']}")
    by_op = status_data["outbox"]["unsynced_by_operation"]
    if by_op:
        print("  " + ", ".join(f"{op}={count}" for op, count in sorted(by_op.items())))
    print(f"Employees: {status_data['store']['employees_count']}")
    replica = status_data["replica"]
    print(
        f"Replica: {replica['total']} entries "
        f"({replica['valid']} valid, {replica['transient']} transient, "
        f"{replica['tombstoned']} tombstoned)"
    )
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one manual sync cycle."""
    config = load_config(args.config)
    engine = open_engine(config)

    try:
        result = await engine.scheduler.manual_sync()
    except LocalStoreError as e:
        print(f"Local storage error: {e}", file=sys.stderr)
        return 1
    finally:
        await engine.close()

    if result is None:
        print("Sync skipped")
        return 1

    print(f"Sync: {result.status.value}")
    print(f"  applied={result.entries_applied} cancelled={result.entries_cancelled}")
    print(f"  promoted={result.records_promoted} failed={result.promotion_failures}")
    print(f"  pruned={result.entries_pruned} changed={result.changed}")
    if result.error:
        print(f"  error: {result.error}", file=sys.stderr)
    return 0 if result.ok else 1


async def _run_engine(engine: Engine) -> None:
    await engine.monitor.check()
    await engine.scheduler.start()
    await engine.monitor.start()
    await asyncio.Event().wait()


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the scheduler and connectivity monitor until interrupted."""
    config = load_config(args.config)

    if not config.sync.enabled:
        print("Sync is disabled in config", file=sys.stderr)
        return 1

    print(f"Starting rostersync node: {config.node.name}")
    print(f"Remote: {config.remote.api_base}")
    print(f"Poll interval: {config.sync.poll_interval_seconds}s")

    engine = open_engine(config)
    try:
        await _run_engine(engine)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await engine.close()

    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List materialized employees."""
    config = load_config(args.config)
    engine = open_engine(config)

    try:
        if args.search:
            employees = engine.store.search_employees(args.search)
        else:
            employees = engine.store.list_employees()
    finally:
        engine.store.close()

    if args.json:
        print(json.dumps([e.to_dict() for e in employees], indent=2))
        return 0

    if not employees:
        print("No employees")
        return 0

    for employee in employees:
        _print_employee(employee)
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    """Add an employee locally."""
    config = load_config(args.config)
    engine = open_engine(config)

    try:
        employee = Employee(
            first_name=args.first_name,
            last_name=args.last_name,
            **_record_overrides(args, RECORD_FIELDS),
        )
        employee = engine.editor.add_employee(employee)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        engine.store.close()

    _print_employee(employee)
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    """Update fields of an employee locally."""
    config = load_config(args.config)
    engine = open_engine(config)

    try:
        existing = engine.store.get_employee(args.id)
        if existing is None:
            print(f"Employee {args.id} not found", file=sys.stderr)
            return 1

        changes = _record_overrides(args, ["first_name", "last_name", *RECORD_FIELDS])
        if not changes:
            print("Nothing to update", file=sys.stderr)
            return 1

        employee = replace(existing, **changes)
        engine.editor.update_employee(employee)
    finally:
        engine.store.close()

    _print_employee(employee)
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete an employee locally."""
    config = load_config(args.config)
    engine = open_engine(config)

    try:
        engine.editor.delete_employee(args.id)
    finally:
        engine.store.close()

    print(f"Deleted employee {args.id}")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """Print a summary of the local replica."""
    config = load_config(args.config)
    engine = open_engine(config)

    try:
        summary = engine.replica.describe()
    finally:
        engine.store.close()

    if args.json:
        print(json.dumps(summary, indent=2))
        return 0

    print(f"Total entries: {summary['total']}")
    print(f"Valid: {summary['valid']}")
    print(f"Transient: {summary['transient']}")
    for key in summary["transient_keys"]:
        print(f"  {key}")
    print(f"Tombstoned: {summary['tombstoned']}")
    for key in summary["tombstoned_keys"]:
        print(f"  {key}")
    print(f"Last modified: {_format_timestamp(summary['last_modified'])}")
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Apply the change-log retention policy."""
    config = load_config(args.config)
    engine = open_engine(config)

    days = args.days if args.days is not None else config.store.change_retention_days
    try:
        deleted = engine.change_log.cleanup_synced(days=days)
        dropped = engine.change_log.clear_unsynced() if args.discard_unsynced else 0
    finally:
        engine.store.close()

    print(f"Removed {deleted} synced changes older than {days} days")
    if args.discard_unsynced:
        print(f"Discarded {dropped} unsynced changes")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="rostersync",
        description="Offline-first sync client for the employee roster",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        dest="json_logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle now")
    sync_parser.set_defaults(func=cmd_sync)

    run_parser = subparsers.add_parser("run", help="Keep syncing until interrupted")
    run_parser.set_defaults(func=cmd_run)

    list_parser = subparsers.add_parser("list", help="List employees")
    list_parser.add_argument("-s", "--search", type=str, default=None, help="Filter by text")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    add_parser = subparsers.add_parser("add", help="Add an employee")
    add_parser.add_argument("--first-name", dest="first_name", required=True)
    add_parser.add_argument("--last-name", dest="last_name", required=True)
    _add_record_arguments(add_parser)
    add_parser.set_defaults(func=cmd_add)

    update_parser = subparsers.add_parser("update", help="Update an employee")
    update_parser.add_argument("id", type=int, help="Employee ID")
    update_parser.add_argument("--first-name", dest="first_name", default=None)
    update_parser.add_argument("--last-name", dest="last_name", default=None)
    _add_record_arguments(update_parser)
    update_parser.set_defaults(func=cmd_update)

    delete_parser = subparsers.add_parser("delete", help="Delete an employee")
    delete_parser.add_argument("id", type=int, help="Employee ID")
    delete_parser.set_defaults(func=cmd_delete)

    inspect_parser = subparsers.add_parser("inspect", help="Summarize the local replica")
    inspect_parser.add_argument("--json", action="store_true", help="Output as JSON")
    inspect_parser.set_defaults(func=cmd_inspect)

    cleanup_parser = subparsers.add_parser("cleanup", help="Prune old synced changes")
    cleanup_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention in days (default: from config)",
    )
    cleanup_parser.add_argument(
        "--discard-unsynced",
        action="store_true",
        help="Also drop every change that has not synced yet",
    )
    cleanup_parser.set_defaults(func=cmd_cleanup)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
