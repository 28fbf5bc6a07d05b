"""
CLI App - Main entry point for the epicsync command line tool.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from epicsync import __version__
from epicsync.adapters.config import EnvironmentConfigProvider
from epicsync.application.sync import (
    DEFAULT_MAPPING_FILE,
    HierarchyWalker,
    MappingStore,
    MappingStoreLock,
    SyncOrchestrator,
    import_legacy_mapping,
)
from epicsync.core.domain.enums import ItemType
from epicsync.core.domain.events import DomainEvent, EventBus
from epicsync.core.exceptions import ConfigError, EpicSyncError
from epicsync.core.ports.config_provider import AppConfig, TrackerType
from epicsync.core.services import create_provider, create_source

from .exit_codes import ExitCode
from .logging import setup_logging
from .output import Console, Symbols


def create_parser() -> argparse.ArgumentParser:
    """
    Create the command-line argument parser for epicsync.

    Returns:
        Configured ArgumentParser instance.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", metavar="FILE", help="Config file (default: .epicsync.yaml)")
    common.add_argument("--env-file", metavar="FILE", help=".env file (default: ./.env)")
    common.add_argument(
        "--tracker",
        choices=[t.value for t in TrackerType],
        help="Item tracker to sync with",
    )
    common.add_argument(
        "--mapping-file",
        metavar="PATH",
        help=f"Mapping store location (default: {DEFAULT_MAPPING_FILE})",
    )
    common.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    common.add_argument("-q", "--quiet", action="store_true", help="Only print the summary")
    common.add_argument("--no-color", action="store_true", help="Disable colored output")
    common.add_argument("--json", action="store_true", help="Print results as JSON")
    common.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log output format (default: text)",
    )
    common.add_argument("--log-file", metavar="PATH", help="Also write logs to this file")

    parser = argparse.ArgumentParser(
        prog="epicsync",
        description="Sync a local Epic / User Story / Task hierarchy to GitHub or Azure DevOps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what would be created
  epicsync sync .claude/epics/auth --dry-run

  # Sync to Azure DevOps with 8 concurrent requests
  epicsync sync .claude/epics/auth --tracker azure_devops --concurrency 8

  # Prefer local content when both sides changed
  epicsync sync epics/auth.json --conflict-policy local-wins

  # Show what changed since the last sync
  epicsync status .claude/epics/auth

  # Migrate an old path:number mapping file
  epicsync mapping import-legacy .claude/epics/auth/github-mapping.md
""",
    )
    parser.add_argument("--version", action="version", version=f"epicsync {__version__}")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # sync
    sync_parser = subparsers.add_parser(
        "sync", parents=[common], help="Create and update remote items for an epic"
    )
    sync_parser.add_argument("epic_root", metavar="EPIC_ROOT", help="Epic directory or document")
    sync_parser.add_argument(
        "-n", "--dry-run", action="store_true", default=None, help="Simulate, change nothing"
    )
    sync_parser.add_argument(
        "-c", "--concurrency", type=int, metavar="N", help="Maximum in-flight requests (default: 4)"
    )
    sync_parser.add_argument(
        "--conflict-policy",
        choices=["local-wins", "remote-wins", "manual"],
        help="What to do when both sides changed (default: manual)",
    )
    sync_parser.add_argument("--max-retries", type=int, metavar="N", help="Retries per request")
    sync_parser.add_argument(
        "--check-remote",
        action="store_true",
        default=None,
        help="Fetch remote items even when the local side is unchanged",
    )
    sync_parser.add_argument(
        "--shadow-dir", metavar="PATH", help="Where pulled remote content is written"
    )
    sync_parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Stop dispatching new work after this many seconds",
    )
    sync_parser.set_defaults(func=run_sync)

    # status
    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show which nodes are new, changed or unchanged"
    )
    status_parser.add_argument("epic_root", metavar="EPIC_ROOT", help="Epic directory or document")
    status_parser.set_defaults(func=run_status)

    # mapping
    mapping_parser = subparsers.add_parser("mapping", help="Inspect or migrate the mapping store")
    mapping_sub = mapping_parser.add_subparsers(dest="mapping_command", metavar="ACTION")

    show_parser = mapping_sub.add_parser("show", parents=[common], help="List mapping entries")
    show_parser.set_defaults(func=run_mapping_show)

    import_parser = mapping_sub.add_parser(
        "import-legacy", parents=[common], help="Import an old path:number mapping file"
    )
    import_parser.add_argument("legacy_file", metavar="LEGACY_FILE", help="Legacy mapping file")
    import_parser.set_defaults(func=run_mapping_import)

    return parser


# =============================================================================
# Shared helpers
# =============================================================================


def _load_config(args: argparse.Namespace, require_credentials: bool = True) -> AppConfig:
    """
    Build the application configuration from files, environment and arguments.

    Raises:
        ConfigError: If the configuration is invalid
    """
    overrides: dict[str, Any] = {
        "tracker": getattr(args, "tracker", None),
        "mapping_file": getattr(args, "mapping_file", None),
        "dry_run": getattr(args, "dry_run", None),
        "concurrency": getattr(args, "concurrency", None),
        "conflict_policy": getattr(args, "conflict_policy", None),
        "max_retries": getattr(args, "max_retries", None),
        "check_remote": getattr(args, "check_remote", None),
        "shadow_dir": getattr(args, "shadow_dir", None),
        "timeout": getattr(args, "timeout", None),
        "verbose": args.verbose or None,
    }
    config_provider = EnvironmentConfigProvider(
        env_file=Path(args.env_file) if getattr(args, "env_file", None) else None,
        config_file=Path(args.config) if getattr(args, "config", None) else None,
        cli_overrides=overrides,
    )
    config = config_provider.load()

    if require_credentials:
        errors = config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
    return config


def _setup_logging(args: argparse.Namespace) -> Any:
    level = logging.DEBUG if args.verbose else logging.WARNING
    return setup_logging(level=level, log_format=args.log_format, log_file=args.log_file)


def _mapping_store(config: AppConfig) -> MappingStore:
    path = Path(config.sync.mapping_file or DEFAULT_MAPPING_FILE)
    return MappingStore(path, config.tracker_type.value)


def _legacy_item_type(local_id: str) -> ItemType:
    depth = local_id.count("/")
    return (ItemType.EPIC, ItemType.STORY, ItemType.TASK)[min(depth, 2)]


def _remote_url_builder(config: AppConfig) -> Callable[[str], str] | None:
    if config.tracker_type is TrackerType.AZURE_DEVOPS and config.azure_devops:
        ado = config.azure_devops
        base = ado.base_url.rstrip("/")
        return lambda remote_id: f"{base}/{ado.organization}/{ado.project}/_workitems/edit/{remote_id}"
    if config.tracker_type is TrackerType.GITHUB and config.github:
        gh = config.github
        if gh.owner and gh.repo and gh.base_url.rstrip("/") == "https://api.github.com":
            return lambda remote_id: f"https://github.com/{gh.owner}/{gh.repo}/issues/{remote_id}"
    return None


# =============================================================================
# Commands
# =============================================================================


def run_sync(console: Console, args: argparse.Namespace) -> int:
    """
    Run a sync of one epic.

    Args:
        console: Console instance for output.
        args: Parsed command-line arguments.

    Returns:
        Exit code derived from the sync report.
    """
    redactor = _setup_logging(args)
    config = _load_config(args)
    if config.github:
        redactor.register_secret(config.github.token)
    if config.azure_devops:
        redactor.register_secret(config.azure_devops.pat)

    epic_root = Path(args.epic_root)
    if not epic_root.exists():
        console.error(f"Epic not found: {epic_root}")
        return ExitCode.ERROR

    console.header(f"epicsync {Symbols.ARROW} {config.tracker_type.value}")
    if config.sync.dry_run:
        console.dry_run_banner()
    console.info(f"Epic: {epic_root}")

    source = create_source(epic_root)
    provider = create_provider(config, dry_run=config.sync.dry_run)
    if not config.sync.dry_run and not provider.test_connection():
        provider.close()
        console.connection_error(config.tracker_type.value)
        return ExitCode.CONNECTION_ERROR

    store = _mapping_store(config)
    console.info(f"Mapping store: {store.path}")

    event_bus = EventBus()
    if args.verbose:
        event_bus.subscribe(DomainEvent, lambda event: console.debug(repr(event)))

    orchestrator = SyncOrchestrator(provider, store, source, config.sync, event_bus=event_bus)
    cancel_event = threading.Event()

    def on_interrupt(signum: int, frame: Any) -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        console.warning("Interrupted, finishing in-flight requests (Ctrl-C again to abort)")
        cancel_event.set()

    timer: threading.Timer | None = None
    if config.sync.timeout:
        timer = threading.Timer(config.sync.timeout, cancel_event.set)
        timer.daemon = True

    previous_handler = signal.signal(signal.SIGINT, on_interrupt)
    try:
        with MappingStoreLock(store.path):
            if timer is not None:
                timer.start()
            report = orchestrator.sync(epic_root, cancel_event=cancel_event)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        if timer is not None:
            timer.cancel()
        provider.close()

    console.sync_report(report)
    return report.exit_code


def run_status(console: Console, args: argparse.Namespace) -> int:
    """Show the sync status of every node without contacting the tracker."""
    _setup_logging(args)
    config = _load_config(args, require_credentials=False)

    epic_root = Path(args.epic_root)
    if not epic_root.exists():
        console.error(f"Epic not found: {epic_root}")
        return ExitCode.ERROR

    source = create_source(epic_root)
    store = _mapping_store(config)
    store.load()
    hierarchy = source.load(epic_root)
    units = list(HierarchyWalker(hierarchy, store, include_unchanged=True).walk())

    if console.json_mode:
        print(
            json.dumps(
                [
                    {
                        "local_id": unit.local_id,
                        "item_type": unit.node.item_type.value,
                        "status": unit.status.value,
                        "remote_id": unit.existing.remote_id if unit.existing else None,
                    }
                    for unit in units
                ],
                indent=2,
            )
        )
        return ExitCode.SUCCESS

    console.section(f"Status of {epic_root} ({config.tracker_type.value})")
    console.table(
        ["Local id", "Type", "Status", "Remote id"],
        [
            [
                unit.local_id,
                unit.node.item_type.display_name,
                unit.status.value,
                unit.existing.remote_id if unit.existing else "-",
            ]
            for unit in units
        ],
    )
    return ExitCode.SUCCESS


def run_mapping_show(console: Console, args: argparse.Namespace) -> int:
    """List the entries of the mapping store."""
    _setup_logging(args)
    config = _load_config(args, require_credentials=False)
    store = _mapping_store(config).load()
    console.mapping_entries(store.entries())
    return ExitCode.SUCCESS


def run_mapping_import(console: Console, args: argparse.Namespace) -> int:
    """Import a legacy path:number mapping into the mapping store."""
    _setup_logging(args)
    config = _load_config(args, require_credentials=False)

    legacy_file = Path(args.legacy_file)
    if not legacy_file.exists():
        console.error(f"Legacy mapping not found: {legacy_file}")
        return ExitCode.ERROR

    store = _mapping_store(config)
    entries = import_legacy_mapping(
        legacy_file,
        provider=store.provider,
        item_type_for=_legacy_item_type,
        url_for=_remote_url_builder(config),
    )
    with MappingStoreLock(store.path):
        store.load()
        added = store.import_entries(entries)

    console.success(f"Imported {added} of {len(entries)} entries into {store.path}")
    if added < len(entries):
        console.detail(f"{len(entries) - added} local ids were already mapped and were kept")
    return ExitCode.SUCCESS


# =============================================================================
# Entry points
# =============================================================================


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the epicsync CLI.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return ExitCode.ERROR

    console = Console(
        color=not args.no_color,
        verbose=args.verbose,
        quiet=args.quiet,
        json_mode=args.json,
    )

    try:
        return args.func(console, args)

    except KeyboardInterrupt:
        console.print()
        console.warning("Interrupted by user")
        return ExitCode.CANCELLED

    except EpicSyncError as e:
        exit_code = ExitCode.from_exception(e)
        if exit_code is ExitCode.CONFIG_ERROR:
            console.config_errors(str(e).split("; "))
        else:
            console.error(str(e))
        return exit_code

    except Exception as e:
        console.error(f"Unexpected error: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        return ExitCode.ERROR


def run() -> None:
    """
    Entry point for the console script.

    Calls main() and exits with its return code.
    """
    sys.exit(main())


if __name__ == "__main__":
    run()
