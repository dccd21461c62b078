#!/usr/bin/env python3
"""
TimeSave - Main Entry Point

A personal usage limiter: tracks time spent in configured apps and
websites and blocks them once the daily group allowance is used up.

Usage:
    python main.py run                       # Read foreground signals from stdin
    python main.py status                    # Show today's usage per group
    python main.py items                     # List blocked items
    python main.py set-limit default 30      # Set a group's daily allowance
    python main.py add-item reddit.com --kind website
    python main.py remove-item reddit.com
    python main.py reset                     # Zero today's usage

Foreground signal lines (for `run`) are "<package> [<url>]", with "-" for
an unknown package. An empty line means the foreground is neutral.
"""

import argparse
import logging
import sys
from datetime import date
from typing import Optional, Tuple

import config
from core.engine import EnforcementEngine
from screen.block_dispatcher import BlockDispatcher
from screen.blocklist import BlockedItem, BlockType, Blocklist
from storage.config_store import ConfigStore
from tracking.analytics import compute_usage_report, generate_summary_text
from tracking.usage_ledger import UsageLedger

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)


def parse_signal_line(line: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Parse one foreground signal line.

    Args:
        line: "<package> [<url>]"; "-" stands for no package

    Returns:
        (package, url) with None for missing parts.
    """
    parts = line.strip().split(None, 1)
    if not parts:
        return None, None
    package = None if parts[0] == "-" else parts[0]
    url = parts[1].strip() if len(parts) > 1 else None
    return package, url or None


def _print_block_screen(label: str, identifier: str) -> None:
    print(f"\n⛔ Time's up for: {label} ({identifier})\n", flush=True)


def cmd_run(store: ConfigStore, args: argparse.Namespace) -> int:
    """Run the engine, feeding it signals read from stdin until EOF."""
    engine = EnforcementEngine(
        store=store,
        dispatcher=BlockDispatcher(show_block_screen=_print_block_screen),
        check_interval_seconds=args.interval,
    )
    engine.start()
    print("💡 Monitoring foreground signals. Press Ctrl+D to stop.", flush=True)

    try:
        for line in sys.stdin:
            package, url = parse_signal_line(line)
            engine.submit_signal(package, url)
    except KeyboardInterrupt:
        print("\n⏸️  Interrupted")
    finally:
        engine.stop()

    print(generate_summary_text(compute_usage_report(engine.blocklist, engine.ledger.snapshot())))
    return 0


def cmd_status(store: ConfigStore, args: argparse.Namespace) -> int:
    """Print today's usage per group and item."""
    blocklist = Blocklist.load(store)
    ledger = UsageLedger(store, blocklist.groups.keys())
    ledger.rollover_if_new_day(date.today())
    print(generate_summary_text(compute_usage_report(blocklist, ledger.snapshot())))
    return 0


def cmd_items(store: ConfigStore, args: argparse.Namespace) -> int:
    """List the configured blocked items."""
    blocklist = Blocklist.load(store)
    for item in blocklist.items:
        print(f"[{item.kind.value}] {item.identifier}  ({item.label}, group: {item.group_id})")
    return 0


def cmd_set_limit(store: ConfigStore, args: argparse.Namespace) -> int:
    """Set a group's daily allowance in minutes."""
    if args.minutes < 0:
        print("❌ Time limit must be zero or more minutes")
        return 1
    if not store.save_group_limit(args.group, args.minutes):
        print("❌ Could not save time limit")
        return 1
    print(f"✓ Group '{args.group}' limit set to {args.minutes} minutes")
    return 0


def cmd_add_item(store: ConfigStore, args: argparse.Namespace) -> int:
    """Add a blocked app or website."""
    try:
        item = BlockedItem(
            identifier=args.identifier.strip(),
            kind=BlockType(args.kind.upper()),
            display_name=args.name,
            group_id=args.group,
        )
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    items = Blocklist.load(store).items
    if any(existing.identifier == item.identifier and existing.kind == item.kind for existing in items):
        print(f"Already blocked: {item.identifier}")
        return 0
    items.append(item)
    if not store.save_blocked_items(items):
        print("❌ Could not save blocked items")
        return 1
    print(f"✓ Added {item.kind.value.lower()} {item.identifier} to group '{item.group_id}'")
    return 0


def cmd_remove_item(store: ConfigStore, args: argparse.Namespace) -> int:
    """Remove every blocked item with the given identifier."""
    items = Blocklist.load(store).items
    remaining = [item for item in items if item.identifier != args.identifier]
    if len(remaining) == len(items):
        print(f"Not found: {args.identifier}")
        return 1
    if not store.save_blocked_items(remaining):
        print("❌ Could not save blocked items")
        return 1
    print(f"✓ Removed {args.identifier}")
    return 0


def cmd_reset(store: ConfigStore, args: argparse.Namespace) -> int:
    """Zero today's usage counters."""
    blocklist = Blocklist.load(store)
    if not store.save_daily_reset(date.today(), blocklist.groups.keys()):
        print("❌ Could not reset usage")
        return 1
    print("✓ Usage reset for today")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        description="TimeSave - daily app and website usage limiter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py run < signals.txt
  python main.py set-limit default 45
  python main.py add-item youtube.com --kind website --name YouTube
        """
    )
    parser.add_argument(
        "--store",
        default=None,
        help=f"Path to the store file (default: {config.STORE_FILE})",
    )
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Track foreground signals read from stdin")
    run.add_argument(
        "--interval",
        type=float,
        default=config.CHECK_INTERVAL_SECONDS,
        help="Seconds between periodic limit checks",
    )
    run.set_defaults(func=cmd_run)

    subparsers.add_parser("status", help="Show today's usage").set_defaults(func=cmd_status)
    subparsers.add_parser("items", help="List blocked items").set_defaults(func=cmd_items)

    set_limit = subparsers.add_parser("set-limit", help="Set a group's daily allowance")
    set_limit.add_argument("group")
    set_limit.add_argument("minutes", type=int)
    set_limit.set_defaults(func=cmd_set_limit)

    add_item = subparsers.add_parser("add-item", help="Block an app or website")
    add_item.add_argument("identifier")
    add_item.add_argument("--kind", choices=["app", "website"], default="app")
    add_item.add_argument("--name", default=None, help="Display name")
    add_item.add_argument("--group", default=config.DEFAULT_GROUP_ID)
    add_item.set_defaults(func=cmd_add_item)

    remove_item = subparsers.add_parser("remove-item", help="Unblock an app or website")
    remove_item.add_argument("identifier")
    remove_item.set_defaults(func=cmd_remove_item)

    subparsers.add_parser("reset", help="Zero today's usage").set_defaults(func=cmd_reset)
    return parser


def main(argv=None) -> int:
    """
    Main entry point — parses arguments and runs the chosen command.

    Default command is `status`.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    store = ConfigStore(args.store) if args.store else ConfigStore()
    func = getattr(args, "func", cmd_status)

    try:
        return func(store, args)
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"\nFatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
