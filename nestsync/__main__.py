"""CLI entry point for nestsync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .app import AppContext
from .config import load_config
from .records import DIAPER_TYPES, FEEDING_SIDES, now_ms


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
        level = logging.DEBUG if verbose else logging.WARNING

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

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _format_time(ms: int | None) -> str:
    if ms is None:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


async def _flush_if_active(ctx: AppContext) -> None:
    """Push pending records before a one-shot command exits."""
    if ctx.config.sync.enabled and ctx.coordinator.pending_count:
        await ctx.coordinator.sync_now()


async def cmd_status(args: argparse.Namespace) -> int:
    """Show household and outbox status."""
    ctx = AppContext(load_config(args.config))
    ctx.load()
    try:
        status = ctx.coordinator.get_sync_status()
        status["phase"] = ctx.shared.phase
        status["feeding"] = ctx.feedings.daily_stats()
        status["feeding"]["ms_since_last_feed"] = ctx.feedings.time_since_last_feed()
        status["feeding"]["recommended_side"] = ctx.feedings.recommended_side()
        status["diaper"] = ctx.diapers.day_stats()
        status["diaper"]["day"] = ctx.diapers.current_day()

        if args.json:
            print(json.dumps(status, indent=2))
            return 0

        print("nestsync status")
        print("===============")
        print(f"Device: {status['device_id']}")
        print(f"Household: {status['household_id'] or 'none (local mode)'}")
        print(f"State: {status['state']}")
        print(f"Last sync: {_format_time(status['last_sync_time'])}")
        print(f"Pending records: {status['pending_count']}")
        for kind, count in status["records"].items():
            print(f"  {kind}: {count}")
        print(f"Phase: {status['phase']}")

        feeding = status["feeding"]
        since = feeding["ms_since_last_feed"]
        print(
            f"Feedings today: {feeding['total_feedings']} "
            f"(left {feeding['left_count']}, right {feeding['right_count']}, "
            f"bottle {feeding['bottle_count']})"
        )
        print(f"Last feed: {'never' if since is None else f'{since // 60000} min ago'}")
        print(f"Next side: {feeding['recommended_side']}")

        diaper = status["diaper"]
        print(
            f"Diapers today (day {diaper['day']}): wet {diaper['wet']}/{diaper['expected_wet']}, "
            f"dirty {diaper['dirty']}/{diaper['expected_dirty']}"
        )
    finally:
        await ctx.close()
    return 0


async def cmd_create(args: argparse.Namespace) -> int:
    """Create a new household."""
    ctx = AppContext(load_config(args.config))
    await ctx.start()
    try:
        household_id = await ctx.coordinator.create_household()
        await _flush_if_active(ctx)
        print(f"Created household: {household_id}")
        print(f"Share it with your partner: nestsync join {household_id}")
    finally:
        await ctx.close()
    return 0


async def cmd_join(args: argparse.Namespace) -> int:
    """Join an existing household and share the local backlog."""
    ctx = AppContext(load_config(args.config))
    await ctx.start()
    try:
        await ctx.coordinator.join_household(args.household_id)
        print(f"Joined household: {args.household_id}")
        print(f"Pending records: {ctx.coordinator.pending_count}")
    finally:
        await ctx.close()
    return 0


async def cmd_leave(args: argparse.Namespace) -> int:
    """Leave the household and return to local mode."""
    ctx = AppContext(load_config(args.config))
    await ctx.start()
    try:
        if not ctx.session.household_id:
            print("Not in a household")
            return 1
        ctx.coordinator.leave_household()
        print("Left household; records stay on this device")
    finally:
        await ctx.close()
    return 0


async def cmd_log(args: argparse.Namespace) -> int:
    """Record a contraction, feeding or diaper change."""
    ctx = AppContext(load_config(args.config))
    await ctx.start()
    try:
        at = args.at if args.at is not None else now_ms()
        if args.kind == "contraction":
            if args.water_broke:
                record_id = ctx.contractions.add_water_broke(at)
            else:
                record_id = ctx.contractions.add(at, args.duration)
        elif args.kind == "feeding":
            record_id = ctx.feedings.create(
                {
                    "startTime": at,
                    "endTime": at + args.duration * 1000,
                    "duration": args.duration,
                    "side": args.side,
                    "amount": args.amount,
                    "notes": args.notes,
                }
            )
            ctx.feedings.set_last_side(args.side)
        else:
            record_id = ctx.diapers.add(args.type, notes=args.notes, timestamp=at)

        if args.notes and args.kind == "contraction":
            ctx.contractions.mutate(record_id, {"notes": args.notes})

        await _flush_if_active(ctx)
        record = ctx.find(record_id)
        print(f"Logged {args.kind} {record_id} ({record.sync_status.value})")
    finally:
        await ctx.close()
    return 0


async def cmd_birth_date(args: argparse.Namespace) -> int:
    """Set the birth date used for day-of-life diaper expectations."""
    ctx = AppContext(load_config(args.config))
    ctx.load()
    try:
        birth_date = args.at if args.at is not None else now_ms()
        ctx.diapers.set_birth_date(birth_date)
        print(f"Birth date set to {_format_time(birth_date)}")
    finally:
        await ctx.close()
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Flush pending records now."""
    ctx = AppContext(load_config(args.config))
    await ctx.start()
    try:
        if not ctx.session.household_id:
            print("Not in a household; nothing to sync")
            return 1
        before = ctx.coordinator.pending_count
        await ctx.coordinator.sync_now()
        after = ctx.coordinator.pending_count
        print(f"Synced {before - after}/{before} pending records")
        return 0 if after == 0 else 2
    finally:
        await ctx.close()


async def cmd_run(args: argparse.Namespace) -> int:
    """Stay connected, merging partner updates until interrupted."""
    ctx = AppContext(load_config(args.config))
    await ctx.start()
    print(f"nestsync running as {ctx.session.device_id}")
    print(f"Household: {ctx.session.household_id or 'none (local mode)'}")
    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await ctx.close()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="nestsync",
        description="Offline-first contraction, feeding and diaper log shared across a household",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
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
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    create_parser = subparsers.add_parser("create", help="Create a household")
    create_parser.set_defaults(func=cmd_create)

    join_parser = subparsers.add_parser("join", help="Join a household")
    join_parser.add_argument("household_id", help="Household id shared by a partner")
    join_parser.set_defaults(func=cmd_join)

    leave_parser = subparsers.add_parser("leave", help="Leave the household")
    leave_parser.set_defaults(func=cmd_leave)

    birth_parser = subparsers.add_parser("birth-date", help="Set the baby's birth date")
    birth_parser.add_argument(
        "--at", type=int, default=None, help="Birth time in ms since epoch (default: now)"
    )
    birth_parser.set_defaults(func=cmd_birth_date)

    sync_parser = subparsers.add_parser("sync", help="Push pending records now")
    sync_parser.set_defaults(func=cmd_sync)

    run_parser = subparsers.add_parser("run", help="Stay connected to the household relay")
    run_parser.set_defaults(func=cmd_run)

    # log commands
    log_parser = subparsers.add_parser("log", help="Record an event")
    log_subparsers = log_parser.add_subparsers(dest="kind", help="Event kinds")

    log_contraction = log_subparsers.add_parser("contraction", help="Log a contraction")
    log_contraction.add_argument(
        "-d", "--duration", type=int, default=60, help="Duration in seconds (default: 60)"
    )
    log_contraction.add_argument(
        "--water-broke", action="store_true", help="Record that the water broke"
    )

    log_feeding = log_subparsers.add_parser("feeding", help="Log a feeding")
    log_feeding.add_argument("side", choices=FEEDING_SIDES)
    log_feeding.add_argument(
        "-d", "--duration", type=int, default=0, help="Duration in seconds"
    )
    log_feeding.add_argument("--amount", type=float, default=None, help="Bottle amount")

    log_diaper = log_subparsers.add_parser("diaper", help="Log a diaper change")
    log_diaper.add_argument("type", choices=DIAPER_TYPES)

    for sub in (log_contraction, log_feeding, log_diaper):
        sub.add_argument(
            "--at", type=int, default=None, help="Event time in ms since epoch (default: now)"
        )
        sub.add_argument("--notes", type=str, default=None, help="Free-text notes")
        sub.set_defaults(func=cmd_log)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "log" and not args.kind:
        log_parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
