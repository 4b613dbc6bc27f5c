#!/usr/bin/env python3
"""Rakuado Analytics CLI — operator tool for the aggregation pipeline.

Usage:
  python scripts/analytics_cli.py snapshot                    # Capture today's snapshot
  python scripts/analytics_cli.py aggregate [YYYY-MM-DD]      # Aggregate a day (default: today)
  python scripts/analytics_cli.py repair YYYY-MM-DD           # Recompute a past day (audited)
  python scripts/analytics_cli.py backfill START END          # Zero-fill missing days + rollups
  python scripts/analytics_cli.py drafts [current|previous]   # Generate payment notice drafts
"""
import asyncio
import json
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def _print(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def cmd_snapshot(args):
    from rakuado.db.engine import async_session
    from rakuado.services.snapshots import capture_snapshot
    async with async_session() as session:
        snapshot = await capture_snapshot(session)
    _print(snapshot.to_dict())


async def cmd_aggregate(args):
    from rakuado.db.engine import async_session
    from rakuado.services.aggregation import aggregate_day
    from rakuado.services.periods import parse_date
    day = parse_date(args[0]) if args else None
    async with async_session() as session:
        result = await aggregate_day(session, day)
    _print(result.to_dict())
    return 0 if result.ok else 1


async def cmd_repair(args):
    from rakuado.db.engine import async_session
    from rakuado.services.aggregation import repair_day
    from rakuado.services.periods import parse_date
    if not args:
        print("repair needs a date (YYYY-MM-DD)")
        return 1
    async with async_session() as session:
        _print(await repair_day(session, parse_date(args[0])))


async def cmd_backfill(args):
    from rakuado.db.engine import async_session
    from rakuado.services.aggregation import backfill_days
    from rakuado.services.periods import parse_date
    if len(args) < 2:
        print("backfill needs START and END dates (YYYY-MM-DD)")
        return 1
    async with async_session() as session:
        _print(await backfill_days(session, parse_date(args[0]), parse_date(args[1])))


async def cmd_drafts(args):
    from rakuado.db.engine import async_session
    from rakuado.services.partner_emails import generate_drafts
    async with async_session() as session:
        result = await generate_drafts(session, args[0] if args else "previous")
    _print(result["summary"])


COMMANDS = {
    "snapshot": cmd_snapshot,
    "aggregate": cmd_aggregate,
    "repair": cmd_repair,
    "backfill": cmd_backfill,
    "drafts": cmd_drafts,
}


def main():
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        print(__doc__)
        sys.exit(1)

    from rakuado.errors import RakuadoError
    from rakuado.logging_config import setup_logging
    from rakuado.startup_checks import validate_settings
    setup_logging()
    validate_settings()
    try:
        code = asyncio.run(COMMANDS[sys.argv[1]](sys.argv[2:]))
    except RakuadoError as e:
        print(f"❌ {e.message}")
        sys.exit(2)
    sys.exit(code or 0)


if __name__ == "__main__":
    main()
