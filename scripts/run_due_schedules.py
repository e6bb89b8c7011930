from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from lifecycleops.core.config import get_settings
from lifecycleops.core.logging import configure_logging
from lifecycleops.services.container import LifecycleServices, build_services


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Execute scheduled offboarding runs that are due")
    parser.add_argument("--limit", type=int, default=None, help="Schedules claimed per scan")
    parser.add_argument("--loop", action="store_true", help="Keep scanning instead of exiting after one pass")
    parser.add_argument("--interval-s", type=float, default=60.0, help="Seconds between scans with --loop")
    return parser


async def scan_once(services: LifecycleServices, *, limit: int | None = None) -> int:
    records = await services.schedules.run_due(limit=limit)
    for record in records:
        print(f"schedule_id={record.schedule_id} status={record.status} run_id={record.run_id}")
    return len(records)


async def _run(args: argparse.Namespace) -> int:
    services = build_services()
    limit = args.limit or get_settings().schedule_scan_limit
    if not args.loop:
        processed = await scan_once(services, limit=limit)
        print(f"processed_schedules={processed}")
        return 0
    while True:
        processed = await scan_once(services, limit=limit)
        logger.info("schedule_scan_completed processed=%s", processed)
        await asyncio.sleep(args.interval_s)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0
    except Exception as exc:  # noqa: BLE001 - cron wrappers key off the exit code
        print(f"run_due_schedules failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
