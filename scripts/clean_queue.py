#!/usr/bin/env python3
"""
Remove finished email jobs from the queue store.

Deletes completed and failed job records (all of them by default) and
prints the queue stats afterwards. Waiting, delayed and active jobs are
never touched.

Usage:
    # Remove every completed and failed record
    python scripts/clean_queue.py

    # Keep the last hour of failures for inspection
    python scripts/clean_queue.py --failed-older-than 3600
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from mailqueue.core.bootstrap import build_runtime
from mailqueue.core.config import get_settings
from mailqueue.core.errors import QueueUnavailableError
from mailqueue.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def clean(completed_older_than: float, failed_older_than: float) -> int:
    runtime = build_runtime(get_settings())
    try:
        removed = await runtime.admin.clean(completed_older_than, failed_older_than)
        stats = await runtime.admin.get_stats()
    finally:
        await runtime.close()

    print(f"Queue cleaned: {json.dumps(removed)}")
    print(f"Current queue stats: {json.dumps(stats.to_dict())}")
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Clean completed and failed email jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--completed-older-than",
        type=float,
        default=0.0,
        help="Only remove completed jobs finished more than N seconds ago",
    )
    parser.add_argument(
        "--failed-older-than",
        type=float,
        default=0.0,
        help="Only remove failed jobs finished more than N seconds ago",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    try:
        return asyncio.run(clean(args.completed_older_than, args.failed_older_than))
    except QueueUnavailableError as e:
        logger.error(f"Error cleaning queue: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
