#!/usr/bin/env python3
"""
Email worker process.

Pulls email jobs from the queue and delivers them through the configured
mail transport. Runs until SIGTERM/SIGINT, then waits for in-flight jobs
(up to WORKER_SHUTDOWN_TIMEOUT_SECONDS) before exiting.

Usage:
    # Run until stopped
    python scripts/start_worker.py

    # Process everything currently eligible, then exit
    python scripts/start_worker.py --once

    # Override concurrency and expose Prometheus metrics
    python scripts/start_worker.py --concurrency 10 --metrics-port 9108

Environment Variables:
    REDIS_URL                       Queue store
    QUEUE_BACKEND                   "redis" (default) or "memory"
    QUEUE_NAME                      Queue to consume (default: email)
    WORKER_CONCURRENCY              Max in-flight jobs (default: 5)
    WORKER_POLL_INTERVAL_SECONDS    Idle poll interval (default: 1.0)
    WORKER_METRICS_PORT             Metrics port, 0 disables (default: 0)
    MAIL_BACKEND                    "log" (default) or "http"
"""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import Optional

from prometheus_client import start_http_server

from mailqueue.core.bootstrap import build_runtime, build_worker_config
from mailqueue.core.config import get_settings
from mailqueue.core.job_queue.worker import setup_signal_handlers
from mailqueue.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def run(once: bool, concurrency: Optional[int], metrics_port: int) -> int:
    settings = get_settings()
    runtime = build_runtime(settings)

    config = build_worker_config(settings)
    if concurrency:
        config = dataclasses.replace(config, concurrency=concurrency)
    worker = runtime.build_worker(config)

    if metrics_port and not once:
        start_http_server(metrics_port)
        logger.info(f"Worker metrics endpoint running on port {metrics_port}")

    logger.info(
        f"Starting email worker (environment={settings.ENVIRONMENT}, "
        f"backend={settings.QUEUE_BACKEND}, queue={settings.QUEUE_NAME})"
    )
    try:
        if once:
            processed = await worker.drain()
            logger.info(f"Processed {processed} jobs", extra={"count": processed})
        else:
            setup_signal_handlers(worker)
            await worker.start()
    finally:
        await runtime.close()
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run the email queue worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--once", action="store_true", help="Drain eligible jobs and exit")
    parser.add_argument("--concurrency", type=int, default=None, help="Override WORKER_CONCURRENCY")
    parser.add_argument("--metrics-port", type=int, default=None, help="Override WORKER_METRICS_PORT")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging("DEBUG" if args.verbose else settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    metrics_port = args.metrics_port if args.metrics_port is not None else settings.WORKER_METRICS_PORT
    try:
        return asyncio.run(run(args.once, args.concurrency, metrics_port))
    except Exception:
        logger.exception("Email worker failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
