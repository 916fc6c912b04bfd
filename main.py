"""
Notification service entry point.

Architecture:
- One Python process, one asyncio event loop
- Peer services running concurrently on that loop:
  1. Dispatcher worker pools (one per channel) draining the delivery queue,
     plus the periodic recovery sweep that feeds it
  2. APScheduler triggers (daily summaries, reminders)

On startup the pipeline releases stale claims and rebuilds the delivery
queue from the job store before any worker starts, so a restart never
loses a pending job.

Run with: python main.py [--no-scheduler] [--no-workers]
One-shot trigger runs: python main.py --run-daily-summaries | --run-reminders
Test message: python main.py --send-test USER_ID TYPE CHANNEL
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

# Load .env.local first (if exists), then .env as fallback
load_dotenv(project_root / ".env.local")
load_dotenv()

import sentry_sdk

from fitflow.config import check_required_env_vars
from fitflow.database import close_engine
from fitflow.notifications import (
    init_pipeline,
    init_scheduler,
    notify_test,
    schedule_appointment_reminders,
    schedule_daily_summaries,
    shutdown_pipeline,
    shutdown_scheduler,
)
from fitflow.notifications.scheduler import get_trigger_generator

logger = logging.getLogger("fitflow")


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    for noisy in ("apscheduler", "httpx", "LiteLLM"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def init_sentry() -> None:
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("SENTRY_DSN not set, error reporting disabled")
        return
    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        traces_sample_rate=0.0,
    )
    logger.info("Sentry initialized")


async def run_once(args: argparse.Namespace) -> None:
    """Run a trigger once or queue a test message, then exit."""
    pipeline = init_pipeline()
    try:
        if args.run_daily_summaries:
            counts = await schedule_daily_summaries(pipeline, generate=get_trigger_generator())
            print(f"Daily summaries: {counts}")
        if args.run_reminders:
            counts = await schedule_appointment_reminders(pipeline, generate=get_trigger_generator())
            print(f"Appointment reminders: {counts}")
        if args.send_test:
            user_id, notification_type, channel = args.send_test
            # Delivered by the running service on its next recovery sweep
            job_id = await notify_test(int(user_id), notification_type, channel)
            print(f"Test notification queued: {job_id}")
    finally:
        await shutdown_pipeline()
        await close_engine()


async def serve(args: argparse.Namespace) -> None:
    """Run workers and scheduler until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    pipeline = init_pipeline()

    if args.no_workers:
        logger.info("Workers disabled (--no-workers)")
    else:
        await pipeline.start()

    if args.no_scheduler:
        logger.info("Scheduler disabled (--no-scheduler)")
    else:
        init_scheduler(pipeline)

    logger.info("Notification service running")
    await stop.wait()

    logger.info("Shutting down...")
    shutdown_scheduler()
    await shutdown_pipeline()
    await close_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description="FitFlow notification service")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Don't start the recurring triggers (workers only)",
    )
    parser.add_argument(
        "--no-workers",
        action="store_true",
        help="Don't start delivery workers (triggers only)",
    )
    parser.add_argument(
        "--run-daily-summaries",
        action="store_true",
        help="Run the daily summary trigger once and exit",
    )
    parser.add_argument(
        "--run-reminders",
        action="store_true",
        help="Run the appointment reminder trigger once and exit",
    )
    parser.add_argument(
        "--send-test",
        nargs=3,
        metavar=("USER_ID", "TYPE", "CHANNEL"),
        help="Queue a test notification for a user on one channel and exit",
    )
    args = parser.parse_args()

    configure_logging()
    init_sentry()

    ok, warnings = check_required_env_vars()
    for warning in warnings:
        logger.warning(warning.strip())
    if not ok:
        sys.exit(1)
    if args.no_workers and args.no_scheduler:
        logger.warning("Both workers and scheduler disabled; nothing to do")

    if args.run_daily_summaries or args.run_reminders or args.send_test:
        asyncio.run(run_once(args))
    else:
        asyncio.run(serve(args))


if __name__ == "__main__":
    main()
