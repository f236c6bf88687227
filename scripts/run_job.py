#!/usr/bin/env python3
"""
One-shot runner for the scheduled lifecycle jobs.

Meant to be invoked by cron (or a container scheduler) instead of calling the
HTTP job endpoints. Each run builds its own engine and clients, runs the job
once, writes the health check file and exits.

Usage:
    python scripts/run_job.py reminders
    python scripts/run_job.py push-reminders
    python scripts/run_job.py subscription-audit

Exit code is 0 when the run completed (even with per-item failures) and 1
when the run itself failed.
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from database.connection import Database
from database.repository import SqlAlchemyStore
from lifecycle.workers.health import update_health_check
from lifecycle.workers.push_reminder_dispatcher import dispatch_push_reminders
from lifecycle.workers.reminder_dispatcher import dispatch_queued_reminders
from lifecycle.workers.subscription_audit import reconcile_subscriptions
from shared.config import Settings, get_settings
from shared.logging_config import configure_logging
from shared.notification_client import NotificationClient
from shared.paypal_client import PayPalClient

logger = logging.getLogger(__name__)

# job -> (processed, errors, body)
JobResult = tuple[int, int, dict[str, Any]]


async def run_reminders(store: SqlAlchemyStore, settings: Settings) -> JobResult:
    summary = await dispatch_queued_reminders(store, NotificationClient(settings), settings)
    return summary.processed, summary.failed, summary.to_dict()


async def run_push_reminders(store: SqlAlchemyStore, settings: Settings) -> JobResult:
    body = await dispatch_push_reminders(store, NotificationClient(settings))
    processed = sum(result["processed"] for result in body["results"].values())
    errors = sum(len(result["errors"]) for result in body["results"].values())
    return processed, errors, body


async def run_subscription_audit(store: SqlAlchemyStore, settings: Settings) -> JobResult:
    summary = await reconcile_subscriptions(store, PayPalClient(settings))
    return summary.expired_trials + summary.synced, summary.failed, summary.to_dict()


JOBS: dict[str, Callable[[SqlAlchemyStore, Settings], Awaitable[JobResult]]] = {
    "reminders": run_reminders,
    "push-reminders": run_push_reminders,
    "subscription-audit": run_subscription_audit,
}


async def run_job(job_name: str, settings: Settings | None = None) -> int:
    """Run one job and return the process exit code."""
    settings = settings or get_settings()
    database = Database.from_settings(settings)
    store = SqlAlchemyStore(database)
    health_name = job_name.replace("-", "_")

    logger.info(f"Running job {job_name}", extra={"job_name": health_name})
    try:
        processed, errors, body = await JOBS[job_name](store, settings)
    except Exception as e:
        logger.error(f"Job {job_name} failed: {e}", exc_info=True, extra={"job_name": health_name})
        update_health_check(
            job_name=health_name,
            last_run=datetime.now(UTC),
            status="unhealthy",
            processed=0,
            errors=1,
        )
        return 1
    finally:
        await database.dispose()

    update_health_check(
        job_name=health_name,
        last_run=datetime.now(UTC),
        status="healthy" if errors == 0 else "unhealthy",
        processed=processed,
        errors=errors,
    )
    print(json.dumps(body, indent=2, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a scheduled lifecycle job once.")
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run")
    args = parser.parse_args(argv)

    configure_logging()
    return asyncio.run(run_job(args.job))


if __name__ == "__main__":
    sys.exit(main())
