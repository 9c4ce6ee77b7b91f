"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import os

from celery import Celery

from linkpool.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
check_interval_minutes = int(os.environ.get("CHECK_STOCK_INTERVAL_MINUTES", "15"))

celery_app = Celery("linkpool", broker=broker_url, backend=backend_url, include=["linkpool.jobs.check_stock"])
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "check-stock": {
        "task": "linkpool.jobs.check_stock.run",
        "schedule": check_interval_minutes * 60.0,
        "options": {"expires": check_interval_minutes * 60.0},
    },
}


@celery_app.task(name="linkpool.jobs.check_stock.run")
def run_check_stock_task(limit: int | None = None) -> dict:  # pragma: no cover - executed by worker
    import asyncio

    from linkpool.jobs.check_stock import run_check_stock

    report = asyncio.run(run_check_stock(limit))
    return report.as_dict()


@celery_app.task(name="linkpool.jobs.backfill.run")
def run_backfill_task() -> dict:  # pragma: no cover - executed by worker
    from dataclasses import asdict

    from linkpool.db.session import create_engine_from_env
    from linkpool.jobs.backfill import backfill_link_pool

    return asdict(backfill_link_pool(create_engine_from_env()))
