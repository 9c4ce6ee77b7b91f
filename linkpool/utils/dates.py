"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import datetime

import pendulum

DEFAULT_TZ = "UTC"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utc_now() -> pendulum.DateTime:
    return pendulum.now("UTC")


def iso_timestamp(value: datetime | None = None) -> str:
    """ISO-8601 string in UTC, as stored on price history entries."""
    moment = pendulum.instance(value) if value is not None else utc_now()
    return moment.in_timezone("UTC").isoformat()

