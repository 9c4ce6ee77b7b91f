"""Database engine helpers."""

from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


def create_engine_from_env() -> Engine:
    """Create an engine from DATABASE_URL.

    Raises KeyError when the variable is missing; entry points treat that as a
    fatal configuration error.
    """
    url = os.environ["DATABASE_URL"]
    return create_database_engine(url)


def create_database_engine(url: str) -> Engine:
    if url.startswith("sqlite") and ":memory:" in url:
        # one shared connection, otherwise every checkout sees an empty database
        return create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, pool_pre_ping=True, future=True)
