"""
Database Setup
==============
Engine construction and store selection from a database URL.

Usage:
    store = create_store("sqlite+aiosqlite:///./accessotp.db")
    await store.create_schema()
"""

from typing import Any, Dict

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine as sa_create_async_engine
from sqlalchemy.pool import StaticPool

from .base import Store
from .memory import InMemoryStore
from .sql import SQLAlchemyStore

logger = structlog.get_logger(__name__)

MEMORY_URL = "memory://"


def create_async_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create the async engine for ``database_url``.

    Pool sizing only applies to server databases. SQLite in-memory URLs get a
    ``StaticPool`` so every session shares the one connection holding the data.

    Args:
        database_url: ``postgresql+asyncpg://...`` or ``sqlite+aiosqlite:///...``
        pool_size: Connection pool size (server databases)
        max_overflow: Max overflow connections (server databases)
        pool_pre_ping: Enable connection health checks
        echo: Log SQL statements
    """
    kwargs: Dict[str, Any] = {"echo": echo}

    if database_url.startswith("sqlite"):
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
        )

    engine = sa_create_async_engine(database_url, **kwargs)
    logger.info("Database engine initialized", dialect=engine.dialect.name)
    return engine


def create_store(database_url: str, echo: bool = False) -> Store:
    """Pick the store implementation for ``database_url``."""
    if database_url == MEMORY_URL:
        return InMemoryStore()
    return SQLAlchemyStore(create_async_engine(database_url, echo=echo))
