"""Core database connection pool management."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import psycopg
from psycopg_pool import AsyncConnectionPool

from formtrack.config import PostgresSettings

_logger = logging.getLogger("formtrack.db")


async def open_pool(settings: PostgresSettings) -> AsyncConnectionPool:
    """Open a connection pool and make sure the analytics tables exist."""
    pool = AsyncConnectionPool(
        settings.get_dsn(),
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        timeout=settings.pool_timeout,
        max_lifetime=settings.pool_max_lifetime,
        max_idle=settings.pool_max_idle,
        check=AsyncConnectionPool.check_connection,
        open=False,
    )
    await pool.open()
    _logger.info(
        "Database connection pool initialized (min=%d, max=%d, timeout=%ds)",
        settings.pool_min_size,
        settings.pool_max_size,
        settings.pool_timeout,
    )
    # Import here to avoid circular imports
    from formtrack.db.schema import ensure_schema

    await ensure_schema(pool)
    return pool


async def close_pool(pool: AsyncConnectionPool) -> None:
    await pool.close()
    _logger.info("Database connection pool closed")


@asynccontextmanager
async def get_connection(
    pool: AsyncConnectionPool, autocommit: bool = True
) -> AsyncIterator[psycopg.AsyncConnection]:
    async with pool.connection() as conn:
        if autocommit:
            await conn.set_autocommit(True)
        yield conn


def get_pool_stats(pool: AsyncConnectionPool | None) -> dict[str, object]:
    """Get current pool statistics for monitoring."""
    if pool is None:
        return {"status": "not_initialized"}
    stats = pool.get_stats()
    return {
        "status": "active",
        "size": stats.get("pool_size"),
        "available": stats.get("pool_available"),
        "waiting": stats.get("requests_waiting"),
    }
