"""Shared asyncpg pool for the subscription store and migrations."""

import asyncio
import logging
from typing import Optional

import asyncpg

from subsync.config import AppConfig, get_config

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0
CLOSE_TIMEOUT = 5.0

_pool: Optional[asyncpg.Pool] = None
_pool_lock = asyncio.Lock()


async def open_pool(config: AppConfig) -> asyncpg.Pool:
    """
    Open a new pool and prove it can reach the database.

    Args:
        config: Settings providing the DSN and pool bounds

    Returns:
        A pool that has answered ``SELECT 1``

    Raises:
        asyncio.TimeoutError: If connecting exceeds CONNECT_TIMEOUT
        RuntimeError: If the pool cannot be created or fails its first check
    """
    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                str(config.db_dsn),
                min_size=config.db_pool_min,
                max_size=config.db_pool_max,
            ),
            timeout=CONNECT_TIMEOUT,
        )
    except asyncio.TimeoutError:
        raise asyncio.TimeoutError(
            f"Database connection timed out after {CONNECT_TIMEOUT:g} seconds. "
            "Ensure PostgreSQL is running and accessible."
        )

    if pool is None:
        raise RuntimeError("Failed to create database pool")

    try:
        await check_pool(pool)
    except Exception as e:
        await pool.close()
        raise RuntimeError(f"Database health check failed: {e}") from e

    logger.info(f"Database pool ready (min={config.db_pool_min}, max={config.db_pool_max})")
    return pool


async def get_pool() -> asyncpg.Pool:
    """Return the process-wide pool, opening it on first use.

    Concurrent first callers share one pool.
    """
    global _pool

    async with _pool_lock:
        if _pool is None:
            _pool = await open_pool(get_config())
    return _pool


async def check_pool(pool: asyncpg.Pool) -> None:
    """Run ``SELECT 1`` on a pooled connection.

    Raises:
        RuntimeError: If the query returns anything other than 1
        asyncpg.PostgresError: On database errors
    """
    async with pool.acquire() as conn:
        result = await conn.fetchval("SELECT 1")
        if result != 1:
            raise RuntimeError(f"Health check failed: expected 1, got {result}")


async def close_pool() -> None:
    """Close the process-wide pool, terminating it if connections will not drain."""
    global _pool

    pool, _pool = _pool, None
    if pool is None:
        return

    try:
        await asyncio.wait_for(pool.close(), timeout=CLOSE_TIMEOUT)
    except asyncio.TimeoutError:
        # A webhook still holding a connection would block close() forever
        logger.warning(
            f"Pool close timed out after {CLOSE_TIMEOUT:g} seconds; terminating"
        )
        pool.terminate()
