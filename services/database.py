"""
=====================================================
AI Phone Receptionist - Async Database Connection Pool
=====================================================
One asyncpg pool per process, shared by the call record store and
closed on app shutdown. Sizing comes from the DB_POOL_* settings.
"""

import asyncpg
from typing import Optional
from loguru import logger
from config.settings import get_settings


_pool: Optional[asyncpg.Pool] = None


async def get_db_pool() -> asyncpg.Pool:
    """Return the process-wide pool, opening it on first use."""
    global _pool
    if _pool is not None:
        return _pool

    settings = get_settings()
    try:
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    except Exception as e:
        logger.error(f"Database: Could not open connection pool: {e}")
        raise

    logger.info(
        f"Database: Pool open (min={settings.db_pool_min_size}, max={settings.db_pool_max_size})"
    )
    return _pool


async def close_db_pool() -> None:
    global _pool
    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    logger.info("Database: Pool closed")
