"""
asyncpg pool shared by the AdGate persistence helpers.

Only the thin async helpers in adgate.services (extraction state,
baselines, recommendations, checklists, audit log, alerts) acquire
connections here. Gate, orchestration, baseline and ranking rules are pure
and never import this module.

Pool sizing and the per-statement timeout come from Settings
(db_pool_min_size, db_pool_max_size, db_command_timeout_seconds).

Usage:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_extraction_state_query(), user_id, creative_id)

The API lifespan calls init_db() on startup and close_db() on shutdown;
jobs simply call get_db_pool(), which opens the pool on first use.
"""

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

from adgate.core.config import get_settings


logger = logging.getLogger(__name__)


# =============================================================================
# Pool State
# =============================================================================

_pool: Optional[Pool] = None


# =============================================================================
# Lifecycle
# =============================================================================

async def init_db() -> Pool:
    """
    Open the pool if it is not open yet.

    Raises:
        RuntimeError: DATABASE_URL is not set.
        asyncpg.PostgresError: The server rejected the connection.
        OSError: The host could not be reached.
    """
    global _pool

    if _pool is not None:
        return _pool

    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError('DATABASE_URL is not configured')

    _pool = await asyncpg.create_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout_seconds,
    )
    logger.info(
        "Database pool opened (min=%s, max=%s)",
        settings.db_pool_min_size,
        settings.db_pool_max_size,
    )
    return _pool


async def get_db_pool() -> Pool:
    """Return the open pool, opening it on first use."""
    if _pool is None:
        return await init_db()
    return _pool


async def close_db() -> None:
    """Close the pool. Safe to call when it was never opened."""
    global _pool

    if _pool is None:
        return

    await _pool.close()
    _pool = None
    logger.info("Database pool closed")
