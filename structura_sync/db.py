import json
import logging

import asyncpg

from structura_sync.config import DATABASE_URL
from structura_sync.errors import StorageError

logger = logging.getLogger(__name__)

DB_POOL = None  # shared pool of the current process

# InterfaceError ("pool is closing", "another operation is in progress") is not a PostgresError
DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, ConnectionError)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS offline_store (
        key TEXT PRIMARY KEY,
        value JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
"""


async def init_db_pool(dsn: str | None = None):
    """Initializes the asyncpg connection pool."""
    global DB_POOL
    dsn = dsn or DATABASE_URL
    if not dsn:
        logger.error("DATABASE_URL is not set. Cannot initialize DB Pool.")
        return None
    try:
        DB_POOL = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=10)
        logger.info("Database connection pool initialized.")
    except DRIVER_ERRORS:
        logger.exception("Failed to initialize database connection pool")
        DB_POOL = None
    return DB_POOL


async def close_db_pool():
    """Closes the asyncpg connection pool."""
    global DB_POOL
    if DB_POOL:
        await DB_POOL.close()
        logger.info("Database connection pool closed.")
        DB_POOL = None


def get_connection():
    """Returns a connection from the pool.
    Use as an async context manager: async with get_connection() as conn:
    """
    if not DB_POOL:
        logger.error("DB Pool is not initialized. Cannot get connection.")
        raise ConnectionError("Database pool not available")
    return DB_POOL.acquire()


async def init_db(pool=None):
    """Creates the key-value table used by the offline queue."""
    pool = pool or DB_POOL
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA)
    logger.info("offline_store table is ready.")


class PostgresKeyValueStore:
    """JSON values under string keys in the ``offline_store`` table.

    Driver and connection failures are re-raised as StorageError.
    """

    def __init__(self, pool=None):
        self._pool = pool

    def _acquire(self):
        if self._pool is not None:
            return self._pool.acquire()
        return get_connection()

    async def get(self, key: str) -> str | None:
        try:
            async with self._acquire() as conn:
                return await conn.fetchval("SELECT value::text FROM offline_store WHERE key = $1", key)
        except DRIVER_ERRORS as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            async with self._acquire() as conn:
                await conn.execute("""
                    INSERT INTO offline_store (key, value, updated_at)
                    VALUES ($1, $2::jsonb, now())
                    ON CONFLICT (key) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = now()
                """, key, value)
        except DRIVER_ERRORS as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._acquire() as conn:
                await conn.execute("DELETE FROM offline_store WHERE key = $1", key)
        except DRIVER_ERRORS as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e

    async def acquire_lease(self, key: str, owner: str, ttl_ms: int, now_ms: int) -> bool:
        """Takes the lease if it is free, expired, or already ours. Check and set is a single statement."""
        record = json.dumps({"owner": owner, "draining_since": now_ms})
        try:
            async with self._acquire() as conn:
                acquired = await conn.fetchval("""
                    INSERT INTO offline_store (key, value, updated_at)
                    VALUES ($1, $2::jsonb, now())
                    ON CONFLICT (key) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = now()
                    WHERE (offline_store.value->>'draining_since')::bigint < $3
                       OR offline_store.value->>'owner' = $4
                    RETURNING key
                """, key, record, now_ms - ttl_ms, owner)
        except DRIVER_ERRORS as e:
            raise StorageError(f"Failed to acquire lease '{key}': {e}") from e
        return acquired is not None

    async def release_lease(self, key: str, owner: str) -> None:
        try:
            async with self._acquire() as conn:
                await conn.execute(
                    "DELETE FROM offline_store WHERE key = $1 AND value->>'owner' = $2", key, owner
                )
        except DRIVER_ERRORS as e:
            raise StorageError(f"Failed to release lease '{key}': {e}") from e
