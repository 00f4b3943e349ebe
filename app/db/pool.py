# app/db/pool.py
"""
PostgreSQL connection pool for the proposal engine (psycopg_pool).

Connections run in autocommit so single statements (booking lock updates,
lookups) never leave a connection INTRANS. Proposal transitions that need a
row lock go through ``transaction()``, which holds SELECT ... FOR UPDATE until
the block exits. Every session gets a lock timeout so a stuck transition
cannot pin a proposal row indefinitely.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PROBE_QUERY = "SELECT 1 AS ok"


class DatabasePoolManager:
    """Owns the process-wide AsyncConnectionPool."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    async def initialize(self) -> None:
        """Open the pool and verify one round trip."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        pool_config = settings.get_db_pool_config()
        self.pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_config,
        )

        try:
            await self.pool.open(wait=True)
            self._initialized = True
            await self._probe()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            await self.pool.close()
            self.pool = None
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool initialized",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
            lock_timeout_seconds=settings.DB_LOCK_TIMEOUT_SECONDS,
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)

        settings_sql = sql.SQL(
            "SET application_name = {app}; SET timezone = 'UTC'; "
            "SET statement_timeout = {statement}; SET lock_timeout = {lock}"
        ).format(
            app=sql.Literal(f"swap-engine-{settings.environment}"),
            statement=sql.Literal(f"{int(settings.DB_STATEMENT_TIMEOUT_SECONDS * 1000)}ms"),
            lock=sql.Literal(f"{int(settings.DB_LOCK_TIMEOUT_SECONDS * 1000)}ms"),
        )
        await conn.execute(settings_sql)

    async def _probe(self) -> float:
        """Run the probe query; returns round trip in milliseconds."""
        start_time = time.time()
        async with self.connection() as conn:
            cursor = await conn.execute(PROBE_QUERY)
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database probe returned unexpected result")
        return (time.time() - start_time) * 1000

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        logger.info("Closing database connection pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=settings.DB_POOL_TIMEOUT)
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Autocommit connection from the pool."""
        if not self._initialized or self._closed:
            raise RuntimeError("Database pool not available. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Connection inside a transaction: commit on exit, rollback on exception.

        Usage:
            async with db_pool.transaction() as conn:
                row = await fetch_one("SELECT ... FOR UPDATE", (id,), connection=conn)
                await execute_query("UPDATE ...", (...), connection=conn)
        """
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        """Pool statistics plus probe latency."""
        if not self._initialized or self._closed:
            return {"healthy": False, "error": "Pool not available", "service": "database_pool"}

        try:
            latency_ms = await self._probe()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        pool_size = stats.get("pool_size", 0)
        pool_available = stats.get("pool_available", 0)
        requests_waiting = stats.get("requests_waiting", 0)
        utilization = (pool_size - pool_available) / pool_size * 100 if pool_size else 0

        warnings = []
        if utilization > 80:
            warnings.append(f"High pool utilization: {utilization:.1f}%")
        if requests_waiting:
            warnings.append(f"Requests waiting for connections: {requests_waiting}")

        health = {
            "healthy": utilization < 90 and latency_ms < settings.DB_HEALTH_MAX_LATENCY_MS,
            "service": "database_pool",
            "connection_time_ms": round(latency_ms, 2),
            "pool_stats": {
                "pool_size": pool_size,
                "pool_available": pool_available,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": requests_waiting,
            },
        }
        if warnings:
            health["warnings"] = warnings
        return health


# Global pool instance
db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    """Get database pool health status."""
    return await db_pool.health_check()
