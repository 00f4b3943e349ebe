# app/db/helpers.py
"""
Query helpers for the repository layer.

Each helper runs on the given connection (required inside a transaction, so
statements share the row locks taken there) or borrows one from the pool.
psycopg errors are translated to DatabaseError so services never import
psycopg.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import psycopg
from psycopg import errors as pg_errors

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class UniqueViolationError(DatabaseError):
    """A write collided with a unique index."""

    def __init__(self, message: str, operation: str = "unknown", constraint: str | None = None):
        super().__init__(message, operation=operation, recoverable=False)
        self.constraint = constraint


class LockTimeoutError(DatabaseError):
    """A row lock was not granted within the session lock timeout."""


def _translate_error(e: psycopg.Error, operation: str) -> DatabaseError:
    if isinstance(e, pg_errors.UniqueViolation):
        return UniqueViolationError(
            f"Unique constraint violated: {e}",
            operation=operation,
            constraint=getattr(e.diag, "constraint_name", None),
        )
    if isinstance(e, pg_errors.LockNotAvailable):
        return LockTimeoutError(f"Row lock not available: {e}", operation=operation)
    return DatabaseError(
        f"Query failed: {e}",
        operation=operation,
        recoverable=isinstance(e, psycopg.OperationalError),
    )


async def _run(
    operation: str,
    query: str,
    params: tuple,
    connection: psycopg.AsyncConnection | None,
    handle: Callable[[psycopg.AsyncCursor], Awaitable[T]],
) -> T:
    try:
        if connection is not None:
            cursor = await connection.execute(query, params)
            return await handle(cursor)
        async with db_pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return await handle(cursor)
    except psycopg.Error as e:
        logger.error(
            "Database query failed",
            operation=operation,
            query=query.strip()[:100],
            error=str(e),
            error_type=type(e).__name__,
        )
        raise _translate_error(e, operation) from e


async def _first(cursor: psycopg.AsyncCursor) -> dict[str, Any] | None:
    return await cursor.fetchone()


async def _all(cursor: psycopg.AsyncCursor) -> list[dict[str, Any]]:
    return await cursor.fetchall()


async def _rowcount(cursor: psycopg.AsyncCursor) -> int:
    return cursor.rowcount


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """Single row as a dict, or None."""
    return await _run("fetch_one", query, params, connection, _first)


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """All rows as dicts."""
    return await _run("fetch_all", query, params, connection, _all)


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute a write and return the affected row count.

    Conditional updates (``... WHERE status = %s``) rely on this count to tell
    whether the check-and-set won.
    """
    return await _run("execute", query, params, connection, _rowcount)
