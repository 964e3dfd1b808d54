# slotswap/db/helpers.py
"""
Database helper functions for common patterns.
Reduces boilerplate in the repository layer.
"""

from typing import Any

import psycopg
from psycopg import errors as pg_errors
from psycopg import sql

from slotswap.db.pool import db_pool
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Plain strings or statements composed with psycopg.sql
Query = str | sql.Composable

# Aborts the server uses to resolve lock contention between transactions
CONTENTION_ERRORS = (pg_errors.DeadlockDetected, pg_errors.SerializationFailure)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        recoverable: bool = True,
        contention: bool = False,
    ):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable
        self.contention = contention


def is_contention(error: Exception) -> bool:
    """True when the server aborted the statement to break a lock conflict."""
    return isinstance(error, CONTENTION_ERRORS)


async def fetch_one(
    query: Query, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection (e.g. inside a transaction)

    Returns:
        Dict with row data or None if no results
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()
        else:
            async with db_pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchone()

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=str(query)[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}", operation="fetch_one", contention=is_contention(e)
        ) from e


async def fetch_all(
    query: Query, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        List of dicts with row data
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        else:
            async with db_pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=str(query)[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}", operation="fetch_all", contention=is_contention(e)
        ) from e


async def execute_query(
    query: Query, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute query and return number of affected rows.

    Conditional updates rely on the row count: 0 means the expected
    prior state no longer matched.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Number of affected rows
    """
    try:
        if connection:
            cursor = await connection.execute(query, params)
            return cursor.rowcount
        else:
            async with db_pool.connection() as conn:
                cursor = await conn.execute(query, params)
                return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=str(query)[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}", operation="execute", contention=is_contention(e)
        ) from e


async def execute_script(statements: list[str]) -> None:
    """
    Run DDL statements in a single transaction.

    Statements must be idempotent (IF NOT EXISTS) so startup can call this
    on every boot.
    """
    try:
        async with db_pool.transaction() as conn:
            for statement in statements:
                await conn.execute(statement)

        logger.debug("Schema statements applied", statement_count=len(statements))

    except psycopg.Error as e:
        logger.error("Schema bootstrap failed", statement_count=len(statements), error=str(e))
        raise DatabaseError(f"Schema bootstrap failed: {e}", operation="schema") from e
