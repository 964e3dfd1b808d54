"""
Tests for the Postgres store with the db helpers patched out.
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest
from psycopg import errors as pg_errors
from psycopg import sql

from slotswap.db.helpers import DatabaseError, execute_query
from slotswap.features.swaps.domain import SlotChanges, SlotStatus, SwapRequestStatus
from slotswap.features.swaps.repository import postgres
from slotswap.features.swaps.repository.postgres import (
    PostgresSlotRegistry,
    PostgresSwapLedger,
    PostgresSwapStore,
)


SLOT_COLUMNS = ("status", "owner_id", "title", "start_time", "end_time")


def _text(query) -> str:
    if isinstance(query, sql.Composed):
        return "".join(_text(part) for part in query)
    if isinstance(query, sql.Identifier):
        return next(name for name in SLOT_COLUMNS if query == sql.Identifier(name))
    return query.as_string(None)


def _rendered(query) -> str:
    return " ".join(_text(query).split())


@pytest.mark.asyncio
async def test_slot_compare_and_set_names_expected_state():
    execute = AsyncMock(return_value=1)

    with patch.object(postgres, "execute_query", execute):
        locked = await PostgresSlotRegistry().compare_and_set(
            "slot-1",
            expected_status=SlotStatus.SWAPPABLE,
            expected_owner_id="alice",
            changes=SlotChanges(status=SlotStatus.SWAP_PENDING),
        )

    assert locked is True
    query, params = execute.await_args.args
    assert _rendered(query) == (
        "UPDATE slots SET status = %s, updated_at = NOW() "
        "WHERE id = %s AND status = %s AND owner_id = %s"
    )
    assert params == ("SWAP_PENDING", "slot-1", "SWAPPABLE", "alice")


@pytest.mark.asyncio
async def test_slot_compare_and_set_exchange_sets_owner():
    execute = AsyncMock(return_value=1)

    with patch.object(postgres, "execute_query", execute):
        await PostgresSlotRegistry().compare_and_set(
            "slot-1",
            expected_status=SlotStatus.SWAP_PENDING,
            expected_owner_id="alice",
            changes=SlotChanges(status=SlotStatus.BUSY, owner_id="bob"),
        )

    query, params = execute.await_args.args
    assert "SET status = %s, owner_id = %s," in _rendered(query)
    assert params == ("BUSY", "bob", "slot-1", "SWAP_PENDING", "alice")


@pytest.mark.asyncio
async def test_slot_compare_and_set_no_match_returns_false():
    with patch.object(postgres, "execute_query", AsyncMock(return_value=0)):
        locked = await PostgresSlotRegistry().compare_and_set(
            "slot-1",
            expected_status=SlotStatus.SWAPPABLE,
            expected_owner_id="alice",
            changes=SlotChanges(status=SlotStatus.SWAP_PENDING),
        )

    assert locked is False


@pytest.mark.asyncio
async def test_slot_compare_and_set_requires_a_change():
    with pytest.raises(ValueError):
        await PostgresSlotRegistry().compare_and_set(
            "slot-1",
            expected_status=SlotStatus.SWAPPABLE,
            expected_owner_id="alice",
            changes=SlotChanges(),
        )


@pytest.mark.asyncio
async def test_request_status_update_is_conditional():
    connection = MagicMock()
    execute = AsyncMock(side_effect=[1, 0])

    with patch.object(postgres, "execute_query", execute):
        ledger = PostgresSwapLedger(connection)
        first = await ledger.compare_and_set_status(
            "req-1",
            expected_status=SwapRequestStatus.PENDING,
            new_status=SwapRequestStatus.ACCEPTED,
        )
        second = await ledger.compare_and_set_status(
            "req-1",
            expected_status=SwapRequestStatus.PENDING,
            new_status=SwapRequestStatus.REJECTED,
        )

    assert (first, second) == (True, False)
    query, params = execute.await_args_list[0].args
    assert "WHERE id = %s AND status = %s" in query
    assert params == ("ACCEPTED", "req-1", "PENDING")
    assert execute.await_args_list[0].kwargs["connection"] is connection


@pytest.mark.asyncio
async def test_execute_query_marks_deadlock_as_contention():
    connection = MagicMock()
    connection.execute = AsyncMock(side_effect=pg_errors.DeadlockDetected("deadlock detected"))

    with pytest.raises(DatabaseError) as exc_info:
        await execute_query("UPDATE slots SET status = %s", ("BUSY",), connection=connection)

    assert exc_info.value.contention is True
    assert exc_info.value.operation == "execute"


@pytest.mark.asyncio
async def test_execute_query_other_errors_are_not_contention():
    connection = MagicMock()
    connection.execute = AsyncMock(side_effect=psycopg.OperationalError("connection lost"))

    with pytest.raises(DatabaseError) as exc_info:
        await execute_query("UPDATE slots SET status = %s", ("BUSY",), connection=connection)

    assert exc_info.value.contention is False


@pytest.mark.parametrize(
    "error, contention",
    [
        (pg_errors.SerializationFailure("could not serialize access"), True),
        (pg_errors.DeadlockDetected("deadlock detected"), True),
        (psycopg.OperationalError("server closed the connection"), False),
    ],
)
@pytest.mark.asyncio
async def test_transaction_wraps_commit_failures(error, contention):
    @asynccontextmanager
    async def failing_transaction():
        yield MagicMock()
        raise error

    pool = MagicMock()
    pool.transaction = failing_transaction

    with patch.object(postgres, "db_pool", pool):
        with pytest.raises(DatabaseError) as exc_info:
            async with PostgresSwapStore().transaction() as session:
                assert isinstance(session.slots, PostgresSlotRegistry)

    assert exc_info.value.operation == "transaction"
    assert exc_info.value.contention is contention
    assert exc_info.value.__cause__ is error


@pytest.mark.asyncio
async def test_transaction_session_is_bound_to_one_connection():
    connection = MagicMock()

    @asynccontextmanager
    async def transaction():
        yield connection

    pool = MagicMock()
    pool.transaction = transaction
    execute = AsyncMock(return_value=1)

    with patch.object(postgres, "db_pool", pool), patch.object(postgres, "execute_query", execute):
        async with PostgresSwapStore().transaction() as session:
            await session.slots.compare_and_set(
                "slot-1",
                expected_status=SlotStatus.SWAPPABLE,
                expected_owner_id="alice",
                changes=SlotChanges(status=SlotStatus.SWAP_PENDING),
            )
            await session.requests.compare_and_set_status(
                "req-1",
                expected_status=SwapRequestStatus.PENDING,
                new_status=SwapRequestStatus.ACCEPTED,
            )

    assert [call.kwargs["connection"] for call in execute.await_args_list] == [
        connection,
        connection,
    ]
