"""
Postgres persistence for slots, swap requests and group membership.

Conditional updates are single `UPDATE ... WHERE status = %s AND owner_id = %s`
statements. Inside a transaction Postgres holds the row lock until commit,
so a concurrent writer blocks, re-evaluates the predicate against the
committed row and reports 0 affected rows instead of overwriting it.
"""

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager

import psycopg
from psycopg import sql

from slotswap.db.helpers import (
    DatabaseError,
    execute_query,
    execute_script,
    fetch_all,
    fetch_one,
    is_contention,
)
from slotswap.db.pool import db_pool
from slotswap.features.swaps.domain import (
    Member,
    Slot,
    SlotChanges,
    SlotStatus,
    SwapRequest,
    SwapRequestStatus,
)
from slotswap.features.swaps.repository.base import (
    MemberDirectory,
    SlotRegistry,
    StoreSession,
    SwapLedger,
    SwapStore,
)
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        current_group_id TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_members (
        group_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (group_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_group_members_user ON group_members (user_id)",
    """
    CREATE TABLE IF NOT EXISTS slots (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        start_time TIMESTAMPTZ NOT NULL,
        end_time TIMESTAMPTZ NOT NULL,
        status TEXT NOT NULL DEFAULT 'BUSY'
            CHECK (status IN ('BUSY', 'SWAPPABLE', 'SWAP_PENDING')),
        owner_id TEXT NOT NULL,
        group_id TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT slots_valid_interval CHECK (start_time < end_time)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_slots_status ON slots (status)",
    "CREATE INDEX IF NOT EXISTS idx_slots_owner_status ON slots (owner_id, status)",
    """
    CREATE TABLE IF NOT EXISTS swap_requests (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL DEFAULT 'PENDING'
            CHECK (status IN ('PENDING', 'ACCEPTED', 'REJECTED')),
        initiator_id TEXT NOT NULL,
        receiver_id TEXT NOT NULL,
        initiator_slot_id TEXT NOT NULL,
        receiver_slot_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT swap_requests_distinct_parties CHECK (initiator_id <> receiver_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_swap_requests_receiver_status
        ON swap_requests (receiver_id, status)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_swap_requests_initiator_status
        ON swap_requests (initiator_id, status)
    """,
    # Second line of defence for the one-active-request-per-slot invariant
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_swap_requests_pending_initiator_slot
        ON swap_requests (initiator_slot_id) WHERE status = 'PENDING'
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_swap_requests_pending_receiver_slot
        ON swap_requests (receiver_slot_id) WHERE status = 'PENDING'
    """,
]

SLOT_COLUMNS = """
    id, title, start_time, end_time, status, owner_id, group_id, created_at, updated_at
"""

REQUEST_COLUMNS = """
    id, status, initiator_id, receiver_id, initiator_slot_id, receiver_slot_id,
    created_at, updated_at
"""


async def ensure_schema() -> None:
    """Create tables and indexes if they do not exist yet."""
    await execute_script(SCHEMA_STATEMENTS)
    logger.info("Swap schema ensured", statement_count=len(SCHEMA_STATEMENTS))


def _row_to_slot(row: dict | None) -> Slot | None:
    if not row:
        return None

    return Slot(
        id=str(row["id"]),
        title=row["title"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        status=SlotStatus(row["status"]),
        owner_id=str(row["owner_id"]),
        group_id=str(row["group_id"]) if row.get("group_id") else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_request(row: dict | None) -> SwapRequest | None:
    if not row:
        return None

    return SwapRequest(
        id=str(row["id"]),
        status=SwapRequestStatus(row["status"]),
        initiator_id=str(row["initiator_id"]),
        receiver_id=str(row["receiver_id"]),
        initiator_slot_id=str(row["initiator_slot_id"]),
        receiver_slot_id=str(row["receiver_slot_id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_member(row: dict | None) -> Member | None:
    if not row:
        return None

    return Member(
        id=str(row["id"]),
        name=row["name"],
        email=row["email"],
        current_group_id=str(row["current_group_id"]) if row.get("current_group_id") else None,
    )


class PostgresSlotRegistry(SlotRegistry):
    """Slots table access, optionally bound to a transaction connection."""

    def __init__(self, connection: psycopg.AsyncConnection | None = None):
        self._connection = connection

    async def get(self, slot_id: str) -> Slot | None:
        query = f"SELECT {SLOT_COLUMNS} FROM slots WHERE id = %s"
        row = await fetch_one(query, (slot_id,), connection=self._connection)
        return _row_to_slot(row)

    async def get_many(self, slot_ids: Iterable[str]) -> dict[str, Slot]:
        ids = list(dict.fromkeys(slot_ids))
        if not ids:
            return {}

        query = f"SELECT {SLOT_COLUMNS} FROM slots WHERE id = ANY(%s)"
        rows = await fetch_all(query, (ids,), connection=self._connection)
        return {slot.id: slot for slot in map(_row_to_slot, rows)}

    async def create(self, slot: Slot) -> Slot:
        query = f"""
            INSERT INTO slots (
                id, title, start_time, end_time, status, owner_id, group_id,
                created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {SLOT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                slot.id,
                slot.title,
                slot.start_time,
                slot.end_time,
                slot.status.value,
                slot.owner_id,
                slot.group_id,
                slot.created_at,
                slot.updated_at,
            ),
            connection=self._connection,
        )
        if not row:
            raise DatabaseError("Failed to create slot", operation="create_slot")

        logger.info("Slot created", slot_id=slot.id, owner_id=slot.owner_id)
        return _row_to_slot(row)

    async def compare_and_set(
        self,
        slot_id: str,
        *,
        expected_status: SlotStatus,
        expected_owner_id: str,
        changes: SlotChanges,
    ) -> bool:
        if changes.is_empty():
            raise ValueError("compare_and_set needs at least one change")

        columns = {
            "status": changes.status.value if changes.status else None,
            "owner_id": changes.owner_id,
            "title": changes.title,
            "start_time": changes.start_time,
            "end_time": changes.end_time,
        }
        assignments = []
        params: list = []
        for column, value in columns.items():
            if value is None:
                continue
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
            params.append(value)

        query = sql.SQL(
            "UPDATE slots SET {assignments}, updated_at = NOW() "
            "WHERE id = %s AND status = %s AND owner_id = %s"
        ).format(assignments=sql.SQL(", ").join(assignments))
        params.extend([slot_id, expected_status.value, expected_owner_id])

        affected = await execute_query(query, tuple(params), connection=self._connection)
        if affected == 0:
            logger.info(
                "Slot conditional update did not match",
                slot_id=slot_id,
                expected_status=expected_status.value,
            )
        return affected > 0

    async def delete_if(
        self, slot_id: str, *, expected_status: SlotStatus, expected_owner_id: str
    ) -> bool:
        query = "DELETE FROM slots WHERE id = %s AND status = %s AND owner_id = %s"
        affected = await execute_query(
            query,
            (slot_id, expected_status.value, expected_owner_id),
            connection=self._connection,
        )
        return affected > 0

    async def list_for_owner(self, owner_id: str, group_id: str) -> list[Slot]:
        query = f"""
            SELECT {SLOT_COLUMNS}
            FROM slots
            WHERE owner_id = %s AND group_id = %s
            ORDER BY start_time ASC
        """
        rows = await fetch_all(query, (owner_id, group_id), connection=self._connection)
        return [_row_to_slot(row) for row in rows]

    async def list_swappable(self, owner_ids: Iterable[str]) -> list[Slot]:
        ids = list(owner_ids)
        if not ids:
            return []

        query = f"""
            SELECT {SLOT_COLUMNS}
            FROM slots
            WHERE status = %s AND owner_id = ANY(%s)
            ORDER BY start_time ASC
        """
        rows = await fetch_all(
            query, (SlotStatus.SWAPPABLE.value, ids), connection=self._connection
        )
        return [_row_to_slot(row) for row in rows]

    async def list_by_status(self, status: SlotStatus) -> list[Slot]:
        query = f"SELECT {SLOT_COLUMNS} FROM slots WHERE status = %s ORDER BY start_time ASC"
        rows = await fetch_all(query, (status.value,), connection=self._connection)
        return [_row_to_slot(row) for row in rows]


class PostgresSwapLedger(SwapLedger):
    """swap_requests table access, optionally bound to a transaction connection."""

    def __init__(self, connection: psycopg.AsyncConnection | None = None):
        self._connection = connection

    async def get(self, request_id: str) -> SwapRequest | None:
        query = f"SELECT {REQUEST_COLUMNS} FROM swap_requests WHERE id = %s"
        row = await fetch_one(query, (request_id,), connection=self._connection)
        return _row_to_request(row)

    async def create(self, request: SwapRequest) -> SwapRequest:
        query = f"""
            INSERT INTO swap_requests (
                id, status, initiator_id, receiver_id, initiator_slot_id, receiver_slot_id,
                created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {REQUEST_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                request.id,
                request.status.value,
                request.initiator_id,
                request.receiver_id,
                request.initiator_slot_id,
                request.receiver_slot_id,
                request.created_at,
                request.updated_at,
            ),
            connection=self._connection,
        )
        if not row:
            raise DatabaseError("Failed to create swap request", operation="create_swap_request")

        return _row_to_request(row)

    async def compare_and_set_status(
        self,
        request_id: str,
        *,
        expected_status: SwapRequestStatus,
        new_status: SwapRequestStatus,
    ) -> bool:
        query = """
            UPDATE swap_requests
            SET status = %s,
                updated_at = NOW()
            WHERE id = %s AND status = %s
        """
        affected = await execute_query(
            query,
            (new_status.value, request_id, expected_status.value),
            connection=self._connection,
        )
        return affected > 0

    async def list_incoming(self, receiver_id: str) -> list[SwapRequest]:
        query = f"""
            SELECT {REQUEST_COLUMNS}
            FROM swap_requests
            WHERE receiver_id = %s AND status = %s
            ORDER BY created_at DESC
        """
        rows = await fetch_all(
            query, (receiver_id, SwapRequestStatus.PENDING.value), connection=self._connection
        )
        return [_row_to_request(row) for row in rows]

    async def list_outgoing(self, initiator_id: str) -> list[SwapRequest]:
        query = f"""
            SELECT {REQUEST_COLUMNS}
            FROM swap_requests
            WHERE initiator_id = %s
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (initiator_id,), connection=self._connection)
        return [_row_to_request(row) for row in rows]

    async def list_by_status(self, status: SwapRequestStatus) -> list[SwapRequest]:
        query = f"""
            SELECT {REQUEST_COLUMNS}
            FROM swap_requests
            WHERE status = %s
            ORDER BY created_at ASC
        """
        rows = await fetch_all(query, (status.value,), connection=self._connection)
        return [_row_to_request(row) for row in rows]


class PostgresMemberDirectory(MemberDirectory):
    """Reads users and group_members maintained by the identity service."""

    @staticmethod
    async def get_member(user_id: str) -> Member | None:
        query = "SELECT id, name, email, current_group_id FROM users WHERE id = %s"
        return _row_to_member(await fetch_one(query, (user_id,)))

    @staticmethod
    async def get_members(user_ids: Iterable[str]) -> dict[str, Member]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        query = "SELECT id, name, email, current_group_id FROM users WHERE id = ANY(%s)"
        rows = await fetch_all(query, (ids,))
        return {member.id: member for member in map(_row_to_member, rows)}

    @staticmethod
    async def share_group(user_id: str, other_user_id: str) -> bool:
        query = """
            SELECT EXISTS (
                SELECT 1
                FROM group_members mine
                JOIN group_members theirs ON theirs.group_id = mine.group_id
                WHERE mine.user_id = %s AND theirs.user_id = %s
            ) AS shared
        """
        row = await fetch_one(query, (user_id, other_user_id))
        return bool(row and row["shared"])

    @staticmethod
    async def list_group_member_ids(group_id: str) -> list[str]:
        query = "SELECT user_id FROM group_members WHERE group_id = %s"
        rows = await fetch_all(query, (group_id,))
        return [str(row["user_id"]) for row in rows]


class PostgresSwapStore(SwapStore):
    """SwapStore backed by the shared connection pool."""

    def __init__(self):
        self.slots = PostgresSlotRegistry()
        self.requests = PostgresSwapLedger()
        self.members = PostgresMemberDirectory()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[StoreSession, None]:
        try:
            async with db_pool.transaction() as conn:
                yield StoreSession(
                    slots=PostgresSlotRegistry(conn),
                    requests=PostgresSwapLedger(conn),
                )
        except psycopg.Error as e:
            # Commit-time failures surface here rather than in a helper call
            logger.error("Swap transaction failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError(
                f"Transaction failed: {e}", operation="transaction", contention=is_contention(e)
            ) from e
