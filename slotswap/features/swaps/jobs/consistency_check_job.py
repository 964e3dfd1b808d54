"""
Swap consistency check job.

Read-only audit of the lock invariant: a slot is SWAP_PENDING exactly when
one PENDING swap request references it. PENDING requests never expire, so
this job is also how stuck negotiations are found. Nothing is repaired
automatically; violations are logged for an operator.
"""

from collections import Counter
from dataclasses import dataclass, field

from slotswap.config import settings
from slotswap.db.pool import db_pool
from slotswap.features.swaps.domain import SlotStatus, SwapRequestStatus
from slotswap.features.swaps.repository.base import SwapStore
from slotswap.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class InvariantReport:
    locked_slot_count: int = 0
    pending_request_count: int = 0
    # SWAP_PENDING slots with no PENDING request
    orphaned_locks: list[str] = field(default_factory=list)
    # slots referenced by more than one PENDING request
    contested_slots: list[str] = field(default_factory=list)
    # PENDING requests with a slot that is missing or not SWAP_PENDING
    unlocked_requests: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.orphaned_locks or self.contested_slots or self.unlocked_requests)


async def find_invariant_violations(store: SwapStore) -> InvariantReport:
    locked_slots = await store.slots.list_by_status(SlotStatus.SWAP_PENDING)
    pending = await store.requests.list_by_status(SwapRequestStatus.PENDING)

    references = Counter(
        slot_id
        for request in pending
        for slot_id in (request.initiator_slot_id, request.receiver_slot_id)
    )
    locked_ids = {slot.id for slot in locked_slots}

    report = InvariantReport(
        locked_slot_count=len(locked_slots),
        pending_request_count=len(pending),
    )
    report.orphaned_locks = sorted(slot_id for slot_id in locked_ids if references[slot_id] == 0)
    report.contested_slots = sorted(slot_id for slot_id, count in references.items() if count > 1)
    report.unlocked_requests = [
        request.id
        for request in pending
        if request.initiator_slot_id not in locked_ids or request.receiver_slot_id not in locked_ids
    ]
    return report


async def run_swap_consistency_check(store: SwapStore | None = None) -> InvariantReport:
    """Worker entrypoint; opens and closes the pool when run standalone."""
    owns_pool = store is None and settings.uses_postgres() and not db_pool.initialized
    if owns_pool:
        await db_pool.initialize()

    try:
        if store is None:
            from slotswap.features.swaps.api.dependencies import get_swap_store

            store = get_swap_store()

        report = await find_invariant_violations(store)
    finally:
        if owns_pool:
            await db_pool.close()

    if report.ok:
        logger.info(
            "Swap consistency check passed",
            locked_slots=report.locked_slot_count,
            pending_requests=report.pending_request_count,
        )
    else:
        logger.error(
            "Swap consistency violations found",
            locked_slots=report.locked_slot_count,
            pending_requests=report.pending_request_count,
            orphaned_locks=report.orphaned_locks,
            contested_slots=report.contested_slots,
            unlocked_requests=report.unlocked_requests,
        )
    return report
