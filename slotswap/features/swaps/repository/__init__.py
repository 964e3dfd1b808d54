"""
Repository subpackage for the swap feature.
"""

from .base import MemberDirectory, SlotRegistry, StoreSession, SwapLedger, SwapStore
from .memory import InMemoryMemberDirectory, InMemorySwapStore
from .postgres import PostgresSwapStore, ensure_schema

__all__ = [
    "InMemoryMemberDirectory",
    "InMemorySwapStore",
    "MemberDirectory",
    "PostgresSwapStore",
    "SlotRegistry",
    "StoreSession",
    "SwapLedger",
    "SwapStore",
    "ensure_schema",
]
