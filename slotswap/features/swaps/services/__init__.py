"""
Service layer for the swap feature.
"""

from .negotiation_engine import NegotiationEngine
from .slot_service import SlotService

__all__ = ["NegotiationEngine", "SlotService"]
