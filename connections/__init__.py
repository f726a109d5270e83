"""
Provider/buyer connections.

A connection carries the negotiated lead-referral terms between one
provider and one buyer and moves through a fixed lifecycle:
request → terms → accept/decline → active → terminate.
"""

from .models import (
    Connection,
    ConnectionAction,
    ConnectionStatus,
    ConnectionTerms,
    PartyRole,
    PaymentTiming,
    TRANSITIONS,
)
from .service import ConnectionService

__all__ = [
    "Connection",
    "ConnectionAction",
    "ConnectionStatus",
    "ConnectionTerms",
    "ConnectionService",
    "PartyRole",
    "PaymentTiming",
    "TRANSITIONS",
]
