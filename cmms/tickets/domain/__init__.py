"""
Tickets Domain Layer
====================
"""

from cmms.tickets.domain.entities import DailySummary, SectorStats, Ticket
from cmms.tickets.domain.value_objects import (
    SLACalculator,
    TicketStateMachine,
    is_high_severity,
)

__all__ = [
    "Ticket",
    "SectorStats",
    "DailySummary",
    "SLACalculator",
    "TicketStateMachine",
    "is_high_severity",
]
