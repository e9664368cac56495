"""
Tickets Infrastructure Layer
============================
"""

from cmms.tickets.infrastructure.models import TicketModel
from cmms.tickets.infrastructure.repositories import SQLAlchemyTicketRepository, to_entity

__all__ = [
    "TicketModel",
    "SQLAlchemyTicketRepository",
    "to_entity",
]
