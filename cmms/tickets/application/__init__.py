"""
Tickets Application Layer
=========================
"""

from cmms.tickets.application.dto import TicketCreateDTO
from cmms.tickets.application.services import ITicketRepository, TicketService, ticket_payload

__all__ = [
    "TicketCreateDTO",
    "ITicketRepository",
    "TicketService",
    "ticket_payload",
]
