"""
SLA Clock & Escalation
======================

The escalation sweep and the read-only deadline queries.

The sweep reads candidates, then flags each through the same conditional
write `mark_escalated` uses, so overlapping or repeated sweeps escalate a
ticket exactly once. Only tickets this sweep actually flagged are
notified.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from cmms.config import EventKind, UserRole
from cmms.shared.application import UnitOfWork
from cmms.shared.infrastructure.logging import get_context_logger
from cmms.tickets.application import ITicketRepository, ticket_payload
from cmms.tickets.domain import Ticket


def day_bounds(now: datetime):
    """[00:00, next 00:00) UTC of the day containing `now`."""
    now = now.astimezone(timezone.utc)
    start = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class EscalationService:
    """Flags overdue tickets and answers deadline questions."""

    def __init__(
        self,
        uow: UnitOfWork,
        ticket_service,
        ticket_repository: ITicketRepository,
        reference_repository
    ):
        self._uow = uow
        self._ticket_service = ticket_service
        self._tickets = ticket_repository
        self._reference = reference_repository
        self._logger = get_context_logger(__name__, uow.context.correlation_id)

    async def run_sweep(self, now: Optional[datetime] = None) -> int:
        """
        Escalate every open ticket past its deadline.

        Returns:
            Number of tickets escalated by this sweep
        """
        now = now or datetime.now(timezone.utc)
        candidates = await self._tickets.find_overdue(now)

        escalated: List[Ticket] = []
        for ticket in candidates:
            if await self._ticket_service.mark_escalated(ticket.id, now):
                escalated.append(ticket)
                self._logger.info(
                    "Ticket escalated",
                    extra={
                        "ticket_id": str(ticket.id),
                        "breakdown_type": ticket.breakdown_type.value,
                        "sector": ticket.sector,
                        "overdue_minutes": int((now - ticket.sla_deadline).total_seconds() // 60),
                    }
                )

        if escalated:
            recipients = await self._reference.find_user_ids_by_roles(
                [UserRole.TECHNICIAN_LEADER, UserRole.ADMIN]
            )
            for ticket in escalated:
                self._uow.notify_after_commit(
                    EventKind.ESCALATION,
                    ticket_payload(ticket, escalated=True),
                    recipients
                )
            self._logger.warning(
                "Escalated overdue tickets",
                extra={"escalated_count": len(escalated), "candidates": len(candidates)}
            )

        return len(escalated)

    async def find_due_today(
        self,
        technician_id: Optional[UUID] = None,
        now: Optional[datetime] = None
    ) -> List[Ticket]:
        """Open tickets whose deadline falls on the current UTC day."""
        start, end = day_bounds(now or datetime.now(timezone.utc))
        return await self._tickets.find_due_between(start, end, technician_id)

    async def find_overdue(self, now: Optional[datetime] = None) -> List[Ticket]:
        """Open tickets past their deadline that are not escalated yet."""
        return await self._tickets.find_overdue(now or datetime.now(timezone.utc))
