"""
Ticket Infrastructure Repositories
==================================

SQLAlchemy implementation of the ticket repository.

Every state change is a single conditional UPDATE whose WHERE clause
carries the precondition; callers learn whether they won from the
affected row count.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cmms.config import BreakdownType, TicketStatus, OPEN_STATUSES, CLOSED_STATUSES
from cmms.tickets.application.services import ITicketRepository
from cmms.tickets.domain import SectorStats, Ticket
from cmms.tickets.infrastructure.models import TicketModel


def to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        reporter_id=model.reporter_id,
        breakdown_type=model.breakdown_type,
        description=model.description,
        safety_required=model.safety_required,
        assistance_required=model.assistance_required,
        location_method=model.location_method,
        sector=model.sector,
        status=model.status,
        sla_deadline=model.sla_deadline,
        created_at=model.created_at,
        grid_location=model.grid_location,
        machine_id=model.machine_id,
        image_url=model.image_url,
        assigned_to=model.assigned_to,
        escalated=model.escalated,
        completed_at=model.completed_at,
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """Ticket persistence using async SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, ticket_id: UUID, for_update: bool = False) -> Optional[Ticket]:
        """
        Load a ticket, always from the database.

        Args:
            ticket_id: Ticket UUID
            for_update: Lock the row until the transaction ends
        """
        stmt = select(TicketModel).where(TicketModel.id == ticket_id)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)

        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return to_entity(model) if model else None

    async def add(self, ticket: Ticket) -> Ticket:
        model = TicketModel(
            id=ticket.id,
            reporter_id=ticket.reporter_id,
            breakdown_type=ticket.breakdown_type.value,
            description=ticket.description,
            safety_required=ticket.safety_required,
            assistance_required=ticket.assistance_required,
            image_url=ticket.image_url,
            location_method=ticket.location_method.value,
            sector=ticket.sector,
            grid_location=ticket.grid_location,
            machine_id=ticket.machine_id,
            status=ticket.status.value,
            assigned_to=ticket.assigned_to,
            sla_deadline=ticket.sla_deadline,
            escalated=ticket.escalated,
            created_at=ticket.created_at,
            completed_at=ticket.completed_at,
        )
        self._session.add(model)
        await self._session.flush()
        return ticket

    async def _conditional_update(self, stmt) -> bool:
        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def assign_if_unclaimed(self, ticket_id: UUID, technician_id: UUID) -> bool:
        """noticed/unassigned -> working/assigned, or nothing."""
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.status == TicketStatus.NOTICED.value,
                TicketModel.assigned_to.is_(None),
            )
            .values(status=TicketStatus.WORKING.value, assigned_to=technician_id)
        )
        return await self._conditional_update(stmt)

    async def complete_if_working(self, ticket_id: UUID, completed_at: datetime) -> bool:
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.status == TicketStatus.WORKING.value,
            )
            .values(status=TicketStatus.COMPLETED.value, completed_at=completed_at)
        )
        return await self._conditional_update(stmt)

    async def archive_if_completed(self, ticket_id: UUID) -> bool:
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.status == TicketStatus.COMPLETED.value,
            )
            .values(status=TicketStatus.ARCHIVED.value)
        )
        return await self._conditional_update(stmt)

    async def mark_escalated_if_overdue(self, ticket_id: UUID, now: datetime) -> bool:
        """Set the escalation flag once; a second call matches no row."""
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.status.in_([s.value for s in OPEN_STATUSES]),
                TicketModel.escalated.is_(False),
                TicketModel.sla_deadline < now,
            )
            .values(escalated=True)
        )
        return await self._conditional_update(stmt)

    async def mark_completion_credited(self, ticket_id: UUID) -> bool:
        """Claim the ledger credit for a closed ticket; only the first caller wins."""
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.status.in_([s.value for s in CLOSED_STATUSES]),
                TicketModel.completion_credited.is_(False),
            )
            .values(completion_credited=True)
        )
        return await self._conditional_update(stmt)

    async def archive_completed_before(self, cutoff: datetime) -> int:
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.status == TicketStatus.COMPLETED.value,
                TicketModel.completed_at < cutoff,
            )
            .values(status=TicketStatus.ARCHIVED.value)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def _list(self, stmt) -> List[Ticket]:
        result = await self._session.execute(stmt)
        return [to_entity(model) for model in result.scalars().all()]

    async def find_unassigned(self, sector: Optional[str] = None) -> List[Ticket]:
        """Claimable tickets, safety-critical first, then oldest."""
        stmt = select(TicketModel).where(
            TicketModel.status == TicketStatus.NOTICED.value,
            TicketModel.assigned_to.is_(None),
        )
        if sector:
            stmt = stmt.where(TicketModel.sector == sector)
        stmt = stmt.order_by(TicketModel.safety_required.desc(), TicketModel.created_at.asc())
        return await self._list(stmt)

    async def find_by_assignee(
        self,
        technician_id: UUID,
        status: Optional[TicketStatus] = None
    ) -> List[Ticket]:
        stmt = select(TicketModel).where(TicketModel.assigned_to == technician_id)
        if status:
            stmt = stmt.where(TicketModel.status == TicketStatus(status).value)
        return await self._list(stmt.order_by(TicketModel.created_at.desc()))

    async def find_due_between(
        self,
        start: datetime,
        end: datetime,
        technician_id: Optional[UUID] = None
    ) -> List[Ticket]:
        stmt = select(TicketModel).where(
            TicketModel.sla_deadline >= start,
            TicketModel.sla_deadline < end,
            TicketModel.status.in_([s.value for s in OPEN_STATUSES]),
        )
        if technician_id:
            stmt = stmt.where(TicketModel.assigned_to == technician_id)
        return await self._list(stmt.order_by(TicketModel.sla_deadline.asc()))

    async def find_overdue(self, now: datetime) -> List[Ticket]:
        """Open, not yet escalated, past deadline; most overdue first."""
        stmt = select(TicketModel).where(
            TicketModel.sla_deadline < now,
            TicketModel.status.in_([s.value for s in OPEN_STATUSES]),
            TicketModel.escalated.is_(False),
        ).order_by(TicketModel.sla_deadline.asc())
        return await self._list(stmt)

    async def find_escalated(self) -> List[Ticket]:
        stmt = select(TicketModel).where(
            TicketModel.escalated.is_(True),
            TicketModel.status.in_([s.value for s in OPEN_STATUSES]),
        ).order_by(TicketModel.created_at.asc())
        return await self._list(stmt)

    async def stats_by_sector(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[SectorStats]:
        """Per (sector, breakdown type) counts for tickets created in [start, end)."""
        stmt = select(
            TicketModel.sector,
            TicketModel.breakdown_type,
            TicketModel.status,
            TicketModel.escalated,
            TicketModel.safety_required,
            TicketModel.created_at,
            TicketModel.completed_at,
        )
        if start is not None:
            stmt = stmt.where(TicketModel.created_at >= start)
        if end is not None:
            stmt = stmt.where(TicketModel.created_at < end)

        result = await self._session.execute(stmt)

        groups: Dict[Tuple[str, str], SectorStats] = {}
        durations: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        for row in result.all():
            key = (row.sector, row.breakdown_type)
            stats = groups.get(key)
            if stats is None:
                stats = groups[key] = SectorStats(row.sector, BreakdownType(row.breakdown_type))
            stats.total_reports += 1
            if row.status in [s.value for s in CLOSED_STATUSES]:
                stats.completed_reports += 1
            if row.escalated:
                stats.escalated_reports += 1
            if row.safety_required:
                stats.safety_reports += 1
            if row.completed_at is not None:
                durations[key].append((row.completed_at - row.created_at).total_seconds() / 3600)

        for key, values in durations.items():
            groups[key].avg_completion_hours = round(sum(values) / len(values), 2)

        return [groups[key] for key in sorted(groups)]
