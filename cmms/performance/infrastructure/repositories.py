"""
Performance Infrastructure Repositories
=======================================

Ledger persistence. Increments are single upserts
(INSERT ... ON CONFLICT DO UPDATE SET col = col + n), so concurrent
accruals on the same row add up instead of overwriting each other.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cmms.config import BreakdownType, TicketStatus, TECHNICIAN_ROLES
from cmms.infrastructure.database import dialect_insert
from cmms.performance.application.services import IStatsRepository
from cmms.performance.domain import TechnicianStats
from cmms.performance.infrastructure.models import TechnicianStatsModel
from cmms.reference.models import TechnicianModel
from cmms.tickets.infrastructure.models import TicketModel

_KEY_COLUMNS = ["technician_id", "sector", "time_window_start", "time_window_end"]


@dataclass
class AssignedTicketRow:
    """A ticket assigned to a technician, as seen by monthly generation."""
    technician_id: UUID
    sector: str
    status: TicketStatus
    breakdown_type: BreakdownType
    safety_required: bool


def to_entity(model: TechnicianStatsModel, technician_name: Optional[str] = None) -> TechnicianStats:
    return TechnicianStats(
        id=model.id,
        technician_id=model.technician_id,
        sector=model.sector,
        time_window_start=model.time_window_start,
        time_window_end=model.time_window_end,
        total_assigned=model.total_assigned,
        total_completed=model.total_completed,
        high_severity_handled=model.high_severity_handled,
        points=model.points,
        created_at=model.created_at,
        technician_name=technician_name,
    )


class SQLAlchemyStatsRepository(IStatsRepository):
    """TechnicianStats persistence using async SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def increment(
        self,
        technician_id: UUID,
        sector: str,
        window_start: datetime,
        window_end: datetime,
        assigned: int = 0,
        completed: int = 0,
        high_severity: int = 0,
        points: int = 0
    ) -> TechnicianStats:
        """Create the row if missing, otherwise add to its counters."""
        stmt = dialect_insert(self._session, TechnicianStatsModel).values(
            id=uuid4(),
            technician_id=technician_id,
            sector=sector,
            time_window_start=window_start,
            time_window_end=window_end,
            total_assigned=assigned,
            total_completed=completed,
            high_severity_handled=high_severity,
            points=points,
            created_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=_KEY_COLUMNS,
            set_={
                "total_assigned": TechnicianStatsModel.total_assigned + stmt.excluded.total_assigned,
                "total_completed": TechnicianStatsModel.total_completed + stmt.excluded.total_completed,
                "high_severity_handled": TechnicianStatsModel.high_severity_handled + stmt.excluded.high_severity_handled,
                "points": TechnicianStatsModel.points + stmt.excluded.points,
            },
        )
        await self._session.execute(stmt)

        row = await self.get_by_key(technician_id, sector, window_start, window_end)
        return row

    async def insert_missing(self, rows: List[TechnicianStats]) -> int:
        """Insert rows whose key is not taken yet; existing rows are left alone."""
        inserted = 0
        for row in rows:
            stmt = dialect_insert(self._session, TechnicianStatsModel).values(
                id=uuid4(),
                technician_id=row.technician_id,
                sector=row.sector,
                time_window_start=row.time_window_start,
                time_window_end=row.time_window_end,
                total_assigned=row.total_assigned,
                total_completed=row.total_completed,
                high_severity_handled=row.high_severity_handled,
                points=row.points,
                created_at=datetime.now(timezone.utc),
            ).on_conflict_do_nothing(index_elements=_KEY_COLUMNS)
            result = await self._session.execute(stmt)
            inserted += max(result.rowcount, 0)
        return inserted

    async def get_by_key(
        self,
        technician_id: UUID,
        sector: str,
        window_start: datetime,
        window_end: datetime
    ) -> Optional[TechnicianStats]:
        stmt = select(TechnicianStatsModel).where(
            TechnicianStatsModel.technician_id == technician_id,
            TechnicianStatsModel.sector == sector,
            TechnicianStatsModel.time_window_start == window_start,
            TechnicianStatsModel.time_window_end == window_end,
        ).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return to_entity(model) if model else None

    async def _with_names(self, stmt) -> List[TechnicianStats]:
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return [to_entity(model, name) for model, name in result.all()]

    def _select_with_names(self):
        return select(TechnicianStatsModel, TechnicianModel.username).outerjoin(
            TechnicianModel, TechnicianModel.id == TechnicianStatsModel.technician_id
        )

    async def list_for_window(
        self,
        window_start: datetime,
        window_end: datetime,
        sector: Optional[str] = None,
        technician_id: Optional[UUID] = None,
        limit: Optional[int] = None
    ) -> List[TechnicianStats]:
        """Rows fully inside [window_start, window_end], best performers first."""
        stmt = self._select_with_names().where(
            TechnicianStatsModel.time_window_start >= window_start,
            TechnicianStatsModel.time_window_end <= window_end,
        )
        if sector:
            stmt = stmt.where(TechnicianStatsModel.sector == sector)
        if technician_id:
            stmt = stmt.where(TechnicianStatsModel.technician_id == technician_id)
        stmt = stmt.order_by(
            TechnicianStatsModel.points.desc(),
            TechnicianStatsModel.total_completed.desc(),
            TechnicianStatsModel.sector,
        )
        if limit:
            stmt = stmt.limit(limit)
        return await self._with_names(stmt)

    async def list_history(self, technician_id: UUID, limit: int = 12) -> List[TechnicianStats]:
        stmt = (
            self._select_with_names()
            .where(TechnicianStatsModel.technician_id == technician_id)
            .order_by(TechnicianStatsModel.time_window_start.desc(), TechnicianStatsModel.sector)
            .limit(limit)
        )
        return await self._with_names(stmt)

    async def assigned_tickets(self, created_from: datetime, created_to: datetime) -> List[AssignedTicketRow]:
        """Tickets created in [created_from, created_to) that a technician holds."""
        stmt = (
            select(
                TicketModel.assigned_to,
                TicketModel.sector,
                TicketModel.status,
                TicketModel.breakdown_type,
                TicketModel.safety_required,
            )
            .join(TechnicianModel, TechnicianModel.id == TicketModel.assigned_to)
            .where(
                TicketModel.assigned_to.is_not(None),
                TicketModel.created_at >= created_from,
                TicketModel.created_at < created_to,
                TechnicianModel.role.in_([r.value for r in TECHNICIAN_ROLES]),
            )
        )
        result = await self._session.execute(stmt)
        return [
            AssignedTicketRow(
                technician_id=row.assigned_to,
                sector=row.sector,
                status=TicketStatus(row.status),
                breakdown_type=BreakdownType(row.breakdown_type),
                safety_required=row.safety_required,
            )
            for row in result.all()
        ]
