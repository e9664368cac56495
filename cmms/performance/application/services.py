"""
Performance Ledger Services
===========================

Accrues assignments and completions into monthly TechnicianStats rows and
backfills closed months from ticket history.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from cmms.config import CLOSED_STATUSES
from cmms.config.policy import PolicyConfigManager
from cmms.core import ResourceNotFoundException, ValidationException
from cmms.performance.domain import (
    AggregatedStats,
    LeaderboardEntry,
    PointsCalculator,
    SectorPerformance,
    TechnicianStats,
    month_window,
    month_window_for,
)
from cmms.shared.application import UnitOfWork
from cmms.shared.infrastructure.logging import get_context_logger
from cmms.tickets.domain import Ticket


# ========== Repository Interfaces (Dependency Inversion) ==========

class IStatsRepository(ABC):
    """Interface for ledger data access."""

    @abstractmethod
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
        """Upsert-and-add on the (technician, sector, window) row."""

    @abstractmethod
    async def insert_missing(self, rows: List[TechnicianStats]) -> int:
        """Insert rows whose key does not exist yet. Returns rows inserted."""

    @abstractmethod
    async def get_by_key(
        self,
        technician_id: UUID,
        sector: str,
        window_start: datetime,
        window_end: datetime
    ) -> Optional[TechnicianStats]:
        """Get one ledger row."""

    @abstractmethod
    async def list_for_window(
        self,
        window_start: datetime,
        window_end: datetime,
        sector: Optional[str] = None,
        technician_id: Optional[UUID] = None,
        limit: Optional[int] = None
    ) -> List[TechnicianStats]:
        """Rows inside a period, best performers first."""

    @abstractmethod
    async def list_history(self, technician_id: UUID, limit: int = 12) -> List[TechnicianStats]:
        """Most recent rows of one technician."""

    @abstractmethod
    async def assigned_tickets(self, created_from: datetime, created_to: datetime) -> list:
        """Technician-held tickets created in a period."""


# ========== Application Services ==========

class PerformanceLedgerService:
    """Technician performance accounting."""

    def __init__(
        self,
        uow: UnitOfWork,
        stats_repository: IStatsRepository,
        ticket_repository,
        policy_manager: PolicyConfigManager
    ):
        self._uow = uow
        self._stats = stats_repository
        self._tickets = ticket_repository
        self._policy_manager = policy_manager
        self._logger = get_context_logger(__name__, uow.context.correlation_id)

    async def record_assignment(
        self,
        technician_id: UUID,
        sector: str,
        at: Optional[datetime] = None
    ) -> TechnicianStats:
        """Count one assignment on the current month's row for the sector."""
        start, end = month_window(at or datetime.now(timezone.utc))
        stats = await self._stats.increment(technician_id, sector, start, end, assigned=1)
        self._logger.info(
            "Assignment recorded",
            extra={"technician_id": str(technician_id), "sector": sector}
        )
        return stats

    async def record_completion(self, ticket: Ticket) -> TechnicianStats:
        """
        Credit a completed ticket to its assignee, once.

        The row is the one for the ticket's sector and the month the ticket
        was completed in. Tickets keep their sector for life, so assignment
        and completion always land on the same sector. A ticket already
        credited leaves the ledger unchanged and the existing row is
        returned.

        Raises:
            ValidationException: Ticket is not completed or has no assignee
        """
        if ticket.status not in CLOSED_STATUSES or ticket.completed_at is None:
            raise ValidationException(
                "Only completed tickets can be credited",
                {"ticket_id": str(ticket.id), "status": ticket.status.value}
            )
        if ticket.assigned_to is None:
            raise ValidationException("Ticket has no assignee", {"ticket_id": str(ticket.id)})

        start, end = month_window(ticket.completed_at)
        if not await self._tickets.mark_completion_credited(ticket.id):
            self._logger.info("Completion already credited", extra={"ticket_id": str(ticket.id)})
            existing = await self._stats.get_by_key(ticket.assigned_to, ticket.sector, start, end)
            if existing is not None:
                return existing
            return TechnicianStats(
                technician_id=ticket.assigned_to,
                sector=ticket.sector,
                time_window_start=start,
                time_window_end=end,
            )

        points = PointsCalculator.completion_points(
            ticket.breakdown_type, ticket.safety_required, self._policy_manager.policy.scoring
        )
        stats = await self._stats.increment(
            ticket.assigned_to,
            ticket.sector,
            start,
            end,
            completed=1,
            high_severity=1 if ticket.safety_required else 0,
            points=points,
        )
        self._logger.info(
            "Completion recorded",
            extra={
                "ticket_id": str(ticket.id),
                "technician_id": str(ticket.assigned_to),
                "points": points,
            }
        )
        return stats

    async def record_completion_for_ticket(self, ticket_id: UUID) -> TechnicianStats:
        ticket = await self._tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        return await self.record_completion(ticket)

    async def generate_monthly_stats(
        self,
        year: int,
        month: int,
        now: Optional[datetime] = None
    ) -> int:
        """
        Backfill ledger rows for a closed month from ticket history.

        Only (technician, sector) pairs without a row for that month are
        inserted; existing rows are never touched, so re-running is safe.
        Runs in the caller's single transaction.

        Returns:
            Number of rows inserted

        Raises:
            ValidationException: Invalid month, or month not over yet
        """
        if not 1 <= month <= 12:
            raise ValidationException("month must be between 1 and 12", {"month": month})

        start, end = month_window_for(year, month)
        if end > (now or datetime.now(timezone.utc)):
            raise ValidationException(
                "Monthly stats can only be generated for closed months",
                {"year": year, "month": month}
            )

        scoring = self._policy_manager.policy.scoring
        grouped: Dict[Tuple[UUID, str], TechnicianStats] = {}

        for row in await self._stats.assigned_tickets(start, end):
            key = (row.technician_id, row.sector)
            stats = grouped.get(key)
            if stats is None:
                stats = grouped[key] = TechnicianStats(
                    technician_id=row.technician_id,
                    sector=row.sector,
                    time_window_start=start,
                    time_window_end=end,
                )
            stats.total_assigned += 1
            if row.status in CLOSED_STATUSES:
                stats.total_completed += 1
                stats.points += PointsCalculator.completion_points(
                    row.breakdown_type, row.safety_required, scoring
                )
                if row.safety_required:
                    stats.high_severity_handled += 1

        inserted = await self._stats.insert_missing(
            [grouped[key] for key in sorted(grouped, key=lambda k: (str(k[0]), k[1]))]
        )
        self._logger.info(
            "Monthly stats generated",
            extra={"year": year, "month": month, "candidates": len(grouped), "inserted": inserted}
        )
        return inserted

    # ---------- queries ----------

    async def get_current_month_stats(
        self,
        technician_id: UUID,
        now: Optional[datetime] = None
    ) -> List[TechnicianStats]:
        """This month's rows for a technician, one per sector."""
        start, end = month_window(now or datetime.now(timezone.utc))
        return await self._stats.list_for_window(start, end, technician_id=technician_id)

    async def get_history(self, technician_id: UUID, limit: int = 12) -> List[TechnicianStats]:
        return await self._stats.list_history(technician_id, limit)

    async def get_leaderboard(
        self,
        sector: Optional[str] = None,
        limit: int = 10,
        now: Optional[datetime] = None
    ) -> List[LeaderboardEntry]:
        """Current month ranking by points, then completions; ties share a rank."""
        start, end = month_window(now or datetime.now(timezone.utc))
        rows = await self._stats.list_for_window(start, end, sector=sector, limit=limit)

        entries: List[LeaderboardEntry] = []
        for position, stats in enumerate(rows, start=1):
            previous = entries[-1] if entries else None
            if previous and (previous.stats.points, previous.stats.total_completed) == (stats.points, stats.total_completed):
                rank = previous.rank
            else:
                rank = position
            entries.append(LeaderboardEntry(rank=rank, stats=stats))
        return entries

    async def get_aggregated_stats(
        self,
        technician_id: UUID,
        months: int = 6,
        now: Optional[datetime] = None
    ) -> AggregatedStats:
        """Totals over the last `months` month windows, current month included."""
        if months < 1:
            raise ValidationException("months must be at least 1", {"months": months})

        current_start, current_end = month_window(now or datetime.now(timezone.utc))
        year, month = current_start.year, current_start.month - (months - 1)
        while month < 1:
            month += 12
            year -= 1
        since, _ = month_window_for(year, month)

        rows = await self._stats.list_for_window(since, current_end, technician_id=technician_id)

        aggregated = AggregatedStats(technician_id=technician_id)
        for stats in rows:
            aggregated.total_assigned += stats.total_assigned
            aggregated.total_completed += stats.total_completed
            aggregated.high_severity_handled += stats.high_severity_handled
            aggregated.total_points += stats.points
        aggregated.months_active = len({stats.time_window_start for stats in rows})
        if rows:
            aggregated.completion_rate = round(
                sum(stats.completion_rate for stats in rows) / len(rows), 2
            )
        return aggregated

    async def get_sector_performance(self, start: datetime, end: datetime) -> List[SectorPerformance]:
        """Per-sector totals for ledger rows inside [start, end]."""
        if end <= start:
            raise ValidationException("end must be after start")

        by_sector: Dict[str, List[TechnicianStats]] = defaultdict(list)
        for stats in await self._stats.list_for_window(start, end):
            by_sector[stats.sector].append(stats)

        result = []
        for sector, rows in by_sector.items():
            result.append(SectorPerformance(
                sector=sector,
                active_technicians=len({r.technician_id for r in rows}),
                total_assigned=sum(r.total_assigned for r in rows),
                total_completed=sum(r.total_completed for r in rows),
                high_severity_handled=sum(r.high_severity_handled for r in rows),
                total_points=sum(r.points for r in rows),
                avg_completion_rate=round(sum(r.completion_rate for r in rows) / len(rows), 2),
            ))
        return sorted(result, key=lambda s: (-s.avg_completion_rate, -s.total_completed, s.sector))
