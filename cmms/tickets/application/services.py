"""
Ticket Application Services
===========================

Orchestrates ticket creation, claims, assignment and completion.

State changes go through the repository's conditional writes; ledger
accrual, main-membership bookkeeping and leader auto-assignment run as
best-effort steps inside savepoints, and notifications are queued on the
unit of work for dispatch after commit.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import UUID, uuid4

from pydantic import ValidationError

from cmms.config import (
    CapacityMode, EventKind, LocationMethod, TeamRole, TicketStatus, UserRole,
)
from cmms.config.policy import PolicyConfigManager
from cmms.core import (
    ConflictException, CapacityException, ResourceNotFoundException, ValidationException,
)
from cmms.shared.application import UnitOfWork
from cmms.shared.infrastructure.logging import get_context_logger
from cmms.tickets.application.dto import TicketCreateDTO
from cmms.tickets.domain import DailySummary, SectorStats, SLACalculator, Ticket, TicketStateMachine


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: UUID, for_update: bool = False) -> Optional[Ticket]:
        """Get ticket by ID, optionally locking the row."""

    @abstractmethod
    async def add(self, ticket: Ticket) -> Ticket:
        """Persist a new ticket."""

    @abstractmethod
    async def assign_if_unclaimed(self, ticket_id: UUID, technician_id: UUID) -> bool:
        """Conditional noticed -> working. True if this call won."""

    @abstractmethod
    async def complete_if_working(self, ticket_id: UUID, completed_at: datetime) -> bool:
        """Conditional working -> completed."""

    @abstractmethod
    async def archive_if_completed(self, ticket_id: UUID) -> bool:
        """Conditional completed -> archived."""

    @abstractmethod
    async def mark_escalated_if_overdue(self, ticket_id: UUID, now: datetime) -> bool:
        """Conditional escalated false -> true."""

    @abstractmethod
    async def mark_completion_credited(self, ticket_id: UUID) -> bool:
        """Conditional completion_credited false -> true on a closed ticket."""

    @abstractmethod
    async def archive_completed_before(self, cutoff: datetime) -> int:
        """Bulk completed -> archived. Returns rows changed."""

    @abstractmethod
    async def find_unassigned(self, sector: Optional[str] = None) -> List[Ticket]:
        """Claimable tickets."""

    @abstractmethod
    async def find_by_assignee(self, technician_id: UUID, status: Optional[TicketStatus] = None) -> List[Ticket]:
        """Tickets assigned to a technician."""

    @abstractmethod
    async def find_due_between(
        self,
        start: datetime,
        end: datetime,
        technician_id: Optional[UUID] = None
    ) -> List[Ticket]:
        """Open tickets whose deadline falls in [start, end)."""

    @abstractmethod
    async def find_overdue(self, now: datetime) -> List[Ticket]:
        """Open, unescalated tickets past their deadline."""

    @abstractmethod
    async def find_escalated(self) -> List[Ticket]:
        """Open escalated tickets."""

    @abstractmethod
    async def stats_by_sector(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[SectorStats]:
        """Counts per sector and breakdown type."""


def ticket_payload(ticket: Ticket, **extra: Any) -> Dict[str, Any]:
    """Notification payload describing a ticket."""
    payload = {
        "report_id": str(ticket.id),
        "breakdown_type": ticket.breakdown_type.value,
        "sector": ticket.sector,
        "safety_required": ticket.safety_required,
        "status": ticket.status.value,
    }
    payload.update(extra)
    return payload


# ========== Application Services ==========

class TicketService:
    """
    Ticket lifecycle operations.

    Collaborators are bound to one unit of work; construct a new service
    per call.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        ticket_repository: ITicketRepository,
        reference_repository,
        team_service,
        ledger_service,
        policy_manager: PolicyConfigManager,
        capacity_mode: CapacityMode = CapacityMode.STRICT
    ):
        self._uow = uow
        self._tickets = ticket_repository
        self._reference = reference_repository
        self._teams = team_service
        self._ledger = ledger_service
        self._policy_manager = policy_manager
        self._capacity_mode = capacity_mode
        self._logger = get_context_logger(__name__, uow.context.correlation_id)

    @property
    def _strict(self) -> bool:
        return self._capacity_mode == CapacityMode.STRICT

    async def _require(self, ticket_id: UUID, for_update: bool = False) -> Ticket:
        ticket = await self._tickets.get_by_id(ticket_id, for_update=for_update)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        return ticket

    async def _require_technician(self, technician_id: UUID):
        technician = await self._reference.get_technician(technician_id)
        if technician is None:
            raise ValidationException(
                "Assignee must be an active technician",
                {"technician_id": str(technician_id)}
            )
        return technician

    # ---------- create ----------

    async def create_ticket(self, data: Union[TicketCreateDTO, Dict[str, Any]]) -> Ticket:
        """
        Report a new issue.

        The SLA deadline is derived from the current policy and never
        recomputed. High-severity tickets get a leader auto-assigned when
        one has capacity.

        Raises:
            ValidationException: Malformed input, unknown reporter or machine
        """
        if isinstance(data, TicketCreateDTO):
            dto = data
        else:
            try:
                dto = TicketCreateDTO.model_validate(data)
            except ValidationError as e:
                raise ValidationException(
                    "Invalid ticket data",
                    {"errors": e.errors(include_url=False, include_context=False)}
                ) from e

        if await self._reference.get_user(dto.reporter_id) is None:
            raise ValidationException("Unknown reporter", {"reporter_id": str(dto.reporter_id)})

        if dto.location_method == LocationMethod.QR.value:
            machine = await self._reference.get_machine(dto.machine_id)
            if machine is None:
                raise ValidationException("Unknown machine", {"machine_id": str(dto.machine_id)})
            if machine.sector != dto.sector:
                raise ValidationException(
                    "Sector does not match the scanned machine",
                    {"sector": dto.sector, "machine_sector": machine.sector}
                )

        now = datetime.now(timezone.utc)
        ticket = Ticket(
            id=uuid4(),
            reporter_id=dto.reporter_id,
            breakdown_type=dto.breakdown_type,
            description=dto.description,
            safety_required=dto.safety_required,
            assistance_required=dto.assistance_required,
            location_method=dto.location_method,
            sector=dto.sector,
            status=TicketStatus.NOTICED,
            sla_deadline=SLACalculator.calculate_deadline(
                now, dto.breakdown_type, dto.safety_required, self._policy_manager.policy.sla
            ),
            created_at=now,
            grid_location=dto.grid_location,
            machine_id=dto.machine_id,
            image_url=dto.image_url or None,
        )
        await self._tickets.add(ticket)

        self._logger.info(
            "Ticket created",
            extra={
                "ticket_id": str(ticket.id),
                "breakdown_type": ticket.breakdown_type.value,
                "sector": ticket.sector,
                "sla_deadline": ticket.sla_deadline.isoformat(),
            }
        )

        if ticket.is_high_severity:
            await self._uow.best_effort(
                "auto_assign_team_leader",
                lambda: self._teams.auto_assign_team_leader(ticket.id),
                ticket_id=str(ticket.id),
            )

        roles = [UserRole.TECHNICIAN, UserRole.TECHNICIAN_LEADER]
        if ticket.safety_required:
            roles.append(UserRole.ADMIN)
        self._uow.notify_after_commit(
            EventKind.NEW_REPORT,
            ticket_payload(ticket),
            await self._reference.find_user_ids_by_roles(roles)
        )

        return ticket

    # ---------- assign / claim ----------

    async def assign_ticket(self, ticket_id: UUID, technician_id: UUID) -> Ticket:
        """
        Assign a noticed ticket to a technician (leader action).

        Raises:
            ResourceNotFoundException: Unknown ticket
            ValidationException: Assignee is not a technician
            ConflictException: Ticket already assigned or no longer noticed
        """
        await self._require(ticket_id, for_update=self._strict)
        await self._require_technician(technician_id)
        return await self._assign(ticket_id, technician_id)

    async def claim_ticket(self, ticket_id: UUID, technician_id: UUID) -> Ticket:
        """
        Technician takes an unassigned ticket for themselves.

        Raises:
            ResourceNotFoundException: Unknown ticket
            ValidationException: Caller is not a technician
            CapacityException: Technician has no capacity left
            ConflictException: Someone else claimed it first
        """
        ticket = await self._require(ticket_id, for_update=self._strict)
        await self._require_technician(technician_id)

        if self._strict:
            await self._reference.lock_technician(technician_id)

        if not await self._teams.is_technician_available(technician_id, ticket.is_high_severity):
            raise CapacityException(
                "Technician has reached the maximum number of active assignments",
                {"technician_id": str(technician_id)}
            )

        return await self._assign(ticket_id, technician_id)

    async def _assign(self, ticket_id: UUID, technician_id: UUID) -> Ticket:
        if not await self._tickets.assign_if_unclaimed(ticket_id, technician_id):
            raise ConflictException(
                "Ticket is already assigned or no longer open",
                {"ticket_id": str(ticket_id)}
            )

        ticket = await self._require(ticket_id)
        self._logger.info(
            "Ticket assigned",
            extra={"ticket_id": str(ticket_id), "technician_id": str(technician_id)}
        )

        await self._uow.best_effort(
            "record_assignment",
            lambda: self._ledger.record_assignment(technician_id, ticket.sector),
            ticket_id=str(ticket_id),
        )
        await self._uow.best_effort(
            "add_main_member",
            lambda: self._teams.add_to_team(ticket_id, technician_id, TeamRole.MAIN),
            ticket_id=str(ticket_id),
        )

        self._uow.notify_after_commit(
            EventKind.REPORT_ASSIGNED,
            ticket_payload(ticket, technician_id=str(technician_id)),
            [str(technician_id)]
        )
        return ticket

    # ---------- status ----------

    async def update_status(self, ticket_id: UUID, status: Union[TicketStatus, str]) -> Ticket:
        """
        Apply a status update; only working -> completed is accepted here.

        Raises:
            ResourceNotFoundException: Unknown ticket
            ValidationException: Unknown status or transition not allowed
            ConflictException: Ticket changed state concurrently
        """
        try:
            target = TicketStatus(status)
        except ValueError as e:
            raise ValidationException(f"Unknown status '{status}'", {"status": str(status)}) from e

        ticket = await self._require(ticket_id)
        TicketStateMachine.ensure_status_update(ticket.status, target)

        if not await self._tickets.complete_if_working(ticket_id, datetime.now(timezone.utc)):
            raise ConflictException(
                "Ticket is no longer in progress",
                {"ticket_id": str(ticket_id)}
            )

        ticket = await self._require(ticket_id)
        self._logger.info(
            "Ticket completed",
            extra={"ticket_id": str(ticket_id), "technician_id": str(ticket.assigned_to)}
        )

        await self._uow.best_effort(
            "record_completion",
            lambda: self._ledger.record_completion(ticket),
            ticket_id=str(ticket_id),
        )

        self._uow.notify_after_commit(
            EventKind.STATUS_UPDATE, ticket_payload(ticket), [str(ticket.reporter_id)]
        )
        self._uow.notify_after_commit(
            EventKind.REPORT_COMPLETED,
            ticket_payload(ticket),
            await self._reference.find_user_ids_by_roles([UserRole.TECHNICIAN_LEADER])
        )
        return ticket

    async def mark_escalated(self, ticket_id: UUID, now: Optional[datetime] = None) -> bool:
        """
        Flag an overdue open ticket as escalated.

        Idempotent: returns False, without error, when the ticket is closed,
        already escalated or not yet due.
        """
        return await self._tickets.mark_escalated_if_overdue(
            ticket_id, now or datetime.now(timezone.utc)
        )

    # ---------- archive ----------

    async def archive_ticket(self, ticket_id: UUID) -> Ticket:
        """Administrative completed -> archived for a single ticket."""
        ticket = await self._require(ticket_id)
        TicketStateMachine.ensure_transition(ticket.status, TicketStatus.ARCHIVED)

        if not await self._tickets.archive_if_completed(ticket_id):
            raise ConflictException("Ticket is no longer completed", {"ticket_id": str(ticket_id)})

        return await self._require(ticket_id)

    async def archive_old_reports(self, days_old: int, now: Optional[datetime] = None) -> int:
        """Archive tickets completed more than `days_old` days ago."""
        if days_old < 0:
            raise ValidationException("days_old must not be negative", {"days_old": days_old})

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days_old)
        archived = await self._tickets.archive_completed_before(cutoff)
        self._logger.info("Archived old tickets", extra={"archived_count": archived, "days_old": days_old})
        return archived

    # ---------- queries ----------

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        return await self._require(ticket_id)

    async def find_unassigned(self, sector: Optional[str] = None) -> List[Ticket]:
        return await self._tickets.find_unassigned(sector)

    async def find_by_assignee(
        self,
        technician_id: UUID,
        status: Optional[Union[TicketStatus, str]] = None
    ) -> List[Ticket]:
        if status is not None:
            try:
                status = TicketStatus(status)
            except ValueError as e:
                raise ValidationException(f"Unknown status '{status}'") from e
        return await self._tickets.find_by_assignee(technician_id, status)

    async def find_escalated(self) -> List[Ticket]:
        return await self._tickets.find_escalated()

    async def get_stats_by_sector(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[SectorStats]:
        if start and end and end <= start:
            raise ValidationException("end must be after start")
        return await self._tickets.stats_by_sector(start, end)

    async def send_daily_summary(self, day_start: datetime) -> Optional[DailySummary]:
        """
        Summarise tickets created on the day starting at `day_start` and
        queue it for leaders and admins. Returns None when nothing was
        reported that day.
        """
        rows = await self._tickets.stats_by_sector(day_start, day_start + timedelta(days=1))
        if not rows:
            return None

        summary = DailySummary(
            day=day_start,
            total=sum(r.total_reports for r in rows),
            completed=sum(r.completed_reports for r in rows),
            escalated=sum(r.escalated_reports for r in rows),
            safety=sum(r.safety_reports for r in rows),
        )

        recipients = await self._reference.find_user_ids_by_roles(
            [UserRole.TECHNICIAN_LEADER, UserRole.WORKERS_LEADER, UserRole.ADMIN]
        )
        self._uow.notify_after_commit(
            EventKind.DAILY_SUMMARY,
            {
                "message": summary.format_message(),
                "date": day_start.date().isoformat(),
                "total": summary.total,
                "completed": summary.completed,
                "escalated": summary.escalated,
                "safety": summary.safety,
                "completion_rate": summary.completion_rate,
                "by_sector": [
                    {
                        "sector": r.sector,
                        "breakdown_type": r.breakdown_type.value,
                        "total": r.total_reports,
                        "completed": r.completed_reports,
                    }
                    for r in rows
                ],
            },
            recipients
        )
        return summary
