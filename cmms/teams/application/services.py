"""
Team Assignment Services
========================

Capacity-constrained team composition.

Admission rules for a new member:
- at most one active membership per technician and ticket
- team size cap: 5 for high-severity tickets, 2 otherwise
- high-severity tickets need an active leader before anyone else joins
- `main` is reserved for the ticket's assignee, one per ticket

In strict capacity mode the ticket row is locked before the conditional
insert; in best-effort mode only the conditional insert guards the rules.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union
from uuid import UUID, uuid4

from cmms.config import CapacityMode, EventKind, TeamRole, LEADER_CAPABLE_ROLES
from cmms.config.policy import PolicyConfigManager
from cmms.core import (
    CapacityException, ConflictException, ResourceNotFoundException, ValidationException,
)
from cmms.shared.application import UnitOfWork
from cmms.shared.infrastructure.logging import get_context_logger
from cmms.teams.domain import (
    TeamMembership, TechnicianAssignment, TechnicianCandidate, TechnicianWorkload,
)
from cmms.tickets.domain import Ticket


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITeamRepository(ABC):
    """Interface for team membership data access."""

    @abstractmethod
    async def insert_if_allowed(
        self,
        membership: TeamMembership,
        max_team_size: int,
        require_leader: bool,
        require_assignee: bool,
        max_leader_load: Optional[int] = None
    ) -> bool:
        """Conditional insert. True if the row was written."""

    @abstractmethod
    async def get(self, membership_id: UUID) -> Optional[TeamMembership]:
        """Get membership by ID."""

    @abstractmethod
    async def find_active(self, ticket_id: UUID, technician_id: UUID) -> Optional[TeamMembership]:
        """Active membership of a technician on a ticket."""

    @abstractmethod
    async def active_role_counts(self, ticket_id: UUID) -> Dict[TeamRole, int]:
        """Active members on a ticket per role."""

    @abstractmethod
    async def deactivate(self, ticket_id: UUID, technician_id: UUID, left_at: datetime) -> bool:
        """Soft-remove an active membership. True if one was removed."""

    @abstractmethod
    async def list_active(self, ticket_id: UUID) -> List[TeamMembership]:
        """Current team."""

    @abstractmethod
    async def list_history(self, ticket_id: UUID) -> List[TeamMembership]:
        """All memberships ever recorded for a ticket."""

    @abstractmethod
    async def workloads(self, technician_ids: Optional[Iterable[UUID]] = None) -> Dict[UUID, TechnicianWorkload]:
        """Workload per technician."""

    @abstractmethod
    async def assignments_for_technician(
        self,
        technician_id: UUID,
        include_completed: bool = False
    ) -> List[TechnicianAssignment]:
        """Tickets a technician is working on."""


# ========== Application Services ==========

class TeamAssignmentService:
    """Adds, removes and ranks technicians on ticket teams."""

    def __init__(
        self,
        uow: UnitOfWork,
        team_repository: ITeamRepository,
        ticket_repository,
        reference_repository,
        policy_manager: PolicyConfigManager,
        capacity_mode: CapacityMode = CapacityMode.STRICT
    ):
        self._uow = uow
        self._teams = team_repository
        self._tickets = ticket_repository
        self._reference = reference_repository
        self._policy_manager = policy_manager
        self._capacity_mode = capacity_mode
        self._logger = get_context_logger(__name__, uow.context.correlation_id)

    def max_team_size(self, ticket: Ticket) -> int:
        team_policy = self._policy_manager.policy.team
        if ticket.is_high_severity:
            return team_policy.high_severity_team_size
        return team_policy.normal_team_size

    async def _load_ticket(self, ticket_id: UUID) -> Ticket:
        ticket = await self._tickets.get_by_id(
            ticket_id, for_update=self._capacity_mode == CapacityMode.STRICT
        )
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        return ticket

    async def add_to_team(
        self,
        ticket_id: UUID,
        technician_id: UUID,
        role: Union[TeamRole, str] = TeamRole.SUPPORT
    ) -> TeamMembership:
        """
        Add a technician to a ticket's team.

        Raises:
            ResourceNotFoundException: Unknown ticket
            ValidationException: Unknown role, not a technician, closed
                ticket, leader role without leader rights, or main role
                for someone other than the assignee
            ConflictException: Already an active member, or an active main exists
            CapacityException: Team full, or leader gate unmet
        """
        try:
            role = TeamRole(role)
        except ValueError as e:
            raise ValidationException(f"Unknown team role '{role}'", {"role": str(role)}) from e

        ticket = await self._load_ticket(ticket_id)
        if not ticket.is_open:
            raise ValidationException(
                "Cannot change the team of a closed ticket",
                {"ticket_id": str(ticket_id), "status": ticket.status.value}
            )

        technician = await self._reference.get_technician(technician_id)
        if technician is None:
            raise ValidationException(
                "Team members must be active technicians",
                {"technician_id": str(technician_id)}
            )
        if role == TeamRole.LEADER and technician.role not in [r.value for r in LEADER_CAPABLE_ROLES]:
            raise ValidationException(
                "Only technician leaders can lead a team",
                {"technician_id": str(technician_id)}
            )

        membership = await self._insert(ticket, technician_id, role)
        if membership is None:
            await self._raise_rejection(ticket, technician_id, role)

        self._uow.notify_after_commit(
            EventKind.TEAM_ASSIGNMENT,
            {"report_id": str(ticket_id), "role": role.value},
            [str(technician_id)]
        )
        return membership

    async def _insert(
        self,
        ticket: Ticket,
        technician_id: UUID,
        role: TeamRole,
        max_leader_load: Optional[int] = None
    ) -> Optional[TeamMembership]:
        membership = TeamMembership(
            id=uuid4(),
            ticket_id=ticket.id,
            technician_id=technician_id,
            role=role,
            is_active=True,
            joined_at=datetime.now(timezone.utc),
        )
        written = await self._teams.insert_if_allowed(
            membership,
            max_team_size=self.max_team_size(ticket),
            require_leader=ticket.is_high_severity and role != TeamRole.LEADER,
            require_assignee=role == TeamRole.MAIN,
            max_leader_load=max_leader_load,
        )
        if not written:
            return None

        self._logger.info(
            "Technician added to team",
            extra={"ticket_id": str(ticket.id), "technician_id": str(technician_id), "role": role.value}
        )
        return membership

    async def _raise_rejection(self, ticket: Ticket, technician_id: UUID, role: TeamRole) -> None:
        """Work out which admission rule refused the insert."""
        details = {"ticket_id": str(ticket.id), "technician_id": str(technician_id), "role": role.value}

        if await self._teams.find_active(ticket.id, technician_id) is not None:
            raise ConflictException("Technician is already assigned to this ticket", details)

        current = await self._tickets.get_by_id(ticket.id)
        if current is None:
            raise ResourceNotFoundException("Ticket", str(ticket.id))
        if not current.is_open:
            raise ConflictException("Ticket was closed concurrently", details)

        counts = await self._teams.active_role_counts(ticket.id)

        if role == TeamRole.MAIN:
            if counts.get(TeamRole.MAIN, 0) > 0:
                raise ConflictException("Ticket already has a main technician", details)
            if current.assigned_to != technician_id:
                raise ValidationException("The main role is reserved for the assigned technician", details)

        if ticket.is_high_severity and role != TeamRole.LEADER and counts.get(TeamRole.LEADER, 0) == 0:
            raise CapacityException(
                "High severity tickets require a team leader to be assigned first", details
            )

        max_size = self.max_team_size(ticket)
        if sum(counts.values()) >= max_size:
            raise CapacityException(
                f"Team size limit reached ({max_size} for "
                f"{'high' if ticket.is_high_severity else 'normal'} severity tickets)",
                {**details, "max_team_size": max_size}
            )

        raise ConflictException("Team changed concurrently, retry", details)

    async def remove_from_team(self, ticket_id: UUID, technician_id: UUID) -> None:
        """
        Soft-remove an active membership.

        Raises:
            ResourceNotFoundException: No active membership
        """
        if not await self._teams.deactivate(ticket_id, technician_id, datetime.now(timezone.utc)):
            raise ResourceNotFoundException(
                "TeamMembership", f"{ticket_id}/{technician_id}"
            )
        self._logger.info(
            "Technician removed from team",
            extra={"ticket_id": str(ticket_id), "technician_id": str(technician_id)}
        )

    async def auto_assign_team_leader(self, ticket_id: UUID) -> Optional[TeamMembership]:
        """
        Put the least-loaded available leader on a ticket.

        Leaders already leading the maximum number of open tickets are
        skipped. Returns None when nobody has capacity.
        """
        ticket = await self._load_ticket(ticket_id)
        limit = self._policy_manager.policy.team.max_leader_assignments

        leaders = [
            t for t in await self._reference.list_technicians()
            if t.role in [r.value for r in LEADER_CAPABLE_ROLES]
        ]
        workloads = await self._teams.workloads([t.id for t in leaders])

        ranked = sorted(
            leaders,
            key=lambda t: (
                workloads.get(t.id, TechnicianWorkload(t.id)).leader_assignments,
                workloads.get(t.id, TechnicianWorkload(t.id)).total_assignments,
                t.username,
            )
        )

        for leader in ranked:
            if workloads.get(leader.id, TechnicianWorkload(leader.id)).leader_assignments >= limit:
                break
            membership = await self._insert(ticket, leader.id, TeamRole.LEADER, max_leader_load=limit)
            if membership is not None:
                self._uow.notify_after_commit(
                    EventKind.TEAM_ASSIGNMENT,
                    {"report_id": str(ticket_id), "role": TeamRole.LEADER.value},
                    [str(leader.id)]
                )
                return membership

        self._logger.info("No team leader with capacity", extra={"ticket_id": str(ticket_id)})
        return None

    async def get_technician_workload(self, technician_id: UUID) -> TechnicianWorkload:
        workloads = await self._teams.workloads([technician_id])
        return workloads.get(technician_id, TechnicianWorkload(technician_id))

    async def is_technician_available(self, technician_id: UUID, high_severity: bool = False) -> bool:
        workload = await self.get_technician_workload(technician_id)
        return workload.is_available(high_severity, self._policy_manager.policy.team)

    async def get_available_technicians(
        self,
        sector: Optional[str] = None,
        high_severity: bool = False
    ) -> List[TechnicianCandidate]:
        """
        Technicians with capacity for new work, least loaded first and
        leaders ahead of plain technicians on ties.
        """
        technicians = await self._reference.list_technicians(sector)
        workloads = await self._teams.workloads([t.id for t in technicians])
        team_policy = self._policy_manager.policy.team

        candidates = [
            TechnicianCandidate(
                technician_id=t.id,
                username=t.username,
                role=t.role,
                sector=t.sector,
                workload=workloads.get(t.id, TechnicianWorkload(t.id)),
            )
            for t in technicians
        ]
        return sorted(
            (c for c in candidates if c.workload.is_available(high_severity, team_policy)),
            key=lambda c: c.sort_key
        )

    async def get_team(self, ticket_id: UUID) -> List[TeamMembership]:
        return await self._teams.list_active(ticket_id)

    async def get_team_history(self, ticket_id: UUID) -> List[TeamMembership]:
        return await self._teams.list_history(ticket_id)

    async def get_tickets_for_technician(
        self,
        technician_id: UUID,
        include_completed: bool = False
    ) -> List[TechnicianAssignment]:
        return await self._teams.assignments_for_technician(technician_id, include_completed)
