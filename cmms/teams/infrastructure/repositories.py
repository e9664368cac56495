"""
Team Infrastructure Repositories
================================

SQLAlchemy implementation of the team membership repository.

`insert_if_allowed` is the heart of the capacity engine: a single
INSERT ... SELECT whose WHERE clause re-evaluates every admission rule
against the rows visible to the statement, so a rule checked earlier in
the call cannot go stale before the row is written.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import (
    String, Uuid, and_, case, func, insert, literal, or_, select, true, update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from cmms.config import BreakdownType, TeamRole, OPEN_STATUSES
from cmms.core import ConflictException
from cmms.infrastructure.database import UTCDateTime
from cmms.reference.models import TechnicianModel
from cmms.teams.application.services import ITeamRepository
from cmms.teams.domain import TeamMembership, TechnicianAssignment, TechnicianWorkload
from cmms.teams.infrastructure.models import TeamMembershipModel
from cmms.tickets.infrastructure.models import TicketModel

_OPEN = [s.value for s in OPEN_STATUSES]

_ROLE_ORDER = case(
    (TeamMembershipModel.role == TeamRole.MAIN.value, 1),
    (TeamMembershipModel.role == TeamRole.LEADER.value, 2),
    else_=3,
)


def to_entity(model: TeamMembershipModel, username: Optional[str] = None) -> TeamMembership:
    return TeamMembership(
        id=model.id,
        ticket_id=model.report_id,
        technician_id=model.technician_id,
        role=model.role,
        is_active=model.is_active,
        joined_at=model.joined_at,
        left_at=model.left_at,
        username=username,
    )


class SQLAlchemyTeamRepository(ITeamRepository):
    """Team membership persistence using async SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def insert_if_allowed(
        self,
        membership: TeamMembership,
        max_team_size: int,
        require_leader: bool,
        require_assignee: bool,
        max_leader_load: Optional[int] = None
    ) -> bool:
        """
        Insert an active membership only if every admission rule holds.

        Args:
            membership: The row to insert
            max_team_size: Active members allowed on the ticket
            require_leader: An active leader must already be on the team
            require_assignee: The technician must be the ticket's assignee
                and no active main may exist (used for `main`)
            max_leader_load: When set, the technician must lead fewer
                open tickets than this

        Returns:
            True if the row was written

        Raises:
            ConflictException: A concurrent writer hit a unique index first
        """
        M = TeamMembershipModel
        active_on_ticket = and_(M.report_id == TicketModel.id, M.is_active.is_(True))

        conditions = [
            TicketModel.id == membership.ticket_id,
            TicketModel.status.in_(_OPEN),
            ~select(M.id).where(
                active_on_ticket, M.technician_id == membership.technician_id
            ).exists(),
            select(func.count(M.id)).where(active_on_ticket)
            .correlate(TicketModel).scalar_subquery() < max_team_size,
        ]

        if require_leader:
            conditions.append(
                select(M.id).where(active_on_ticket, M.role == TeamRole.LEADER.value).exists()
            )

        if require_assignee:
            conditions.append(TicketModel.assigned_to == membership.technician_id)
            conditions.append(
                ~select(M.id).where(active_on_ticket, M.role == TeamRole.MAIN.value).exists()
            )

        if max_leader_load is not None:
            led = aliased(TeamMembershipModel)
            led_ticket = aliased(TicketModel)
            conditions.append(
                select(func.count(led.id))
                .join(led_ticket, led_ticket.id == led.report_id)
                .where(
                    led.technician_id == membership.technician_id,
                    led.role == TeamRole.LEADER.value,
                    led.is_active.is_(True),
                    led_ticket.status.in_(_OPEN),
                )
                .scalar_subquery() < max_leader_load
            )

        source = select(
            literal(membership.id, Uuid),
            TicketModel.id,
            literal(membership.technician_id, Uuid),
            literal(membership.role.value, String),
            true(),
            literal(membership.joined_at, UTCDateTime()),
        ).where(*conditions)

        stmt = insert(M).from_select(
            ["id", "report_id", "technician_id", "role", "is_active", "joined_at"],
            source,
        )

        try:
            async with self._session.begin_nested():
                await self._session.execute(stmt)
        except IntegrityError as e:
            raise ConflictException(
                "Concurrent team change on this ticket",
                {"ticket_id": str(membership.ticket_id), "technician_id": str(membership.technician_id)}
            ) from e

        written = await self._session.scalar(select(M.id).where(M.id == membership.id))
        return written is not None

    async def get(self, membership_id: UUID) -> Optional[TeamMembership]:
        model = await self._session.get(TeamMembershipModel, membership_id, populate_existing=True)
        return to_entity(model) if model else None

    async def find_active(self, ticket_id: UUID, technician_id: UUID) -> Optional[TeamMembership]:
        stmt = select(TeamMembershipModel).where(
            TeamMembershipModel.report_id == ticket_id,
            TeamMembershipModel.technician_id == technician_id,
            TeamMembershipModel.is_active.is_(True),
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return to_entity(model) if model else None

    async def active_role_counts(self, ticket_id: UUID) -> Dict[TeamRole, int]:
        stmt = select(TeamMembershipModel.role, func.count(TeamMembershipModel.id)).where(
            TeamMembershipModel.report_id == ticket_id,
            TeamMembershipModel.is_active.is_(True),
        ).group_by(TeamMembershipModel.role)
        result = await self._session.execute(stmt)
        return {TeamRole(role): count for role, count in result.all()}

    async def deactivate(self, ticket_id: UUID, technician_id: UUID, left_at: datetime) -> bool:
        stmt = (
            update(TeamMembershipModel)
            .where(
                TeamMembershipModel.report_id == ticket_id,
                TeamMembershipModel.technician_id == technician_id,
                TeamMembershipModel.is_active.is_(True),
            )
            .values(is_active=False, left_at=left_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_active(self, ticket_id: UUID) -> List[TeamMembership]:
        """Current team: main, then leader, then support, each by join time."""
        stmt = (
            select(TeamMembershipModel, TechnicianModel.username)
            .outerjoin(TechnicianModel, TechnicianModel.id == TeamMembershipModel.technician_id)
            .where(
                TeamMembershipModel.report_id == ticket_id,
                TeamMembershipModel.is_active.is_(True),
            )
            .order_by(_ROLE_ORDER, TeamMembershipModel.joined_at)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [to_entity(model, username) for model, username in result.all()]

    async def list_history(self, ticket_id: UUID) -> List[TeamMembership]:
        stmt = (
            select(TeamMembershipModel, TechnicianModel.username)
            .outerjoin(TechnicianModel, TechnicianModel.id == TeamMembershipModel.technician_id)
            .where(TeamMembershipModel.report_id == ticket_id)
            .order_by(TeamMembershipModel.joined_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [to_entity(model, username) for model, username in result.all()]

    async def workloads(
        self,
        technician_ids: Optional[Iterable[UUID]] = None
    ) -> Dict[UUID, TechnicianWorkload]:
        """
        Active memberships on open tickets per technician and role.

        Technicians with no open work are absent from the result.
        """
        M = TeamMembershipModel
        high_severity = or_(
            TicketModel.safety_required.is_(True),
            TicketModel.breakdown_type == BreakdownType.ELECTRICAL.value,
        )
        stmt = (
            select(
                M.technician_id,
                M.role,
                func.count(M.id),
                func.sum(case((high_severity, 1), else_=0)),
            )
            .join(TicketModel, TicketModel.id == M.report_id)
            .where(M.is_active.is_(True), TicketModel.status.in_(_OPEN))
            .group_by(M.technician_id, M.role)
        )
        if technician_ids is not None:
            stmt = stmt.where(M.technician_id.in_(list(technician_ids)))

        result = await self._session.execute(stmt)

        workloads: Dict[UUID, TechnicianWorkload] = {}
        for technician_id, role, count, severe in result.all():
            workload = workloads.setdefault(technician_id, TechnicianWorkload(technician_id))
            role = TeamRole(role)
            if role == TeamRole.MAIN:
                workload.main_assignments += count
            elif role == TeamRole.LEADER:
                workload.leader_assignments += count
            else:
                workload.support_assignments += count
            workload.high_severity_assignments += int(severe or 0)
        return workloads

    async def assignments_for_technician(
        self,
        technician_id: UUID,
        include_completed: bool = False
    ) -> List[TechnicianAssignment]:
        """Active memberships of a technician, most urgent deadline first."""
        stmt = (
            select(TeamMembershipModel, TicketModel)
            .join(TicketModel, TicketModel.id == TeamMembershipModel.report_id)
            .where(
                TeamMembershipModel.technician_id == technician_id,
                TeamMembershipModel.is_active.is_(True),
            )
            .order_by(TicketModel.sla_deadline.asc(), TeamMembershipModel.joined_at.desc())
            .execution_options(populate_existing=True)
        )
        if not include_completed:
            stmt = stmt.where(TicketModel.status.in_(_OPEN))

        result = await self._session.execute(stmt)
        return [
            TechnicianAssignment(
                membership=to_entity(membership),
                ticket_status=ticket.status,
                breakdown_type=ticket.breakdown_type,
                sector=ticket.sector,
                safety_required=ticket.safety_required,
                sla_deadline=ticket.sla_deadline,
            )
            for membership, ticket in result.all()
        ]
