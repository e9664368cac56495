"""
Team Domain Entities
====================
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from cmms.config import TeamRole, UserRole, LEADER_CAPABLE_ROLES
from cmms.config.policy import TeamPolicy


@dataclass
class TeamMembership:
    """A technician's participation in a ticket's team."""
    id: UUID
    ticket_id: UUID
    technician_id: UUID
    role: TeamRole
    is_active: bool
    joined_at: datetime
    left_at: Optional[datetime] = None
    username: Optional[str] = None

    def __post_init__(self):
        self.role = TeamRole(self.role)


@dataclass
class TechnicianWorkload:
    """Active memberships on open tickets, split by role. Never stored."""
    technician_id: UUID
    main_assignments: int = 0
    leader_assignments: int = 0
    support_assignments: int = 0
    high_severity_assignments: int = 0

    @property
    def total_assignments(self) -> int:
        return self.main_assignments + self.leader_assignments + self.support_assignments

    def is_available(self, high_severity: bool, policy: Optional[TeamPolicy] = None) -> bool:
        """
        High-severity work only needs a free slot overall; ordinary work
        also respects the cap on tickets led as main.
        """
        policy = policy or TeamPolicy()
        if self.total_assignments >= policy.max_total_assignments:
            return False
        if high_severity:
            return True
        return self.main_assignments < policy.max_main_assignments


@dataclass
class TechnicianCandidate:
    """A technician offered for manual assignment."""
    technician_id: UUID
    username: str
    role: UserRole
    sector: Optional[str]
    workload: TechnicianWorkload

    def __post_init__(self):
        self.role = UserRole(self.role)

    @property
    def is_leader_capable(self) -> bool:
        return self.role in LEADER_CAPABLE_ROLES

    @property
    def sort_key(self):
        return (self.workload.total_assignments, 0 if self.is_leader_capable else 1, self.username)


@dataclass
class TechnicianAssignment:
    """An active membership together with its ticket's headline fields."""
    membership: TeamMembership
    ticket_status: str
    breakdown_type: str
    sector: str
    safety_required: bool
    sla_deadline: datetime
