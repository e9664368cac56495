"""
Ticket Domain Entities
======================

Pure Python entities for the ticket lifecycle, free of persistence
concerns.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from cmms.config import BreakdownType, LocationMethod, TicketStatus, OPEN_STATUSES
from cmms.tickets.domain.value_objects import TicketStateMachine, is_high_severity


@dataclass
class Ticket:
    """
    A reported maintenance issue.

    `assigned_to` is set exactly when the ticket has left `noticed`;
    `sla_deadline` is fixed at creation and `escalated` only ever goes
    from False to True.
    """

    id: UUID
    reporter_id: UUID
    breakdown_type: BreakdownType
    description: str
    safety_required: bool
    assistance_required: bool
    location_method: LocationMethod
    sector: str
    status: TicketStatus
    sla_deadline: datetime
    created_at: datetime

    grid_location: Optional[str] = None
    machine_id: Optional[UUID] = None
    image_url: Optional[str] = None
    assigned_to: Optional[UUID] = None
    escalated: bool = False
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        self.breakdown_type = BreakdownType(self.breakdown_type)
        self.location_method = LocationMethod(self.location_method)
        self.status = TicketStatus(self.status)

        if (self.assigned_to is None) != (self.status == TicketStatus.NOTICED):
            raise ValueError("assigned_to must be set exactly when status is past 'noticed'")

        if self.completed_at is not None and self.completed_at < self.created_at:
            raise ValueError("completed_at cannot be before created_at")

    @property
    def is_high_severity(self) -> bool:
        return is_high_severity(self.breakdown_type, self.safety_required)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def can_escalate(self, now: datetime) -> bool:
        return TicketStateMachine.can_escalate(self.status, self.escalated, self.sla_deadline, now)


@dataclass
class SectorStats:
    """Ticket counts for one (sector, breakdown type) over a period."""
    sector: str
    breakdown_type: BreakdownType
    total_reports: int = 0
    completed_reports: int = 0
    escalated_reports: int = 0
    safety_reports: int = 0
    avg_completion_hours: Optional[float] = None


@dataclass
class DailySummary:
    """Totals for a single day across all sectors."""
    day: datetime
    total: int
    completed: int
    escalated: int
    safety: int

    @property
    def completion_rate(self) -> Optional[float]:
        if self.total == 0:
            return None
        return round(self.completed / self.total * 100, 1)

    def format_message(self) -> str:
        lines = [
            f"Daily Summary for {self.day.date().isoformat()}",
            "",
            f"Total Reports: {self.total}",
            f"Completed: {self.completed}",
            f"Escalated: {self.escalated}",
            f"Safety Critical: {self.safety}",
        ]
        if self.completion_rate is not None:
            lines.append(f"Completion Rate: {self.completion_rate}%")
        return "\n".join(lines)
