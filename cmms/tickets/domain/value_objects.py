"""
Ticket Value Objects
====================

Stateless rules for tickets: severity, SLA deadlines and allowed status
transitions.
"""

from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional, Tuple

from cmms.config import BreakdownType, TicketStatus, OPEN_STATUSES
from cmms.config.policy import SLAPolicy
from cmms.core import ValidationException


def is_high_severity(breakdown_type: BreakdownType, safety_required: bool) -> bool:
    """Safety-critical work and electrical faults are high severity."""
    return bool(safety_required) or BreakdownType(breakdown_type) == BreakdownType.ELECTRICAL


class SLACalculator:
    """
    Pure functions for SLA deadlines.

    The deadline is computed once, at creation. Nothing recomputes it, so a
    later policy reload only affects new tickets.
    """

    @staticmethod
    def resolution_hours(
        breakdown_type: Optional[BreakdownType],
        safety_required: bool,
        policy: Optional[SLAPolicy] = None
    ) -> float:
        policy = policy or SLAPolicy()

        if safety_required:
            return policy.safety_hours

        if breakdown_type is None:
            return policy.default_hours

        key = BreakdownType(breakdown_type).value
        return policy.breakdown_hours.get(key, policy.default_hours)

    @staticmethod
    def calculate_deadline(
        created_at: datetime,
        breakdown_type: Optional[BreakdownType],
        safety_required: bool,
        policy: Optional[SLAPolicy] = None
    ) -> datetime:
        """
        Args:
            created_at: Ticket creation time
            breakdown_type: Reported breakdown type
            safety_required: Whether the reporter flagged a safety risk
            policy: SLA targets (defaults when omitted)

        Returns:
            The resolution deadline
        """
        hours = SLACalculator.resolution_hours(breakdown_type, safety_required, policy)
        return created_at + timedelta(hours=hours)


class TicketStateMachine:
    """Allowed status transitions."""

    TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
        TicketStatus.NOTICED: frozenset({TicketStatus.WORKING}),
        TicketStatus.WORKING: frozenset({TicketStatus.COMPLETED}),
        TicketStatus.COMPLETED: frozenset({TicketStatus.ARCHIVED}),
        TicketStatus.ARCHIVED: frozenset(),
    }

    # Transitions a status update may request; assignment and archiving
    # have their own operations.
    STATUS_UPDATES: FrozenSet[Tuple[TicketStatus, TicketStatus]] = frozenset({
        (TicketStatus.WORKING, TicketStatus.COMPLETED),
    })

    @classmethod
    def can_transition(cls, current: TicketStatus, target: TicketStatus) -> bool:
        return TicketStatus(target) in cls.TRANSITIONS[TicketStatus(current)]

    @classmethod
    def ensure_transition(cls, current: TicketStatus, target: TicketStatus) -> None:
        if not cls.can_transition(current, target):
            raise ValidationException(
                f"Cannot move ticket from '{TicketStatus(current).value}' to '{TicketStatus(target).value}'",
                {"current_status": TicketStatus(current).value, "requested_status": TicketStatus(target).value}
            )

    @classmethod
    def ensure_status_update(cls, current: TicketStatus, target: TicketStatus) -> None:
        """Only working -> completed may be requested as a plain status update."""
        if (TicketStatus(current), TicketStatus(target)) not in cls.STATUS_UPDATES:
            raise ValidationException(
                f"Status update from '{TicketStatus(current).value}' to '{TicketStatus(target).value}' is not allowed",
                {"current_status": TicketStatus(current).value, "requested_status": TicketStatus(target).value}
            )

    @staticmethod
    def can_escalate(status: TicketStatus, escalated: bool, sla_deadline: datetime, now: datetime) -> bool:
        return TicketStatus(status) in OPEN_STATUSES and not escalated and now > sla_deadline
