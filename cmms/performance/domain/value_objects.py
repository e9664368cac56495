"""
Performance Value Objects
=========================
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from cmms.config import BreakdownType
from cmms.config.policy import ScoringPolicy


def month_window(at: datetime) -> Tuple[datetime, datetime]:
    """Calendar month containing `at`, as [first of month, first of next month) in UTC."""
    at = at.astimezone(timezone.utc)
    start = datetime(at.year, at.month, 1, tzinfo=timezone.utc)
    return start, next_month(start)


def month_window_for(year: int, month: int) -> Tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    return start, next_month(start)


def next_month(start: datetime) -> datetime:
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def previous_month(at: datetime) -> Tuple[int, int]:
    """(year, month) of the calendar month before the one containing `at`."""
    at = at.astimezone(timezone.utc)
    if at.month == 1:
        return at.year - 1, 12
    return at.year, at.month - 1


class PointsCalculator:
    """Points awarded for a completed ticket."""

    @staticmethod
    def completion_points(
        breakdown_type: BreakdownType,
        safety_required: bool,
        policy: Optional[ScoringPolicy] = None
    ) -> int:
        policy = policy or ScoringPolicy()
        points = policy.base_points
        if safety_required:
            points += policy.safety_bonus
        points += policy.breakdown_bonus.get(BreakdownType(breakdown_type).value, 0)
        return points
