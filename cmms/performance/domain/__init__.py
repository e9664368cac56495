"""
Performance Domain Layer
========================
"""

from cmms.performance.domain.entities import (
    AggregatedStats,
    LeaderboardEntry,
    SectorPerformance,
    TechnicianStats,
)
from cmms.performance.domain.value_objects import (
    PointsCalculator,
    month_window,
    month_window_for,
    previous_month,
)

__all__ = [
    "TechnicianStats",
    "LeaderboardEntry",
    "AggregatedStats",
    "SectorPerformance",
    "PointsCalculator",
    "month_window",
    "month_window_for",
    "previous_month",
]
