"""
Performance Domain Entities
===========================
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID


@dataclass
class TechnicianStats:
    """
    Ledger row for one technician, sector and month window [start, end).

    Counters only ever grow.
    """
    technician_id: UUID
    sector: str
    time_window_start: datetime
    time_window_end: datetime
    total_assigned: int = 0
    total_completed: int = 0
    high_severity_handled: int = 0
    points: int = 0
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    technician_name: Optional[str] = None

    @property
    def completion_rate(self) -> float:
        if self.total_assigned == 0:
            return 0.0
        return round(self.total_completed / self.total_assigned * 100, 2)


@dataclass
class LeaderboardEntry:
    rank: int
    stats: TechnicianStats


@dataclass
class AggregatedStats:
    """A technician's totals over several months."""
    technician_id: UUID
    total_assigned: int = 0
    total_completed: int = 0
    high_severity_handled: int = 0
    total_points: int = 0
    completion_rate: float = 0.0
    months_active: int = 0


@dataclass
class SectorPerformance:
    sector: str
    active_technicians: int = 0
    total_assigned: int = 0
    total_completed: int = 0
    high_severity_handled: int = 0
    total_points: int = 0
    avg_completion_rate: float = 0.0
