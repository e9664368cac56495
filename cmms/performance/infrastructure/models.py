"""
Performance Infrastructure Models
=================================

SQLAlchemy model for the technician performance ledger.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from cmms.infrastructure.database import Base, UTCDateTime


class TechnicianStatsModel(Base):
    """
    Database model for TechnicianStats.

    Maps to the 'technician_stats' table; one row per technician, sector
    and month window.
    """
    __tablename__ = "technician_stats"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    technician_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    sector: Mapped[str] = mapped_column(String(50), nullable=False)

    total_assigned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    high_severity_handled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    time_window_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    time_window_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint(
            "technician_id", "sector", "time_window_start", "time_window_end",
            name="uq_technician_stats_window"
        ),
    )
