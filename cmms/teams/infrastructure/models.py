"""
Team Infrastructure Models
==========================

SQLAlchemy model for team memberships (the `report_technicians` table).

Two partial unique indexes back the membership invariants at the storage
level: one active membership per (ticket, technician) and one active
`main` per ticket.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from cmms.config import TeamRole
from cmms.infrastructure.database import Base, UTCDateTime


class TeamMembershipModel(Base):
    """
    Database model for the TeamMembership entity.

    Maps to the 'report_technicians' table. Rows are soft-deleted
    (is_active=false, left_at set) so the team history is kept.
    """
    __tablename__ = "report_technicians"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    report_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    technician_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    role: Mapped[TeamRole] = mapped_column(String(20), nullable=False, default=TeamRole.SUPPORT)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    left_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_report_technicians_active_member",
            "report_id", "technician_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index(
            "uq_report_technicians_active_main",
            "report_id",
            unique=True,
            postgresql_where=text("is_active AND role = 'main'"),
            sqlite_where=text("is_active AND role = 'main'"),
        ),
        Index("ix_report_technicians_technician_active", "technician_id", "is_active"),
    )
