"""
Ticket Infrastructure Models
============================

SQLAlchemy ORM model for tickets (the `tickets` table).
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from cmms.config import BreakdownType, LocationMethod, TicketStatus
from cmms.infrastructure.database import Base, UTCDateTime


class TicketModel(Base):
    """
    Database model for the Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    reporter_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    # Report content
    breakdown_type: Mapped[BreakdownType] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    safety_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assistance_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Location
    location_method: Mapped[LocationMethod] = mapped_column(String(10), nullable=False)
    sector: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    grid_location: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    machine_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("machine_map.id"), nullable=True)

    # Lifecycle
    status: Mapped[TicketStatus] = mapped_column(String(20), nullable=False, default=TicketStatus.NOTICED, index=True)
    assigned_to: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    sla_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completion_credited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(assigned_to IS NULL) = (status = 'noticed')",
            name="ck_tickets_assignee_matches_status"
        ),
        CheckConstraint(
            "(location_method = 'grid' AND grid_location IS NOT NULL AND machine_id IS NULL) OR "
            "(location_method = 'qr' AND machine_id IS NOT NULL AND grid_location IS NULL)",
            name="ck_tickets_single_location"
        ),
        Index("ix_tickets_escalation_scan", "status", "escalated", "sla_deadline"),
    )
