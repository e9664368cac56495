"""
Reference Data Models
=====================

SQLAlchemy models for the directory tables shared with the rest of the
platform (user management, machine registry, inventory).
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from cmms.config import UserRole
from cmms.infrastructure.database import Base, UTCDateTime


class TechnicianModel(Base):
    """
    Platform user.

    Maps to the 'users' table. Only technicians and leaders take part in
    assignment, but reporters and admins live here too and receive
    notifications.
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    employee_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(String(50), nullable=False, index=True)
    sector: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    device_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class MachineModel(Base):
    """
    Machine registry entry, located by QR code.

    Maps to the 'machine_map' table. The machine's sector is authoritative
    for tickets reported by scanning its code.
    """
    __tablename__ = "machine_map"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    qr_code_value: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    machine_label: Mapped[str] = mapped_column(String(100), nullable=False)
    sector: Mapped[str] = mapped_column(String(50), nullable=False)
    grid_location: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class PartModel(Base):
    """Spare part stock level. Maps to the 'parts' table."""
    __tablename__ = "parts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    part_name: Mapped[str] = mapped_column(String(100), nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minimum_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
