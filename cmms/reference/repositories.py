"""
Reference Data Repository
=========================

Point lookups over users, machines and parts.
"""

from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cmms.config import TECHNICIAN_ROLES, UserRole
from cmms.reference.models import MachineModel, PartModel, TechnicianModel


class ReferenceRepository:
    """Read-only access to the directory tables."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_user(self, user_id: UUID) -> Optional[TechnicianModel]:
        return await self._session.get(TechnicianModel, user_id)

    async def get_technician(self, technician_id: UUID) -> Optional[TechnicianModel]:
        """Get an active user holding a technician role, or None."""
        stmt = select(TechnicianModel).where(
            TechnicianModel.id == technician_id,
            TechnicianModel.role.in_([r.value for r in TECHNICIAN_ROLES]),
            TechnicianModel.is_active.is_(True),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def lock_technician(self, technician_id: UUID) -> None:
        """Take a row lock on the technician (no-op on SQLite)."""
        stmt = select(TechnicianModel.id).where(
            TechnicianModel.id == technician_id
        ).with_for_update()
        await self._session.execute(stmt)

    async def get_machine(self, machine_id: UUID) -> Optional[MachineModel]:
        return await self._session.get(MachineModel, machine_id)

    async def find_user_ids_by_roles(self, roles: Sequence[UserRole]) -> List[str]:
        """Notification recipients: ids of active users holding any of `roles`."""
        stmt = select(TechnicianModel.id).where(
            TechnicianModel.role.in_([UserRole(r).value for r in roles]),
            TechnicianModel.is_active.is_(True),
        ).order_by(TechnicianModel.username)
        result = await self._session.execute(stmt)
        return [str(user_id) for user_id in result.scalars().all()]

    async def list_technicians(self, sector: Optional[str] = None) -> List[TechnicianModel]:
        """
        Active technicians and technician leaders.

        A technician without a home sector is eligible everywhere.
        """
        stmt = select(TechnicianModel).where(
            TechnicianModel.role.in_([r.value for r in TECHNICIAN_ROLES]),
            TechnicianModel.is_active.is_(True),
        )
        if sector is not None:
            stmt = stmt.where(
                (TechnicianModel.sector.is_(None)) | (TechnicianModel.sector == sector)
            )
        result = await self._session.execute(stmt.order_by(TechnicianModel.username))
        return list(result.scalars().all())

    async def find_low_stock_parts(self) -> List[PartModel]:
        """Active parts at or below their minimum stock, emptiest first."""
        stmt = select(PartModel).where(
            PartModel.is_active.is_(True),
            PartModel.stock_quantity <= PartModel.minimum_stock,
        ).order_by(PartModel.stock_quantity.asc(), PartModel.part_name)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
