"""
Reference Data
==============

Read-only directory data the maintenance core consults but does not own:
technicians and their roles, the machine map, and spare parts stock.
"""

from cmms.reference.models import TechnicianModel, MachineModel, PartModel
from cmms.reference.repositories import ReferenceRepository

__all__ = [
    "TechnicianModel",
    "MachineModel",
    "PartModel",
    "ReferenceRepository",
]
