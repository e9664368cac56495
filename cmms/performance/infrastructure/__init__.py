"""
Performance Infrastructure Layer
================================
"""

from cmms.performance.infrastructure.models import TechnicianStatsModel
from cmms.performance.infrastructure.repositories import SQLAlchemyStatsRepository

__all__ = [
    "TechnicianStatsModel",
    "SQLAlchemyStatsRepository",
]
