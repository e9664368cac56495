"""
Teams Infrastructure Layer
==========================
"""

from cmms.teams.infrastructure.models import TeamMembershipModel
from cmms.teams.infrastructure.repositories import SQLAlchemyTeamRepository

__all__ = [
    "TeamMembershipModel",
    "SQLAlchemyTeamRepository",
]
