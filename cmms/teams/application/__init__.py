"""
Teams Application Layer
=======================
"""

from cmms.teams.application.services import ITeamRepository, TeamAssignmentService

__all__ = [
    "ITeamRepository",
    "TeamAssignmentService",
]
