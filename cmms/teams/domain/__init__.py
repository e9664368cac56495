"""
Teams Domain Layer
==================
"""

from cmms.teams.domain.entities import (
    TeamMembership,
    TechnicianAssignment,
    TechnicianCandidate,
    TechnicianWorkload,
)

__all__ = [
    "TeamMembership",
    "TechnicianAssignment",
    "TechnicianCandidate",
    "TechnicianWorkload",
]
