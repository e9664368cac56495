"""
Escalation Module
=================

SLA clock queries and the periodic escalation sweep.
"""

from cmms.escalation.services import EscalationService, day_bounds

__all__ = [
    "EscalationService",
    "day_bounds",
]
