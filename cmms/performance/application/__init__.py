"""
Performance Application Layer
=============================
"""

from cmms.performance.application.services import IStatsRepository, PerformanceLedgerService

__all__ = [
    "IStatsRepository",
    "PerformanceLedgerService",
]
