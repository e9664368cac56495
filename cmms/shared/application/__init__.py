"""
Shared Application Helpers
==========================
"""

from cmms.shared.application.context import OperationContext, run_with_timeout
from cmms.shared.application.unit_of_work import PendingNotification, UnitOfWork

__all__ = [
    "OperationContext",
    "run_with_timeout",
    "PendingNotification",
    "UnitOfWork",
]
