"""
Background Jobs
===============
"""

from cmms.jobs.orchestrator import JobDefinition, Orchestrator, RunResult
from cmms.jobs.tasks import MaintenanceTasks, build_job_definitions

__all__ = [
    "JobDefinition",
    "Orchestrator",
    "RunResult",
    "MaintenanceTasks",
    "build_job_definitions",
]
