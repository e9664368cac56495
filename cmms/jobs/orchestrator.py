"""
Background Orchestrator
=======================

Owns the fixed registry of periodic jobs.

Each job has its own cron trigger, its own single-flight lock and a time
box. A failing or hanging job is logged and reported in its RunResult; it
never affects the schedule of any other job.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from cmms.config import settings
from cmms.core import ConfigurationException, ResourceNotFoundException
from cmms.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class JobDefinition:
    """A named periodic job with a crontab schedule."""
    name: str
    schedule: str
    func: JobFunc
    description: str = ""
    timeout_seconds: Optional[float] = None


@dataclass
class RunResult:
    """Outcome of one job run."""
    name: str
    success: bool
    duration_ms: float
    skipped: bool = False
    error: Optional[str] = None
    result: Any = None


class Orchestrator:
    """
    Runs named jobs on independent cron timers.

    Usage:
        orchestrator = Orchestrator(build_job_definitions(tasks))
        await orchestrator.start()
        ...
        await orchestrator.stop_all()
    """

    def __init__(
        self,
        jobs: Iterable[JobDefinition],
        timezone: Optional[str] = None,
        job_timeout_seconds: Optional[float] = None,
        shutdown_grace_seconds: Optional[float] = None
    ):
        self._jobs: Dict[str, JobDefinition] = {}
        for job in jobs:
            if job.name in self._jobs:
                raise ConfigurationException(f"Duplicate job name '{job.name}'")
            self._jobs[job.name] = job

        self._timezone = timezone or settings.scheduler_timezone
        self._job_timeout = job_timeout_seconds or settings.job_timeout_seconds
        self._shutdown_grace = (
            shutdown_grace_seconds if shutdown_grace_seconds is not None
            else settings.job_shutdown_grace_seconds
        )
        self._locks: Dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in self._jobs}
        self._in_flight: Set[asyncio.Task] = set()
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def job_names(self):
        return list(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def start(self) -> None:
        """Arm one cron timer per job."""
        if self.is_running:
            logger.warning("Orchestrator already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        for job in self._jobs.values():
            self._scheduler.add_job(
                self._scheduled_run,
                CronTrigger.from_crontab(job.schedule, timezone=self._timezone),
                args=[job.name],
                id=job.name,
                name=job.description or job.name,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
                replace_existing=True,
            )
        self._scheduler.start()

        logger.info(
            "Orchestrator started",
            extra={"jobs": list(self._jobs), "timezone": self._timezone}
        )

    async def _scheduled_run(self, name: str) -> None:
        await self._run(name, manual=False)

    async def _run(self, name: str, manual: bool) -> RunResult:
        job = self._jobs[name]
        lock = self._locks[name]

        if lock.locked():
            logger.warning("Job still running, skipping tick", extra={"job": name, "manual": manual})
            return RunResult(name=name, success=False, duration_ms=0.0, skipped=True,
                             error="previous run still in progress")

        async with lock:
            timeout = job.timeout_seconds or self._job_timeout
            task = asyncio.get_running_loop().create_task(asyncio.wait_for(job.func(), timeout))
            self._in_flight.add(task)
            started = time.perf_counter()
            try:
                with log_latency(logger, "job_run", job=name, manual=manual):
                    result = await task
                return RunResult(
                    name=name,
                    success=True,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    result=result,
                )
            except asyncio.TimeoutError:
                logger.error("Job timed out", extra={"job": name, "timeout_seconds": timeout})
                return RunResult(
                    name=name,
                    success=False,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    error=f"timed out after {timeout}s",
                )
            except asyncio.CancelledError:
                logger.warning("Job cancelled", extra={"job": name})
                raise
            except Exception as e:
                logger.exception("Job failed", extra={"job": name, "error": str(e)})
                return RunResult(
                    name=name,
                    success=False,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    error=str(e),
                )
            finally:
                self._in_flight.discard(task)

    async def trigger_job(self, name: str) -> RunResult:
        """
        Run a job now, outside its schedule.

        Honors the same single-flight rule as scheduled runs: if the job
        is already running the result comes back with skipped=True.

        Raises:
            ResourceNotFoundException: Unknown job name
        """
        if name not in self._jobs:
            raise ResourceNotFoundException("Job", name)

        logger.info("Manually triggering job", extra={"job": name})
        return await self._run(name, manual=True)

    def list_job_status(self) -> Dict[str, Dict[str, Any]]:
        """Per job: whether a run is in progress and whether its timer is armed."""
        status = {}
        for name in self._jobs:
            scheduled_job = self._scheduler.get_job(name) if self.is_running else None
            next_run = getattr(scheduled_job, "next_run_time", None) if scheduled_job else None
            status[name] = {
                "running": self._locks[name].locked(),
                "scheduled": scheduled_job is not None,
                "schedule": self._jobs[name].schedule,
                "next_run_at": next_run.isoformat() if next_run else None,
            }
        return status

    async def stop_all(self) -> None:
        """
        Disarm every timer, then give in-flight runs the grace period to
        finish before cancelling what is left.
        """
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

        pending = set(self._in_flight)
        if pending:
            logger.info("Waiting for running jobs", extra={"count": len(pending)})
            done, still_running = await asyncio.wait(pending, timeout=self._shutdown_grace)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning("Cancelled jobs at shutdown", extra={"count": len(still_running)})

        logger.info("Orchestrator stopped")
