"""
Periodic Job Bodies
===================

The seven maintenance jobs and their schedules. Each body opens its own
unit of work through the application container, so a failure in one job
rolls back only that job's transaction.
"""

import asyncio
import shutil
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import psutil

from cmms.config import EventKind, UserRole, settings
from cmms.escalation import day_bounds
from cmms.jobs.orchestrator import JobDefinition
from cmms.performance.domain import previous_month
from cmms.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def remove_stale_files(directory: Path, max_age_hours: int, now: float = None) -> int:
    """Delete regular files under `directory` older than `max_age_hours`."""
    if not directory.is_dir():
        return 0

    cutoff = (now if now is not None else time.time()) - max_age_hours * 3600
    removed = 0
    for path in directory.iterdir():
        if not path.is_file():
            continue
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except FileNotFoundError:
            continue
    return removed


def process_memory_mb() -> float:
    """Current resident set size of this process in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


class MaintenanceTasks:
    """Job bodies bound to a running CMMSApplication."""

    def __init__(self, app, app_settings=None):
        self._app = app
        self._settings = app_settings or settings

    async def sla_escalation(self) -> int:
        return await self._app.run_escalation_sweep()

    async def monthly_stats(self, now: datetime = None) -> int:
        year, month = previous_month(now or datetime.now(timezone.utc))
        return await self._app.generate_monthly_stats(year, month)

    async def cleanup_temp_files(self) -> int:
        removed = await asyncio.to_thread(
            remove_stale_files,
            Path(self._settings.temp_upload_dir),
            self._settings.temp_file_max_age_hours,
        )
        if removed:
            logger.info("Removed stale temp files", extra={"count": removed})
        return removed

    async def archive_reports(self) -> int:
        return await self._app.archive_old_reports(self._settings.archive_after_days)

    async def daily_summary(self, now: datetime = None):
        today, _ = day_bounds(now or datetime.now(timezone.utc))
        return await self._app.send_daily_summary(today - timedelta(days=1))

    async def low_stock_check(self) -> int:
        parts = await self._app.find_low_stock_parts()
        if not parts:
            return 0

        lines = [
            f"{part.part_name}: {part.stock_quantity} left (minimum {part.minimum_stock})"
            for part in parts
        ]
        await self._app.send_to_roles(
            EventKind.LOW_STOCK_ALERT,
            {
                "message": f"{len(parts)} part(s) below minimum stock:\n" + "\n".join(lines),
                "parts": [
                    {
                        "part_id": str(part.id),
                        "part_name": part.part_name,
                        "stock_quantity": part.stock_quantity,
                        "minimum_stock": part.minimum_stock,
                    }
                    for part in parts
                ],
            },
            [UserRole.TECHNICIAN_LEADER, UserRole.ADMIN],
        )
        logger.warning("Low stock detected", extra={"count": len(parts)})
        return len(parts)

    async def health_check(self) -> Dict[str, Any]:
        """Database, memory and disk checks; admins are alerted on any failure."""
        problems: List[str] = []

        database_ok = await self._app.ping_database()
        if not database_ok:
            problems.append("database unreachable")

        memory_mb = round(process_memory_mb(), 1)
        if memory_mb > self._settings.health_memory_limit_mb:
            problems.append(
                f"memory usage {memory_mb}MB exceeds {self._settings.health_memory_limit_mb}MB"
            )

        free_mb = round(shutil.disk_usage(Path.cwd()).free / (1024 * 1024), 1)
        if free_mb < self._settings.health_min_free_disk_mb:
            problems.append(
                f"free disk {free_mb}MB below {self._settings.health_min_free_disk_mb}MB"
            )

        report = {
            "healthy": not problems,
            "database": database_ok,
            "memory_mb": memory_mb,
            "disk_free_mb": free_mb,
            "problems": problems,
        }

        if problems:
            logger.error("Health check failed", extra=report)
            await self._app.send_to_roles(
                EventKind.HEALTH_ALERT,
                {"message": "System health check failed: " + "; ".join(problems), **report},
                [UserRole.ADMIN],
            )
        return report


def build_job_definitions(tasks: MaintenanceTasks) -> List[JobDefinition]:
    """The fixed job registry."""
    return [
        JobDefinition("sla-escalation", "*/5 * * * *", tasks.sla_escalation,
                      "Escalate tickets past their SLA deadline"),
        JobDefinition("monthly-stats", "0 2 1 * *", tasks.monthly_stats,
                      "Backfill technician stats for the previous month"),
        JobDefinition("cleanup-temp-files", "0 3 * * *", tasks.cleanup_temp_files,
                      "Delete stale temporary uploads"),
        JobDefinition("archive-reports", "0 4 * * sun", tasks.archive_reports,
                      "Archive old completed reports"),
        JobDefinition("daily-summary", "0 8 * * *", tasks.daily_summary,
                      "Send yesterday's summary to leaders"),
        JobDefinition("low-stock-check", "0 9 * * *", tasks.low_stock_check,
                      "Alert on parts below minimum stock"),
        JobDefinition("health-check", "*/30 * * * *", tasks.health_check,
                      "Database, memory and disk checks"),
    ]
