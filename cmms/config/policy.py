"""
Maintenance Policy
==================

Tunable business numbers loaded from YAML, with hot reload.

The defaults are the production rules; a YAML file only needs the keys it
overrides. A reload affects tickets created afterwards only, since SLA
deadlines are fixed when a ticket is created.
"""

import threading
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from cmms.config import BreakdownType
from cmms.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SLAPolicy(BaseModel):
    """Resolution targets in hours."""
    safety_hours: float = Field(default=1, gt=0)
    breakdown_hours: Dict[str, float] = Field(
        default_factory=lambda: {
            BreakdownType.ELECTRICAL.value: 4,
            BreakdownType.MECHANICAL.value: 8,
            BreakdownType.OTHER.value: 24,
        }
    )
    default_hours: float = Field(default=24, gt=0)

    @field_validator("breakdown_hours")
    @classmethod
    def validate_breakdown_hours(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Reject unknown breakdown types and non-positive targets."""
        known = {b.value for b in BreakdownType}
        for key, hours in v.items():
            if key not in known:
                raise ValueError(f"unknown breakdown type '{key}'")
            if hours <= 0:
                raise ValueError(f"SLA hours for '{key}' must be positive")
        return v


class TeamPolicy(BaseModel):
    """Team and technician capacity limits."""
    high_severity_team_size: int = Field(default=5, ge=1)
    normal_team_size: int = Field(default=2, ge=1)
    max_main_assignments: int = Field(default=3, ge=1)
    max_total_assignments: int = Field(default=5, ge=1)
    max_leader_assignments: int = Field(default=2, ge=1)


class ScoringPolicy(BaseModel):
    """Points awarded per completed ticket."""
    base_points: int = Field(default=10, ge=0)
    safety_bonus: int = Field(default=20, ge=0)
    breakdown_bonus: Dict[str, int] = Field(
        default_factory=lambda: {
            BreakdownType.ELECTRICAL.value: 15,
            BreakdownType.MECHANICAL.value: 10,
            BreakdownType.OTHER.value: 0,
        }
    )


class MaintenancePolicy(BaseModel):
    """Complete policy document."""
    sla: SLAPolicy = Field(default_factory=SLAPolicy)
    team: TeamPolicy = Field(default_factory=TeamPolicy)
    scoring: ScoringPolicy = Field(default_factory=ScoringPolicy)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, manager: "PolicyConfigManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info("Policy file changed", extra={"path": str(event.src_path)})
            self.manager.reload()


class PolicyConfigManager:
    """
    Thread-safe policy holder with hot-reload support.

    Readers call `policy` on every operation; the watchdog thread swaps the
    whole object under a lock, so a reader never sees a half-applied reload.
    """

    def __init__(self, policy: Optional[MaintenancePolicy] = None):
        self._policy = policy
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> MaintenancePolicy:
        """Initial policy load."""
        self._path = path
        self._policy = self._load_from_file(path)
        return self._policy

    def _load_from_file(self, path: Path) -> MaintenancePolicy:
        if not path.exists():
            logger.warning("Policy file not found, using defaults", extra={"path": str(path)})
            return MaintenancePolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return MaintenancePolicy(**data)

    def reload(self) -> bool:
        """Reload policy from file, keeping the previous one on error."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except Exception as e:
            logger.error("Failed to reload maintenance policy", extra={"error": str(e)})
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("Maintenance policy reloaded")
        return True

    def start_watching(self) -> None:
        """Watch the policy file; a missing file means static defaults."""
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Policy file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def policy(self) -> MaintenancePolicy:
        with self._lock:
            if self._policy is None:
                self._policy = MaintenancePolicy()
            return self._policy
