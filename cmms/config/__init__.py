"""
Configuration Module
====================

Application settings and domain constants for the maintenance core.

Settings are loaded from environment variables (and an optional .env file)
using Pydantic. Tunable business numbers (SLA hours, capacity limits,
scoring) live in `cmms.config.policy` so they can be hot-reloaded.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CapacityMode(str, Enum):
    """How strictly team/workload capacity is enforced under concurrency."""
    STRICT = "strict"            # row lock + conditional write
    BEST_EFFORT = "best_effort"  # conditional write only, rare overshoot accepted


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="cmms-core", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/cmms",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    db_operation_timeout_seconds: float = Field(
        default=10.0,
        description="Default timeout applied to every core operation",
        gt=0
    )

    # ========== Maintenance Policy ==========
    policy_config_path: Path = Field(
        default=Path("maintenance_policy.yaml"),
        description="Path to maintenance policy YAML file"
    )
    team_capacity_mode: CapacityMode = Field(
        default=CapacityMode.STRICT,
        description="strict: lock rows before capacity checks; best_effort: no lock"
    )
    archive_after_days: int = Field(
        default=90,
        description="Completed tickets older than this are archived",
        ge=1
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Push gateway URL; notifications are skipped when unset"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for a single push gateway call",
        ge=0.1,
        le=30
    )
    notification_max_retries: int = Field(default=3, ge=1, le=10)
    circuit_breaker_threshold: int = Field(default=5, ge=1)
    circuit_breaker_recovery_seconds: float = Field(default=60.0, gt=0)

    # ========== Background Jobs ==========
    scheduler_enabled: bool = Field(default=True, description="Start periodic jobs on startup")
    scheduler_timezone: str = Field(default="UTC", description="Timezone for cron schedules")
    job_timeout_seconds: float = Field(
        default=300.0,
        description="Maximum duration of a single job run",
        gt=0
    )
    job_shutdown_grace_seconds: float = Field(
        default=30.0,
        description="How long stop_all waits for in-flight jobs",
        ge=0
    )

    # ========== Housekeeping ==========
    temp_upload_dir: Path = Field(default=Path("uploads/temp"))
    temp_file_max_age_hours: int = Field(default=24, ge=1)
    health_memory_limit_mb: int = Field(default=500, ge=1)
    health_min_free_disk_mb: int = Field(default=100, ge=0)

    # ========== Operations ==========
    maintenance_mode: bool = Field(
        default=False,
        description="Initial maintenance-mode flag for new operation contexts"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    NOTICED = "noticed"
    WORKING = "working"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class BreakdownType(str, Enum):
    """Kind of breakdown reported."""
    MECHANICAL = "mechanical"
    ELECTRICAL = "electrical"
    OTHER = "other"


class LocationMethod(str, Enum):
    """How the reporter located the problem."""
    GRID = "grid"   # grid reference on the floor plan
    QR = "qr"       # scanned machine QR code


class TeamRole(str, Enum):
    """Role of a technician on a ticket team."""
    MAIN = "main"
    LEADER = "leader"
    SUPPORT = "support"


class UserRole(str, Enum):
    """User roles in the reference directory."""
    WORKER = "worker"
    TECHNICIAN = "technician"
    WORKERS_LEADER = "workers_leader"
    TECHNICIAN_LEADER = "technician_leader"
    ADMIN = "admin"


class EventKind(str, Enum):
    """Notification event kinds."""
    NEW_REPORT = "new_report"
    REPORT_ASSIGNED = "report_assigned"
    STATUS_UPDATE = "status_update"
    REPORT_COMPLETED = "report_completed"
    TEAM_ASSIGNMENT = "team_assignment"
    ESCALATION = "escalation"
    DAILY_SUMMARY = "daily_summary"
    LOW_STOCK_ALERT = "low_stock_alert"
    HEALTH_ALERT = "health_alert"


# ========== Lists for validation ==========

OPEN_STATUSES = [TicketStatus.NOTICED, TicketStatus.WORKING]
CLOSED_STATUSES = [TicketStatus.COMPLETED, TicketStatus.ARCHIVED]
TECHNICIAN_ROLES = [UserRole.TECHNICIAN, UserRole.TECHNICIAN_LEADER]
LEADER_CAPABLE_ROLES = [UserRole.TECHNICIAN_LEADER]
