"""
CMMS Core - Main Application
============================

Maintenance ticket core: ticket lifecycle with SLA, team assignment,
performance ledger, escalation sweep and background jobs.

Modules:
- Tickets: state machine, SLA deadlines, claims and assignment
- Teams: role composition and capacity rules
- Performance: per-technician monthly ledger
- Escalation: SLA clock queries and the escalation sweep
- Jobs: background orchestrator and periodic job bodies

`CMMSApplication` is the entry point for every caller. Each operation runs
in its own unit of work under a timeout; notifications queued by the
operation are published only after its transaction commits.
"""

import asyncio
import signal
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union
from uuid import UUID

from cmms.config import EventKind, Settings, TeamRole, TicketStatus, UserRole, settings
from cmms.config.policy import PolicyConfigManager
from cmms.escalation import EscalationService
from cmms.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
    ping,
)
from cmms.infrastructure.notifications import (
    INotificationDispatcher,
    NotificationPublisher,
    PushGatewayDispatcher,
)
from cmms.jobs import MaintenanceTasks, Orchestrator, RunResult, build_job_definitions
from cmms.performance.application import PerformanceLedgerService
from cmms.performance.infrastructure import SQLAlchemyStatsRepository
from cmms.reference import ReferenceRepository
from cmms.shared.application import OperationContext, UnitOfWork, run_with_timeout
from cmms.shared.infrastructure.logging import get_logger, setup_logging
from cmms.teams.application import TeamAssignmentService
from cmms.teams.infrastructure import SQLAlchemyTeamRepository
from cmms.tickets.application import TicketCreateDTO, TicketService
from cmms.tickets.infrastructure import SQLAlchemyTicketRepository

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ServiceSet:
    """Services bound to one unit of work."""
    uow: UnitOfWork
    reference: ReferenceRepository
    tickets: TicketService
    teams: TeamAssignmentService
    ledger: PerformanceLedgerService
    escalation: EscalationService


def build_services(uow: UnitOfWork, policy_manager: PolicyConfigManager, app_settings: Settings) -> ServiceSet:
    session = uow.session
    mode = app_settings.team_capacity_mode

    ticket_repository = SQLAlchemyTicketRepository(session)
    reference = ReferenceRepository(session)

    teams = TeamAssignmentService(
        uow, SQLAlchemyTeamRepository(session), ticket_repository, reference, policy_manager, mode
    )
    ledger = PerformanceLedgerService(
        uow, SQLAlchemyStatsRepository(session), ticket_repository, policy_manager
    )
    tickets = TicketService(
        uow, ticket_repository, reference, teams, ledger, policy_manager, mode
    )
    escalation = EscalationService(uow, tickets, ticket_repository, reference)

    return ServiceSet(
        uow=uow,
        reference=reference,
        tickets=tickets,
        teams=teams,
        ledger=ledger,
        escalation=escalation,
    )


class CMMSApplication:
    """
    Application container.

    STARTUP:
    1. Initialize database (optionally create tables)
    2. Load maintenance policy and watch it for changes
    3. Start the background orchestrator

    SHUTDOWN:
    1. Stop the orchestrator, letting in-flight jobs finish
    2. Stop the policy watcher
    3. Flush pending notifications and close the push client
    4. Close database connections
    """

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        policy_manager: Optional[PolicyConfigManager] = None,
        dispatcher: Optional[INotificationDispatcher] = None,
        database_url: Optional[str] = None
    ):
        self.settings = app_settings or settings
        self.policy_manager = policy_manager or PolicyConfigManager()
        self.publisher = NotificationPublisher(dispatcher or PushGatewayDispatcher())
        self.maintenance_mode = self.settings.maintenance_mode
        self._database_url = database_url
        self._owns_policy_file = policy_manager is None

        self.tasks = MaintenanceTasks(self, self.settings)
        self.orchestrator = Orchestrator(
            build_job_definitions(self.tasks),
            timezone=self.settings.scheduler_timezone,
            job_timeout_seconds=self.settings.job_timeout_seconds,
            shutdown_grace_seconds=self.settings.job_shutdown_grace_seconds,
        )

    # ---------- lifecycle ----------

    async def startup(self, create_schema: bool = False, start_jobs: Optional[bool] = None) -> None:
        logger.info("Starting CMMS core", extra={
            "version": self.settings.app_version,
            "environment": self.settings.environment
        })

        init_database(self._database_url)
        if create_schema:
            logger.info("Creating database tables")
            await create_tables()

        if self._owns_policy_file:
            logger.info("Loading maintenance policy")
            self.policy_manager.load(self.settings.policy_config_path)
            self.policy_manager.start_watching()

        if start_jobs if start_jobs is not None else self.settings.scheduler_enabled:
            await self.orchestrator.start()

        logger.info("CMMS core started")

    async def shutdown(self) -> None:
        logger.info("Shutting down CMMS core")

        await self.orchestrator.stop_all()
        self.policy_manager.stop_watching()
        await self.publisher.close()
        await close_database()

        logger.info("CMMS core shutdown complete")

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM."""
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await self.startup()
        try:
            await stop.wait()
        finally:
            await self.shutdown()

    # ---------- operation plumbing ----------

    def new_context(self, actor_id: Optional[UUID] = None) -> OperationContext:
        return OperationContext(actor_id=actor_id, maintenance_mode=self.maintenance_mode)

    def set_maintenance_mode(self, enabled: bool) -> None:
        self.maintenance_mode = enabled
        logger.warning("Maintenance mode changed", extra={"maintenance_mode": enabled})

    async def _execute(
        self,
        operation: str,
        work: Callable[[ServiceSet], Awaitable[T]],
        context: Optional[OperationContext] = None,
        mutating: bool = True,
        timeout: Optional[float] = None
    ) -> T:
        context = context or self.new_context()
        if mutating:
            context.ensure_writable(operation)

        async def run_unit() -> T:
            async with get_session_context() as session:
                uow = UnitOfWork(session, context)
                result = await work(build_services(uow, self.policy_manager, self.settings))
            uow.publish(self.publisher)
            return result

        return await run_with_timeout(
            run_unit(),
            timeout or self.settings.db_operation_timeout_seconds,
            operation
        )

    # ---------- tickets ----------

    async def create_ticket(self, data: Union[TicketCreateDTO, Dict[str, Any]], context: Optional[OperationContext] = None):
        return await self._execute("create_ticket", lambda s: s.tickets.create_ticket(data), context)

    async def assign_ticket(self, ticket_id: UUID, technician_id: UUID, context: Optional[OperationContext] = None):
        return await self._execute(
            "assign_ticket", lambda s: s.tickets.assign_ticket(ticket_id, technician_id), context
        )

    async def claim_ticket(self, ticket_id: UUID, technician_id: UUID, context: Optional[OperationContext] = None):
        return await self._execute(
            "claim_ticket", lambda s: s.tickets.claim_ticket(ticket_id, technician_id), context
        )

    async def update_status(
        self,
        ticket_id: UUID,
        status: Union[TicketStatus, str],
        context: Optional[OperationContext] = None
    ):
        return await self._execute(
            "update_status", lambda s: s.tickets.update_status(ticket_id, status), context
        )

    async def archive_ticket(self, ticket_id: UUID, context: Optional[OperationContext] = None):
        return await self._execute("archive_ticket", lambda s: s.tickets.archive_ticket(ticket_id), context)

    async def archive_old_reports(self, days_old: int, context: Optional[OperationContext] = None) -> int:
        return await self._execute(
            "archive_old_reports", lambda s: s.tickets.archive_old_reports(days_old), context
        )

    async def get_ticket(self, ticket_id: UUID):
        return await self._execute("get_ticket", lambda s: s.tickets.get_ticket(ticket_id), mutating=False)

    async def find_unassigned(self, sector: Optional[str] = None):
        return await self._execute("find_unassigned", lambda s: s.tickets.find_unassigned(sector), mutating=False)

    async def find_by_assignee(self, technician_id: UUID, status: Optional[Union[TicketStatus, str]] = None):
        return await self._execute(
            "find_by_assignee", lambda s: s.tickets.find_by_assignee(technician_id, status), mutating=False
        )

    async def find_escalated(self):
        return await self._execute("find_escalated", lambda s: s.tickets.find_escalated(), mutating=False)

    async def get_stats_by_sector(self, start: Optional[datetime] = None, end: Optional[datetime] = None):
        return await self._execute(
            "get_stats_by_sector", lambda s: s.tickets.get_stats_by_sector(start, end), mutating=False
        )

    async def send_daily_summary(self, day_start: datetime):
        return await self._execute(
            "send_daily_summary", lambda s: s.tickets.send_daily_summary(day_start), mutating=False
        )

    # ---------- teams ----------

    async def add_team_member(
        self,
        ticket_id: UUID,
        technician_id: UUID,
        role: Union[TeamRole, str] = TeamRole.SUPPORT,
        context: Optional[OperationContext] = None
    ):
        return await self._execute(
            "add_team_member", lambda s: s.teams.add_to_team(ticket_id, technician_id, role), context
        )

    async def remove_team_member(self, ticket_id: UUID, technician_id: UUID, context: Optional[OperationContext] = None) -> None:
        await self._execute(
            "remove_team_member", lambda s: s.teams.remove_from_team(ticket_id, technician_id), context
        )

    async def auto_assign_team_leader(self, ticket_id: UUID, context: Optional[OperationContext] = None):
        return await self._execute(
            "auto_assign_team_leader", lambda s: s.teams.auto_assign_team_leader(ticket_id), context
        )

    async def get_team(self, ticket_id: UUID):
        return await self._execute("get_team", lambda s: s.teams.get_team(ticket_id), mutating=False)

    async def get_team_history(self, ticket_id: UUID):
        return await self._execute("get_team_history", lambda s: s.teams.get_team_history(ticket_id), mutating=False)

    async def get_technician_workload(self, technician_id: UUID):
        return await self._execute(
            "get_technician_workload", lambda s: s.teams.get_technician_workload(technician_id), mutating=False
        )

    async def is_technician_available(self, technician_id: UUID, high_severity: bool = False) -> bool:
        return await self._execute(
            "is_technician_available",
            lambda s: s.teams.is_technician_available(technician_id, high_severity),
            mutating=False
        )

    async def get_available_technicians(self, sector: Optional[str] = None, high_severity: bool = False):
        return await self._execute(
            "get_available_technicians",
            lambda s: s.teams.get_available_technicians(sector, high_severity),
            mutating=False
        )

    async def get_tickets_for_technician(self, technician_id: UUID, include_completed: bool = False):
        return await self._execute(
            "get_tickets_for_technician",
            lambda s: s.teams.get_tickets_for_technician(technician_id, include_completed),
            mutating=False
        )

    # ---------- escalation ----------

    async def run_escalation_sweep(self, now: Optional[datetime] = None) -> int:
        return await self._execute("run_escalation_sweep", lambda s: s.escalation.run_sweep(now))

    async def find_due_today(self, technician_id: Optional[UUID] = None, now: Optional[datetime] = None):
        return await self._execute(
            "find_due_today", lambda s: s.escalation.find_due_today(technician_id, now), mutating=False
        )

    async def find_overdue(self, now: Optional[datetime] = None):
        return await self._execute("find_overdue", lambda s: s.escalation.find_overdue(now), mutating=False)

    # ---------- performance ----------

    async def record_completion(self, ticket_id: UUID, context: Optional[OperationContext] = None):
        return await self._execute(
            "record_completion", lambda s: s.ledger.record_completion_for_ticket(ticket_id), context
        )

    async def generate_monthly_stats(self, year: int, month: int, now: Optional[datetime] = None) -> int:
        return await self._execute(
            "generate_monthly_stats",
            lambda s: s.ledger.generate_monthly_stats(year, month, now),
            timeout=self.settings.job_timeout_seconds
        )

    async def get_current_month_stats(self, technician_id: UUID, now: Optional[datetime] = None):
        return await self._execute(
            "get_current_month_stats",
            lambda s: s.ledger.get_current_month_stats(technician_id, now),
            mutating=False
        )

    async def get_stats_history(self, technician_id: UUID, limit: int = 12):
        return await self._execute(
            "get_stats_history", lambda s: s.ledger.get_history(technician_id, limit), mutating=False
        )

    async def get_leaderboard(self, sector: Optional[str] = None, limit: int = 10, now: Optional[datetime] = None):
        return await self._execute(
            "get_leaderboard", lambda s: s.ledger.get_leaderboard(sector, limit, now), mutating=False
        )

    async def get_aggregated_stats(self, technician_id: UUID, months: int = 6, now: Optional[datetime] = None):
        return await self._execute(
            "get_aggregated_stats",
            lambda s: s.ledger.get_aggregated_stats(technician_id, months, now),
            mutating=False
        )

    async def get_sector_performance(self, start: datetime, end: datetime):
        return await self._execute(
            "get_sector_performance", lambda s: s.ledger.get_sector_performance(start, end), mutating=False
        )

    # ---------- housekeeping ----------

    async def send_to_roles(
        self,
        event_kind: EventKind,
        payload: Dict[str, Any],
        roles: Sequence[UserRole]
    ) -> int:
        """Notify every active user holding one of `roles`. Returns the recipient count."""
        async def work(services: ServiceSet) -> int:
            recipients = await services.reference.find_user_ids_by_roles(roles)
            services.uow.notify_after_commit(event_kind, payload, recipients)
            return len(recipients)

        return await self._execute("send_to_roles", work, mutating=False)

    async def find_low_stock_parts(self) -> List:
        return await self._execute(
            "find_low_stock_parts", lambda s: s.reference.find_low_stock_parts(), mutating=False
        )

    async def ping_database(self) -> bool:
        try:
            return await run_with_timeout(ping(), self.settings.db_operation_timeout_seconds, "ping")
        except Exception as e:
            logger.error("Database ping failed", extra={"error": str(e)})
            return False

    # ---------- jobs ----------

    async def trigger_job(self, name: str) -> RunResult:
        return await self.orchestrator.trigger_job(name)

    def list_job_status(self) -> Dict[str, Dict[str, Any]]:
        return self.orchestrator.list_job_status()


def main() -> None:
    """Process entry point."""
    setup_logging(settings.log_level, settings.environment)
    asyncio.run(CMMSApplication().run())


if __name__ == "__main__":
    main()
