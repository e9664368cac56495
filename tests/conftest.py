"""
Shared fixtures: a file-backed SQLite database per test, seeded reference
data and a dispatcher that records notifications instead of sending them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List
from uuid import UUID, uuid4

import pytest

from cmms.config import EventKind, UserRole
from cmms.config.policy import MaintenancePolicy, PolicyConfigManager
from cmms.infrastructure.database import get_session_context
from cmms.infrastructure.notifications import INotificationDispatcher
from cmms.main import CMMSApplication
from cmms.reference.models import MachineModel, PartModel, TechnicianModel


class RecordingDispatcher(INotificationDispatcher):
    """Keeps every notification in memory."""

    def __init__(self):
        self.sent: List[tuple] = []

    async def notify(self, event_kind, payload, recipients) -> bool:
        self.sent.append((event_kind, dict(payload), list(recipients)))
        return True

    def of_kind(self, event_kind: EventKind) -> List[tuple]:
        return [n for n in self.sent if n[0] == event_kind]


@dataclass
class Directory:
    reporter: UUID
    admin: UUID
    workers_leader: UUID
    leaders: List[UUID] = field(default_factory=list)
    technicians: List[UUID] = field(default_factory=list)
    machine: UUID = None
    low_stock_part: UUID = None


def ticket_data(reporter_id: UUID, **overrides: Any) -> Dict[str, Any]:
    data = {
        "reporter_id": reporter_id,
        "breakdown_type": "mechanical",
        "description": "Conveyor belt slipping on line 2",
        "location_method": "grid",
        "sector": "assembly",
        "grid_location": "B4",
    }
    data.update(overrides)
    return data


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def app(tmp_path, dispatcher):
    application = CMMSApplication(
        policy_manager=PolicyConfigManager(MaintenancePolicy()),
        dispatcher=dispatcher,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cmms.db'}",
    )
    await application.startup(create_schema=True, start_jobs=False)
    yield application
    await application.shutdown()


@pytest.fixture
async def directory(app) -> Directory:
    def user(username: str, role: UserRole, sector: str = None) -> TechnicianModel:
        return TechnicianModel(
            id=uuid4(),
            username=username,
            employee_id=f"EMP-{username}",
            role=role.value,
            sector=sector,
        )

    reporter = user("worker-1", UserRole.WORKER, "assembly")
    admin = user("admin", UserRole.ADMIN)
    workers_leader = user("floor-lead", UserRole.WORKERS_LEADER, "assembly")
    leaders = [user(f"lead-{c}", UserRole.TECHNICIAN_LEADER) for c in "ab"]
    technicians = [user(f"tech-{i}", UserRole.TECHNICIAN) for i in range(1, 9)]
    machine = MachineModel(
        id=uuid4(),
        qr_code_value="QR-PRESS-01",
        machine_label="Hydraulic press 1",
        sector="press-shop",
        grid_location="D2",
    )
    low_part = PartModel(id=uuid4(), part_name="V-belt", stock_quantity=1, minimum_stock=5)
    stocked_part = PartModel(id=uuid4(), part_name="Fuse 10A", stock_quantity=40, minimum_stock=10)

    async with get_session_context() as session:
        session.add_all([reporter, admin, workers_leader, *leaders, *technicians, machine, low_part, stocked_part])

    return Directory(
        reporter=reporter.id,
        admin=admin.id,
        workers_leader=workers_leader.id,
        leaders=[u.id for u in leaders],
        technicians=[u.id for u in technicians],
        machine=machine.id,
        low_stock_part=low_part.id,
    )


@pytest.fixture
def make_ticket(app, directory):
    async def _make(**overrides):
        return await app.create_ticket(ticket_data(directory.reporter, **overrides))
    return _make
