from datetime import datetime, timedelta, timezone

import pytest

from cmms.config import BreakdownType
from cmms.config.policy import MaintenancePolicy, PolicyConfigManager, SLAPolicy
from cmms.tickets.domain import SLACalculator

CREATED = datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "breakdown_type, safety_required, hours",
    [
        (BreakdownType.MECHANICAL, False, 8),
        (BreakdownType.ELECTRICAL, False, 4),
        (BreakdownType.OTHER, False, 24),
        (BreakdownType.MECHANICAL, True, 1),
        (BreakdownType.OTHER, True, 1),
    ],
)
def test_deadline_by_severity(breakdown_type, safety_required, hours):
    deadline = SLACalculator.calculate_deadline(CREATED, breakdown_type, safety_required)
    assert deadline == CREATED + timedelta(hours=hours)


def test_missing_breakdown_type_uses_default_target():
    assert SLACalculator.resolution_hours(None, False) == 24


def test_custom_policy_hours():
    policy = SLAPolicy(breakdown_hours={"mechanical": 2})
    assert SLACalculator.resolution_hours(BreakdownType.MECHANICAL, False, policy) == 2
    assert SLACalculator.resolution_hours(BreakdownType.ELECTRICAL, False, policy) == 24


def test_policy_rejects_unknown_breakdown_type():
    with pytest.raises(ValueError):
        SLAPolicy(breakdown_hours={"hydraulic": 3})


def test_policy_manager_defaults_when_file_missing(tmp_path):
    manager = PolicyConfigManager()
    policy = manager.load(tmp_path / "missing.yaml")
    assert policy == MaintenancePolicy()
    assert manager.policy.team.high_severity_team_size == 5


def test_policy_manager_loads_partial_yaml(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("sla:\n  safety_hours: 2\nteam:\n  normal_team_size: 3\n")

    manager = PolicyConfigManager()
    manager.load(path)

    assert manager.policy.sla.safety_hours == 2
    assert manager.policy.sla.breakdown_hours["mechanical"] == 8
    assert manager.policy.team.normal_team_size == 3
    assert manager.policy.scoring.base_points == 10


def test_reload_keeps_previous_policy_on_invalid_file(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("sla:\n  safety_hours: 2\n")
    manager = PolicyConfigManager()
    manager.load(path)

    path.write_text("sla:\n  safety_hours: -5\n")
    assert manager.reload() is False
    assert manager.policy.sla.safety_hours == 2

    path.write_text("sla:\n  safety_hours: 3\n")
    assert manager.reload() is True
    assert manager.policy.sla.safety_hours == 3


async def test_policy_reload_does_not_move_existing_deadlines(app, make_ticket, tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("sla:\n  breakdown_hours:\n    mechanical: 8\n")
    app.policy_manager.load(path)

    before = await make_ticket()
    assert before.sla_deadline == before.created_at + timedelta(hours=8)

    path.write_text("sla:\n  breakdown_hours:\n    mechanical: 2\n")
    assert app.policy_manager.reload() is True

    after = await make_ticket()
    assert after.sla_deadline == after.created_at + timedelta(hours=2)

    stored = await app.get_ticket(before.id)
    assert stored.sla_deadline == before.sla_deadline
