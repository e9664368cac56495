from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from cmms.config import BreakdownType, TicketStatus
from cmms.core import ValidationException
from cmms.tickets.application import TicketCreateDTO
from cmms.tickets.domain import Ticket, TicketStateMachine, is_high_severity

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_ticket(**overrides):
    fields = dict(
        id=uuid4(),
        reporter_id=uuid4(),
        breakdown_type="mechanical",
        description="Gearbox noise on mixer",
        safety_required=False,
        assistance_required=False,
        location_method="grid",
        sector="assembly",
        status="noticed",
        sla_deadline=NOW + timedelta(hours=8),
        created_at=NOW,
        grid_location="A1",
    )
    fields.update(overrides)
    return Ticket(**fields)


def test_lifecycle_transitions():
    assert TicketStateMachine.can_transition(TicketStatus.NOTICED, TicketStatus.WORKING)
    assert TicketStateMachine.can_transition(TicketStatus.WORKING, TicketStatus.COMPLETED)
    assert TicketStateMachine.can_transition(TicketStatus.COMPLETED, TicketStatus.ARCHIVED)
    assert not TicketStateMachine.can_transition(TicketStatus.NOTICED, TicketStatus.COMPLETED)
    assert not TicketStateMachine.can_transition(TicketStatus.ARCHIVED, TicketStatus.WORKING)
    assert not TicketStateMachine.can_transition(TicketStatus.COMPLETED, TicketStatus.WORKING)


def test_status_update_only_completes_working_tickets():
    TicketStateMachine.ensure_status_update(TicketStatus.WORKING, TicketStatus.COMPLETED)

    for current, target in [
        (TicketStatus.NOTICED, TicketStatus.WORKING),
        (TicketStatus.NOTICED, TicketStatus.COMPLETED),
        (TicketStatus.COMPLETED, TicketStatus.ARCHIVED),
        (TicketStatus.COMPLETED, TicketStatus.COMPLETED),
    ]:
        with pytest.raises(ValidationException):
            TicketStateMachine.ensure_status_update(current, target)


def test_can_escalate_requires_open_unflagged_and_overdue():
    deadline = NOW
    later = NOW + timedelta(minutes=1)

    assert TicketStateMachine.can_escalate(TicketStatus.WORKING, False, deadline, later)
    assert not TicketStateMachine.can_escalate(TicketStatus.WORKING, True, deadline, later)
    assert not TicketStateMachine.can_escalate(TicketStatus.COMPLETED, False, deadline, later)
    assert not TicketStateMachine.can_escalate(TicketStatus.NOTICED, False, deadline, deadline)


def test_high_severity():
    assert is_high_severity(BreakdownType.ELECTRICAL, False)
    assert is_high_severity(BreakdownType.OTHER, True)
    assert not is_high_severity(BreakdownType.MECHANICAL, False)


def test_assignee_must_match_status():
    with pytest.raises(ValueError):
        make_ticket(assigned_to=uuid4())
    with pytest.raises(ValueError):
        make_ticket(status="working")

    ticket = make_ticket(status="working", assigned_to=uuid4())
    assert ticket.is_open
    assert ticket.can_escalate(NOW + timedelta(hours=9))


def dto_data(**overrides):
    data = {
        "reporter_id": str(uuid4()),
        "breakdown_type": "electrical",
        "description": "  Panel breaker keeps tripping  ",
        "location_method": "grid",
        "sector": "assembly",
        "grid_location": "C3",
    }
    data.update(overrides)
    return data


def test_dto_strips_whitespace():
    dto = TicketCreateDTO.model_validate(dto_data())
    assert dto.description == "Panel breaker keeps tripping"


@pytest.mark.parametrize(
    "overrides",
    [
        {"description": "short"},
        {"breakdown_type": "hydraulic"},
        {"grid_location": None},
        {"machine_id": str(uuid4())},
        {"location_method": "qr", "grid_location": None},
        {"location_method": "qr", "machine_id": str(uuid4())},
        {"sector": "x" * 51},
    ],
)
def test_dto_rejects_bad_input(overrides):
    with pytest.raises(ValidationError):
        TicketCreateDTO.model_validate(dto_data(**overrides))
