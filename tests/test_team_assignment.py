import asyncio
from uuid import uuid4

import pytest

from cmms.config import CapacityMode, EventKind, TeamRole
from cmms.core import (
    CapacityException,
    ConflictException,
    ResourceNotFoundException,
    ValidationException,
)
from cmms.teams.domain import TechnicianWorkload


async def test_normal_ticket_team_holds_two(app, make_ticket, directory):
    techs = directory.technicians
    ticket = await make_ticket()
    await app.assign_ticket(ticket.id, techs[0])
    await app.add_team_member(ticket.id, techs[1], "support")

    with pytest.raises(CapacityException):
        await app.add_team_member(ticket.id, techs[2], "support")

    assert len(await app.get_team(ticket.id)) == 2


async def test_high_severity_team_holds_five(app, make_ticket, directory):
    techs = directory.technicians
    ticket = await make_ticket(breakdown_type="electrical")
    await app.claim_ticket(ticket.id, techs[0])
    for tech in techs[1:4]:
        await app.add_team_member(ticket.id, tech)

    team = await app.get_team(ticket.id)
    assert [m.role for m in team] == [
        TeamRole.MAIN, TeamRole.LEADER, TeamRole.SUPPORT, TeamRole.SUPPORT, TeamRole.SUPPORT
    ]

    with pytest.raises(CapacityException):
        await app.add_team_member(ticket.id, techs[4])


@pytest.mark.parametrize("mode", [CapacityMode.STRICT, CapacityMode.BEST_EFFORT])
@pytest.mark.parametrize(
    "breakdown_type, cap", [("mechanical", 2), ("electrical", 5)]
)
async def test_concurrent_additions_respect_team_cap(
    app, make_ticket, directory, monkeypatch, mode, breakdown_type, cap
):
    monkeypatch.setattr(app.settings, "team_capacity_mode", mode)
    techs = directory.technicians
    ticket = await make_ticket(breakdown_type=breakdown_type)
    await app.claim_ticket(ticket.id, techs[0])
    before = len(await app.get_team(ticket.id))

    results = await asyncio.gather(
        *(app.add_team_member(ticket.id, tech) for tech in techs[1:8]),
        return_exceptions=True,
    )

    joined = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    team = await app.get_team(ticket.id)

    assert len(team) <= cap
    assert len(team) == before + len(joined)
    assert joined
    assert rejected
    assert all(isinstance(e, (CapacityException, ConflictException)) for e in rejected)


async def test_leader_gate(app, make_ticket, directory):
    ticket = await make_ticket(safety_required=True)
    [leader] = await app.get_team(ticket.id)
    await app.remove_team_member(ticket.id, leader.technician_id)

    with pytest.raises(CapacityException):
        await app.add_team_member(ticket.id, directory.technicians[0])

    other_leader = next(u for u in directory.leaders if u != leader.technician_id)
    await app.add_team_member(ticket.id, other_leader, TeamRole.LEADER)
    membership = await app.add_team_member(ticket.id, directory.technicians[0])

    assert membership.role == TeamRole.SUPPORT
    assert {m.technician_id for m in await app.get_team(ticket.id)} == {
        other_leader, directory.technicians[0]
    }


async def test_duplicate_member_conflicts(app, make_ticket, directory):
    ticket = await make_ticket()
    await app.add_team_member(ticket.id, directory.technicians[0])

    with pytest.raises(ConflictException):
        await app.add_team_member(ticket.id, directory.technicians[0])


async def test_main_is_reserved_for_assignee(app, make_ticket, directory):
    techs = directory.technicians
    ticket = await make_ticket()

    with pytest.raises(ValidationException):
        await app.add_team_member(ticket.id, techs[0], TeamRole.MAIN)

    await app.assign_ticket(ticket.id, techs[0])
    with pytest.raises(ConflictException):
        await app.add_team_member(ticket.id, techs[1], TeamRole.MAIN)

    mains = [m for m in await app.get_team(ticket.id) if m.role == TeamRole.MAIN]
    assert [m.technician_id for m in mains] == [techs[0]]


async def test_membership_validation(app, make_ticket, directory):
    ticket = await make_ticket()

    with pytest.raises(ValidationException):
        await app.add_team_member(ticket.id, directory.technicians[0], "observer")
    with pytest.raises(ValidationException):
        await app.add_team_member(ticket.id, directory.technicians[0], TeamRole.LEADER)
    with pytest.raises(ValidationException):
        await app.add_team_member(ticket.id, directory.reporter)
    with pytest.raises(ResourceNotFoundException):
        await app.add_team_member(uuid4(), directory.technicians[0])


async def test_closed_ticket_team_is_frozen(app, make_ticket, directory):
    ticket = await make_ticket()
    await app.claim_ticket(ticket.id, directory.technicians[0])
    await app.update_status(ticket.id, "completed")

    with pytest.raises(ValidationException):
        await app.add_team_member(ticket.id, directory.technicians[1])


async def test_remove_and_history(app, make_ticket, directory):
    tech = directory.technicians[0]
    ticket = await make_ticket()
    await app.add_team_member(ticket.id, tech)
    await app.remove_team_member(ticket.id, tech)

    with pytest.raises(ResourceNotFoundException):
        await app.remove_team_member(ticket.id, tech)

    assert await app.get_team(ticket.id) == []
    [past] = await app.get_team_history(ticket.id)
    assert past.is_active is False
    assert past.left_at is not None

    rejoined = await app.add_team_member(ticket.id, tech)
    assert rejoined.is_active


async def test_team_assignment_notifies_member(app, make_ticket, directory, dispatcher):
    ticket = await make_ticket()
    await app.add_team_member(ticket.id, directory.technicians[2])
    await app.publisher.drain()

    [(_, payload, recipients)] = dispatcher.of_kind(EventKind.TEAM_ASSIGNMENT)
    assert recipients == [str(directory.technicians[2])]
    assert payload == {"report_id": str(ticket.id), "role": "support"}


async def test_main_assignment_limit_applies_to_routine_work(app, make_ticket, directory):
    tech = directory.technicians[0]
    for _ in range(3):
        ticket = await make_ticket()
        await app.claim_ticket(ticket.id, tech)

    workload = await app.get_technician_workload(tech)
    assert workload.main_assignments == 3
    assert workload.total_assignments == 3

    routine = await make_ticket()
    with pytest.raises(CapacityException):
        await app.claim_ticket(routine.id, tech)

    urgent = await make_ticket(breakdown_type="electrical")
    claimed = await app.claim_ticket(urgent.id, tech)
    assert claimed.assigned_to == tech

    workload = await app.get_technician_workload(tech)
    assert workload.main_assignments == 4
    assert workload.high_severity_assignments == 1


async def test_available_technicians(app, make_ticket, directory):
    busy = directory.technicians[0]
    for _ in range(3):
        ticket = await make_ticket()
        await app.claim_ticket(ticket.id, busy)

    routine = [c.technician_id for c in await app.get_available_technicians()]
    urgent = [c.technician_id for c in await app.get_available_technicians(high_severity=True)]

    assert busy not in routine
    assert busy in urgent
    assert urgent[-1] == busy
    assert not await app.is_technician_available(busy)
    assert await app.is_technician_available(busy, high_severity=True)
    # equal load: leaders come before plain technicians
    assert routine[:2] == directory.leaders


async def test_leader_auto_assignment_respects_leader_limit(app, make_ticket, directory):
    tickets = [await make_ticket(breakdown_type="electrical") for _ in range(5)]

    leaders = []
    for ticket in tickets:
        team = await app.get_team(ticket.id)
        leaders.append(team[0].technician_id if team else None)

    assert leaders[:4] == [directory.leaders[0], directory.leaders[1], directory.leaders[0], directory.leaders[1]]
    assert leaders[4] is None

    assert await app.auto_assign_team_leader(tickets[4].id) is None


async def test_tickets_for_technician(app, make_ticket, directory):
    tech = directory.technicians[0]
    open_ticket = await make_ticket()
    done_ticket = await make_ticket()
    await app.claim_ticket(open_ticket.id, tech)
    await app.claim_ticket(done_ticket.id, tech)
    await app.update_status(done_ticket.id, "completed")

    active = await app.get_tickets_for_technician(tech)
    assert [a.membership.ticket_id for a in active] == [open_ticket.id]

    everything = await app.get_tickets_for_technician(tech, include_completed=True)
    assert {a.membership.ticket_id for a in everything} == {open_ticket.id, done_ticket.id}


def test_workload_availability_rules():
    assert TechnicianWorkload(uuid4(), main_assignments=2).is_available(False)
    assert not TechnicianWorkload(uuid4(), main_assignments=3).is_available(False)
    assert TechnicianWorkload(uuid4(), main_assignments=3).is_available(True)
    assert not TechnicianWorkload(uuid4(), main_assignments=3, support_assignments=2).is_available(True)
