import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from cmms.config import EventKind, TeamRole, TicketStatus
from cmms.core import (
    ConflictException,
    ResourceNotFoundException,
    TransientInfraException,
    ValidationException,
)
from tests.conftest import ticket_data


async def test_create_ticket_starts_unassigned(app, make_ticket, directory, dispatcher):
    ticket = await make_ticket()

    assert ticket.status == TicketStatus.NOTICED
    assert ticket.assigned_to is None
    assert ticket.escalated is False
    assert ticket.sla_deadline == ticket.created_at + timedelta(hours=8)

    await app.publisher.drain()
    [(_, payload, recipients)] = dispatcher.of_kind(EventKind.NEW_REPORT)
    assert payload["report_id"] == str(ticket.id)
    assert set(recipients) == {str(u) for u in directory.technicians + directory.leaders}


async def test_safety_report_also_notifies_admins(app, make_ticket, directory, dispatcher):
    ticket = await make_ticket(safety_required=True)
    assert ticket.sla_deadline == ticket.created_at + timedelta(hours=1)

    await app.publisher.drain()
    [(_, payload, recipients)] = dispatcher.of_kind(EventKind.NEW_REPORT)
    assert payload["safety_required"] is True
    assert str(directory.admin) in recipients


async def test_invalid_input_is_rejected_without_side_effects(app, directory, dispatcher):
    with pytest.raises(ValidationException) as exc_info:
        await app.create_ticket(ticket_data(directory.reporter, description="short"))
    assert exc_info.value.details["errors"]

    await app.publisher.drain()
    assert dispatcher.sent == []
    assert await app.find_unassigned() == []


async def test_unknown_reporter_is_rejected(app, directory):
    with pytest.raises(ValidationException, match="Unknown reporter"):
        await app.create_ticket(ticket_data(uuid4()))

    assert await app.find_unassigned() == []


async def test_qr_report_must_match_machine_sector(app, directory):
    qr = dict(location_method="qr", grid_location=None, machine_id=directory.machine)

    with pytest.raises(ValidationException):
        await app.create_ticket(ticket_data(directory.reporter, sector="assembly", **qr))

    ticket = await app.create_ticket(ticket_data(directory.reporter, sector="press-shop", **qr))
    assert ticket.machine_id == directory.machine
    assert ticket.grid_location is None


async def test_high_severity_ticket_gets_a_leader(app, make_ticket, directory):
    ticket = await make_ticket(breakdown_type="electrical")

    team = await app.get_team(ticket.id)
    assert [m.role for m in team] == [TeamRole.LEADER]
    assert team[0].technician_id in directory.leaders


async def test_assign_moves_ticket_to_working(app, make_ticket, directory, dispatcher):
    ticket = await make_ticket()
    tech = directory.technicians[0]

    assigned = await app.assign_ticket(ticket.id, tech)
    assert assigned.status == TicketStatus.WORKING
    assert assigned.assigned_to == tech
    assert assigned.sla_deadline == ticket.sla_deadline

    team = await app.get_team(ticket.id)
    assert [(m.technician_id, m.role) for m in team] == [(tech, TeamRole.MAIN)]

    [stats] = await app.get_current_month_stats(tech)
    assert stats.sector == "assembly"
    assert stats.total_assigned == 1

    await app.publisher.drain()
    [(_, _, recipients)] = dispatcher.of_kind(EventKind.REPORT_ASSIGNED)
    assert recipients == [str(tech)]


async def test_second_assignment_conflicts(app, make_ticket, directory):
    ticket = await make_ticket()
    await app.assign_ticket(ticket.id, directory.technicians[0])

    with pytest.raises(ConflictException):
        await app.assign_ticket(ticket.id, directory.technicians[1])

    stored = await app.get_ticket(ticket.id)
    assert stored.assigned_to == directory.technicians[0]


async def test_assignee_must_be_technician(app, make_ticket, directory):
    ticket = await make_ticket()
    with pytest.raises(ValidationException):
        await app.assign_ticket(ticket.id, directory.reporter)


async def test_unknown_ticket(app, directory):
    with pytest.raises(ResourceNotFoundException):
        await app.get_ticket(uuid4())


async def test_concurrent_claims_have_one_winner(app, make_ticket, directory):
    ticket = await make_ticket()
    claimants = directory.technicians[:5]

    results = await asyncio.gather(
        *(app.claim_ticket(ticket.id, tech) for tech in claimants),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 4
    assert all(isinstance(e, ConflictException) for e in losers)

    stored = await app.get_ticket(ticket.id)
    assert stored.assigned_to == winners[0].assigned_to
    mains = [m for m in await app.get_team(ticket.id) if m.role == TeamRole.MAIN]
    assert len(mains) == 1


async def test_complete_ticket(app, make_ticket, directory, dispatcher):
    ticket = await make_ticket()
    await app.claim_ticket(ticket.id, directory.technicians[0])

    done = await app.update_status(ticket.id, "completed")
    assert done.status == TicketStatus.COMPLETED
    assert done.completed_at is not None
    assert done.sla_deadline == ticket.sla_deadline

    await app.publisher.drain()
    [(_, payload, recipients)] = dispatcher.of_kind(EventKind.STATUS_UPDATE)
    assert payload["status"] == "completed"
    assert recipients == [str(directory.reporter)]
    assert dispatcher.of_kind(EventKind.REPORT_COMPLETED)


async def test_status_update_rules(app, make_ticket, directory):
    ticket = await make_ticket()

    with pytest.raises(ValidationException):
        await app.update_status(ticket.id, "completed")
    with pytest.raises(ValidationException):
        await app.update_status(ticket.id, "done")

    await app.claim_ticket(ticket.id, directory.technicians[0])
    await app.update_status(ticket.id, TicketStatus.COMPLETED)

    with pytest.raises(ValidationException):
        await app.update_status(ticket.id, TicketStatus.COMPLETED)
    with pytest.raises(ValidationException):
        await app.update_status(ticket.id, TicketStatus.ARCHIVED)


async def test_archive(app, make_ticket, directory):
    open_ticket = await make_ticket()
    with pytest.raises(ValidationException):
        await app.archive_ticket(open_ticket.id)

    done = await make_ticket()
    await app.claim_ticket(done.id, directory.technicians[0])
    await app.update_status(done.id, "completed")

    archived = await app.archive_ticket(done.id)
    assert archived.status == TicketStatus.ARCHIVED


async def test_archive_old_reports(app, make_ticket, directory):
    with pytest.raises(ValidationException):
        await app.archive_old_reports(-1)

    ticket = await make_ticket()
    await app.claim_ticket(ticket.id, directory.technicians[0])
    await app.update_status(ticket.id, "completed")
    await make_ticket()

    assert await app.archive_old_reports(30) == 0
    assert await app.archive_old_reports(0) == 1
    assert (await app.get_ticket(ticket.id)).status == TicketStatus.ARCHIVED
    assert await app.archive_old_reports(0) == 0


async def test_unassigned_queue_puts_safety_first(app, make_ticket, directory):
    routine = await make_ticket()
    urgent = await make_ticket(safety_required=True)
    claimed = await make_ticket()
    await app.claim_ticket(claimed.id, directory.technicians[0])

    queue = await app.find_unassigned()
    assert [t.id for t in queue] == [urgent.id, routine.id]
    assert await app.find_unassigned(sector="press-shop") == []


async def test_find_by_assignee(app, make_ticket, directory):
    tech = directory.technicians[0]
    first = await make_ticket()
    second = await make_ticket()
    await app.claim_ticket(first.id, tech)
    await app.claim_ticket(second.id, tech)
    await app.update_status(second.id, "completed")

    assert {t.id for t in await app.find_by_assignee(tech)} == {first.id, second.id}
    assert [t.id for t in await app.find_by_assignee(tech, "working")] == [first.id]


async def test_stats_by_sector(app, make_ticket, directory):
    first = await make_ticket()
    await make_ticket(breakdown_type="electrical", safety_required=True)
    await app.claim_ticket(first.id, directory.technicians[0])
    await app.update_status(first.id, "completed")

    rows = {(r.sector, r.breakdown_type.value): r for r in await app.get_stats_by_sector()}
    mechanical = rows[("assembly", "mechanical")]
    assert mechanical.total_reports == 1
    assert mechanical.completed_reports == 1
    assert rows[("assembly", "electrical")].safety_reports == 1


async def test_maintenance_mode_blocks_writes(app, make_ticket, directory):
    ticket = await make_ticket()
    app.set_maintenance_mode(True)

    with pytest.raises(TransientInfraException):
        await make_ticket()
    with pytest.raises(TransientInfraException):
        await app.claim_ticket(ticket.id, directory.technicians[0])

    assert (await app.get_ticket(ticket.id)).status == TicketStatus.NOTICED

    app.set_maintenance_mode(False)
    await app.claim_ticket(ticket.id, directory.technicians[0])
