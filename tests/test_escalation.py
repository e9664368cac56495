import asyncio
from datetime import datetime, timedelta, timezone

from cmms.config import EventKind
from cmms.escalation import day_bounds


async def test_sweep_escalates_overdue_ticket_once(app, make_ticket, directory, dispatcher):
    ticket = await make_ticket()
    later = ticket.sla_deadline + timedelta(minutes=5)

    assert await app.run_escalation_sweep(now=later) == 1
    assert await app.run_escalation_sweep(now=later) == 0

    stored = await app.get_ticket(ticket.id)
    assert stored.escalated is True
    assert stored.sla_deadline == ticket.sla_deadline

    await app.publisher.drain()
    [(_, payload, recipients)] = dispatcher.of_kind(EventKind.ESCALATION)
    assert payload["report_id"] == str(ticket.id)
    assert payload["escalated"] is True
    assert set(recipients) == {str(u) for u in directory.leaders} | {str(directory.admin)}


async def test_sweep_ignores_tickets_within_sla(app, make_ticket):
    ticket = await make_ticket()
    assert await app.run_escalation_sweep(now=ticket.sla_deadline - timedelta(minutes=1)) == 0
    assert (await app.get_ticket(ticket.id)).escalated is False


async def test_sweep_ignores_completed_tickets(app, make_ticket, directory):
    ticket = await make_ticket()
    await app.claim_ticket(ticket.id, directory.technicians[0])
    await app.update_status(ticket.id, "completed")

    assert await app.run_escalation_sweep(now=ticket.sla_deadline + timedelta(hours=1)) == 0


async def test_working_tickets_escalate_too(app, make_ticket, directory):
    ticket = await make_ticket()
    await app.claim_ticket(ticket.id, directory.technicians[0])

    assert await app.run_escalation_sweep(now=ticket.sla_deadline + timedelta(seconds=1)) == 1
    assert [t.id for t in await app.find_escalated()] == [ticket.id]


async def test_overlapping_sweeps_escalate_once(app, make_ticket, dispatcher):
    ticket = await make_ticket()
    later = ticket.sla_deadline + timedelta(minutes=1)

    counts = await asyncio.gather(
        app.run_escalation_sweep(now=later),
        app.run_escalation_sweep(now=later),
    )
    assert sorted(counts) == [0, 1]

    await app.publisher.drain()
    assert len(dispatcher.of_kind(EventKind.ESCALATION)) == 1


async def test_deadline_queries(app, make_ticket, directory):
    urgent = await make_ticket(safety_required=True)
    routine = await make_ticket()

    overdue = await app.find_overdue(now=urgent.sla_deadline + timedelta(minutes=1))
    assert [t.id for t in overdue] == [urgent.id]

    due = await app.find_due_today(now=urgent.sla_deadline)
    assert urgent.id in {t.id for t in due}

    await app.claim_ticket(routine.id, directory.technicians[0])
    mine = await app.find_due_today(technician_id=directory.technicians[0], now=routine.sla_deadline)
    assert [t.id for t in mine] == [routine.id]


def test_day_bounds():
    start, end = day_bounds(datetime(2024, 2, 29, 23, 59, tzinfo=timezone.utc))
    assert start == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert end == datetime(2024, 3, 1, tzinfo=timezone.utc)
