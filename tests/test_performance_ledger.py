from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from cmms.config import BreakdownType
from cmms.core import ValidationException
from cmms.infrastructure.database import get_session_context
from cmms.performance.domain import PointsCalculator, month_window, month_window_for, previous_month
from cmms.performance.infrastructure import TechnicianStatsModel
from cmms.tickets.infrastructure import TicketModel

MARCH_2024 = month_window_for(2024, 3)


def test_completion_points():
    assert PointsCalculator.completion_points(BreakdownType.ELECTRICAL, True) == 45
    assert PointsCalculator.completion_points(BreakdownType.ELECTRICAL, False) == 25
    assert PointsCalculator.completion_points(BreakdownType.MECHANICAL, False) == 20
    assert PointsCalculator.completion_points(BreakdownType.OTHER, False) == 10
    assert PointsCalculator.completion_points(BreakdownType.OTHER, True) == 30


def test_month_windows():
    start, end = month_window(datetime(2023, 12, 31, 23, 59, tzinfo=timezone.utc))
    assert start == datetime(2023, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert previous_month(datetime(2024, 1, 15, tzinfo=timezone.utc)) == (2023, 12)
    assert previous_month(datetime(2024, 7, 1, tzinfo=timezone.utc)) == (2024, 6)


async def complete(app, ticket, technician_id):
    await app.claim_ticket(ticket.id, technician_id)
    return await app.update_status(ticket.id, "completed")


async def test_completion_accrues_points(app, make_ticket, directory):
    tech = directory.technicians[0]
    await complete(app, await make_ticket(breakdown_type="electrical", safety_required=True), tech)

    [stats] = await app.get_current_month_stats(tech)
    assert stats.sector == "assembly"
    assert stats.total_assigned == 1
    assert stats.total_completed == 1
    assert stats.high_severity_handled == 1
    assert stats.points == 45

    await complete(app, await make_ticket(breakdown_type="electrical", safety_required=True), tech)

    [stats] = await app.get_current_month_stats(tech)
    assert stats.total_assigned == 2
    assert stats.total_completed == 2
    assert stats.high_severity_handled == 2
    assert stats.points == 90


async def test_sectors_get_separate_rows(app, make_ticket, directory):
    tech = directory.technicians[0]
    await complete(app, await make_ticket(), tech)
    await complete(app, await make_ticket(sector="paint-shop", grid_location="P1"), tech)

    rows = {s.sector: s for s in await app.get_current_month_stats(tech)}
    assert set(rows) == {"assembly", "paint-shop"}
    assert all(r.points == 20 for r in rows.values())


async def test_record_completion_requires_completed_ticket(app, make_ticket, directory):
    ticket = await make_ticket()
    await app.claim_ticket(ticket.id, directory.technicians[0])

    with pytest.raises(ValidationException):
        await app.record_completion(ticket.id)


async def test_completion_is_credited_once(app, make_ticket, directory):
    tech = directory.technicians[0]
    ticket = await make_ticket(breakdown_type="electrical", safety_required=True)
    await complete(app, ticket, tech)

    first = await app.record_completion(ticket.id)
    second = await app.record_completion(ticket.id)
    assert first.total_completed == second.total_completed == 1
    assert second.points == 45

    [stats] = await app.get_current_month_stats(tech)
    assert stats.total_completed == 1
    assert stats.high_severity_handled == 1
    assert stats.points == 45


async def test_record_completion_credits_uncredited_ticket(app, directory):
    tech = directory.technicians[1]
    now = datetime.now(timezone.utc)
    ticket_id = uuid4()
    async with get_session_context() as session:
        session.add(TicketModel(
            id=ticket_id,
            reporter_id=directory.reporter,
            breakdown_type="mechanical",
            description="Imported completed report",
            safety_required=False,
            assistance_required=False,
            location_method="grid",
            sector="assembly",
            grid_location="C2",
            status="completed",
            assigned_to=tech,
            sla_deadline=now + timedelta(hours=8),
            escalated=False,
            created_at=now - timedelta(minutes=5),
            completed_at=now,
        ))

    stats = await app.record_completion(ticket_id)
    assert stats.total_completed == 1
    assert stats.points == 20

    again = await app.record_completion(ticket_id)
    assert again.total_completed == 1
    assert again.points == 20


async def test_leaderboard_shares_rank_on_ties(app, make_ticket, directory):
    top, second, third = directory.technicians[:3]
    await complete(app, await make_ticket(breakdown_type="electrical", safety_required=True), top)
    await complete(app, await make_ticket(), second)
    await complete(app, await make_ticket(), third)

    board = await app.get_leaderboard()
    assert [(e.rank, e.stats.technician_id) for e in board][0] == (1, top)
    assert [e.rank for e in board] == [1, 2, 2]
    assert {e.stats.technician_id for e in board[1:]} == {second, third}
    assert board[0].stats.technician_name == "tech-1"

    assert await app.get_leaderboard(sector="press-shop") == []


async def test_aggregated_and_sector_views(app, make_ticket, directory):
    tech = directory.technicians[0]
    await complete(app, await make_ticket(breakdown_type="electrical", safety_required=True), tech)
    await app.claim_ticket((await make_ticket()).id, tech)

    aggregated = await app.get_aggregated_stats(tech, months=3)
    assert aggregated.total_points == 45
    assert aggregated.total_assigned == 2
    assert aggregated.total_completed == 1
    assert aggregated.months_active == 1
    assert aggregated.completion_rate == 50.0

    start, end = month_window(datetime.now(timezone.utc))
    [sector] = await app.get_sector_performance(start, end)
    assert sector.sector == "assembly"
    assert sector.active_technicians == 1
    assert sector.total_points == 45

    with pytest.raises(ValidationException):
        await app.get_aggregated_stats(tech, months=0)


async def seed_march_history(directory):
    start, _ = MARCH_2024
    created = start + timedelta(days=3)

    def ticket(technician_id, status, breakdown_type, sector, safety=False):
        return TicketModel(
            id=uuid4(),
            reporter_id=directory.reporter,
            breakdown_type=breakdown_type,
            description="Historical report",
            safety_required=safety,
            assistance_required=False,
            location_method="grid",
            sector=sector,
            grid_location="A1",
            status=status,
            assigned_to=technician_id,
            sla_deadline=created + timedelta(hours=4),
            escalated=False,
            created_at=created,
            completed_at=created + timedelta(hours=2) if status != "working" else None,
        )

    async with get_session_context() as session:
        session.add_all([
            ticket(directory.technicians[0], "completed", "electrical", "assembly", safety=True),
            ticket(directory.technicians[0], "working", "mechanical", "assembly"),
            ticket(directory.technicians[1], "archived", "other", "press-shop"),
        ])


async def count_rows() -> int:
    async with get_session_context() as session:
        return await session.scalar(select(func.count(TechnicianStatsModel.id)))


async def test_generate_monthly_stats_is_idempotent(app, directory):
    await seed_march_history(directory)

    assert await app.generate_monthly_stats(2024, 3) == 2
    assert await app.generate_monthly_stats(2024, 3) == 0
    assert await count_rows() == 2

    [row] = await app.get_stats_history(directory.technicians[0])
    assert row.time_window_start == MARCH_2024[0]
    assert row.time_window_end == MARCH_2024[1]
    assert row.total_assigned == 2
    assert row.total_completed == 1
    assert row.high_severity_handled == 1
    assert row.points == 45

    [archived] = await app.get_stats_history(directory.technicians[1])
    assert archived.total_completed == 1
    assert archived.points == 10


async def test_generate_monthly_stats_never_overwrites(app, directory):
    await seed_march_history(directory)
    async with get_session_context() as session:
        session.add(TechnicianStatsModel(
            technician_id=directory.technicians[1],
            sector="press-shop",
            time_window_start=MARCH_2024[0],
            time_window_end=MARCH_2024[1],
            total_assigned=7,
            total_completed=7,
            points=999,
        ))

    assert await app.generate_monthly_stats(2024, 3) == 1

    [kept] = await app.get_stats_history(directory.technicians[1])
    assert kept.points == 999
    assert kept.total_assigned == 7


async def test_generate_monthly_stats_rejects_open_or_invalid_months(app, directory):
    now = datetime.now(timezone.utc)
    with pytest.raises(ValidationException):
        await app.generate_monthly_stats(now.year, now.month)
    with pytest.raises(ValidationException):
        await app.generate_monthly_stats(2024, 13)
