from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import List, Optional
from zoneinfo import ZoneInfo

import pytest

from focusflow.paths import StorePaths
from focusflow.periods import CalendarMarkers
from focusflow.resets import ResetCoordinator, ResetOutcome, compute_reset_plan
from focusflow.runtime import Workspace
from focusflow.schemas import Project, ResetMeta
from focusflow.store import Doc

from conftest import PREFIX, FakeClock, RecordingStore, build_docs, meta_doc, project_doc

UTC = dt.timezone.utc
PATHS = StorePaths(PREFIX)


def _reset_batches(store: RecordingStore) -> List[list]:
    return [ops for ops in store.commits if any(op.path == PATHS.meta for op in ops)]


async def _projects(store: RecordingStore) -> List[Project]:
    return [Project.model_validate(doc) for doc in await store.list(PATHS.projects)]


def test_plan_for_day_change_only():
    meta = ResetMeta(last_daily_reset="Mon Jan 01 2024", last_weekly_reset=1, last_monthly_reset=0, last_year=2024)
    plan = compute_reset_plan(meta, dt.datetime(2024, 1, 2, 10, 0, tzinfo=UTC), UTC)
    assert (plan.daily, plan.weekly, plan.monthly) == (True, False, False)
    assert plan.project_fields() == {"stats.today": 0}
    assert plan.meta_fields() == {
        "lastDailyReset": "Tue Jan 02 2024",
        "lastWeeklyReset": 1,
        "lastMonthlyReset": 0,
        "lastYear": 2024,
    }


def test_plan_year_change_forces_week_and_month():
    # Tue 31 Dec 2024 is ISO week 1 and month 11, same numbers as the stored ones
    meta = ResetMeta(last_daily_reset="Mon Dec 30 2024", last_weekly_reset=1, last_monthly_reset=11, last_year=2023)
    plan = compute_reset_plan(meta, dt.datetime(2024, 12, 31, 12, 0, tzinfo=UTC), UTC)
    assert (plan.daily, plan.weekly, plan.monthly) == (True, True, True)


def test_plan_matching_markers_is_a_no_op():
    markers = CalendarMarkers.for_date(dt.date(2024, 12, 31))
    meta = ResetMeta(
        last_daily_reset=markers.day,
        last_weekly_reset=markers.week,
        last_monthly_reset=markers.month,
        last_year=markers.year,
    )
    plan = compute_reset_plan(meta, dt.datetime(2024, 12, 31, 23, 59, tzinfo=UTC), UTC)
    assert not plan.any
    assert plan.project_fields() == {}


def test_plan_without_stored_markers_resets_everything():
    plan = compute_reset_plan(ResetMeta(), dt.datetime(2024, 6, 1, tzinfo=UTC), UTC)
    assert (plan.daily, plan.weekly, plan.monthly) == (True, True, True)


def test_plan_uses_local_calendar():
    meta = ResetMeta.model_validate(meta_doc("Sun Mar 31 2024", 13, 2, 2024))
    instant = dt.datetime(2024, 3, 31, 23, 30, tzinfo=UTC)
    assert not compute_reset_plan(meta, instant, UTC).any

    berlin = compute_reset_plan(meta, instant, ZoneInfo("Europe/Berlin"))
    assert (berlin.daily, berlin.weekly, berlin.monthly) == (True, True, True)


def test_daily_reset_is_applied_once(clock: FakeClock):
    store = RecordingStore(
        build_docs(
            projects=[project_doc("p1", today=500, week=900, month=1200), project_doc("p2", today=20, week=20, month=20)],
            meta=meta_doc("Mon Jan 01 2024", 1, 0, 2024),
        )
    )
    coordinator = ResetCoordinator(store, PATHS, UTC, clock)

    async def scenario():
        projects = await _projects(store)
        first = await coordinator.on_projects_snapshot(projects, had_cache=True)
        second = await coordinator.on_projects_snapshot(await _projects(store), had_cache=True)
        return first, second, await _projects(store), await store.get(PATHS.meta)

    first, second, projects, meta = asyncio.run(scenario())
    assert first.committed and first.plan.daily
    assert second.committed is False and not second.plan.any
    assert len(_reset_batches(store)) == 1

    stats = {project.id: project.stats for project in projects}
    assert (stats["p1"].today, stats["p1"].week, stats["p1"].month) == (0, 900, 1200)
    assert (stats["p2"].today, stats["p2"].week, stats["p2"].month) == (0, 20, 20)
    assert meta["lastDailyReset"] == "Tue Jan 02 2024"
    assert meta["initialized"] is True

    (batch,) = _reset_batches(store)
    project_ops = [op for op in batch if op.path != PATHS.meta]
    assert {op.path for op in project_ops} == {PATHS.project("p1"), PATHS.project("p2")}
    assert all(op.data == {"stats.today": 0} for op in project_ops)


def test_year_change_resets_week_and_month(clock: FakeClock):
    clock.set(dt.datetime(2024, 12, 31, 8, 0, tzinfo=UTC))
    store = RecordingStore(
        build_docs(
            projects=[project_doc("p1", today=10, week=20, month=30)],
            meta=meta_doc("Mon Dec 30 2024", 1, 11, 2023),
        )
    )
    coordinator = ResetCoordinator(store, PATHS, UTC, clock)

    async def scenario():
        await coordinator.on_projects_snapshot(await _projects(store), had_cache=True)
        return await store.get(PATHS.project("p1")), await store.get(PATHS.meta)

    project, meta = asyncio.run(scenario())
    assert project["stats"] == {"today": 0, "week": 0, "month": 0}
    assert meta["lastYear"] == 2024


def test_no_projects_and_initialized_is_a_no_op(clock: FakeClock):
    store = RecordingStore(build_docs(meta=meta_doc("Mon Jan 01 2024", 1, 0, 2024)))
    coordinator = ResetCoordinator(store, PATHS, UTC, clock)

    outcome = asyncio.run(coordinator.on_projects_snapshot([], had_cache=False))
    assert outcome.plan.daily
    assert outcome.committed is False and outcome.seeded is False
    assert store.commits == []


def test_commit_failure_is_logged_and_markers_stay(clock: FakeClock, caplog):
    store = RecordingStore(
        build_docs(projects=[project_doc("p1", today=50)], meta=meta_doc("Mon Jan 01 2024", 1, 0, 2024))
    )
    store.fail_prefixes.append(PATHS.projects)
    coordinator = ResetCoordinator(store, PATHS, UTC, clock)

    async def scenario():
        outcome = await coordinator.on_projects_snapshot(await _projects(store), had_cache=True)
        return outcome, await store.get(PATHS.meta), await store.get(PATHS.project("p1"))

    with caplog.at_level(logging.ERROR, logger="focusflow"):
        outcome, meta, project = asyncio.run(scenario())
    assert outcome.committed is False
    assert meta["lastDailyReset"] == "Mon Jan 01 2024"
    assert project["stats"]["today"] == 50
    assert "Periodic reset for 1 project(s) failed" in caplog.text


def test_nested_snapshots_are_coalesced(clock: FakeClock):
    store = RecordingStore(
        build_docs(projects=[project_doc("p1", today=5)], meta=meta_doc("Mon Jan 01 2024", 1, 0, 2024))
    )
    coordinator = ResetCoordinator(store, PATHS, UTC, clock)
    outcomes: List[Optional[ResetOutcome]] = []

    async def on_projects(docs: List[Doc]) -> None:
        # Mirrors a live listener: every delivery, including the one raised by
        # the reset commit itself, asks the coordinator to run again.
        projects = [Project.model_validate(doc) for doc in docs]
        outcomes.append(await coordinator.on_projects_snapshot(projects, had_cache=True))

    async def scenario():
        await store.subscribe(PATHS.projects, on_projects)

    asyncio.run(scenario())
    assert len(_reset_batches(store)) == 1
    # The delivery raised by the commit is folded into the running check, which
    # then reruns once and finds nothing left to do
    assert len(outcomes) == 2
    assert outcomes[0] is None
    assert outcomes[1] is not None and not outcomes[1].plan.any


def test_boundary_crossing_zeroes_today_once(make_workspace, clock: FakeClock):
    clock.set(dt.datetime(2024, 1, 1, 23, 59, 30, tzinfo=UTC))
    store = RecordingStore(
        build_docs(
            projects=[project_doc("p1", today=3000, week=3000, month=3000), project_doc("p2", today=60, week=60, month=60)],
            meta=meta_doc("Mon Jan 01 2024", 1, 0, 2024),
        )
    )
    ws = make_workspace(store)

    async def scenario():
        await ws.start(run_loops=False)
        assert store.commits == []
        clock.advance(40)
        # Any project change after midnight runs the check
        await store.update(PATHS.project("p2"), {"name": "Side project"})
        await ws.resets.on_projects_snapshot(ws.state.projects, had_cache=True)

    asyncio.run(scenario())
    assert len(_reset_batches(store)) == 1
    assert ws.state.project("p1").stats.today == 0
    assert ws.state.project("p1").stats.week == 3000
    assert ws.state.project("p2").stats.month == 60
    assert ws.state.stats.today == 0
    assert ws.state.stats.week == 3060


def test_fresh_account_is_seeded_once(make_workspace):
    store = RecordingStore(build_docs())
    first = make_workspace(store)

    async def start_fresh():
        await first.start(run_loops=False)
        await first.close()

    asyncio.run(start_fresh())
    assert [project.id for project in first.state.projects] == ["p-1"]
    meta = asyncio.run(store.get(PATHS.meta))
    assert meta["initialized"] is True
    assert meta["lastDailyReset"] == "Tue Jan 02 2024"

    # Account deletes its starter project; a new session must not recreate it
    asyncio.run(store.delete(PATHS.project("p-1")))
    second = make_workspace(store)

    async def start_again():
        await second.start(run_loops=False)
        await second.close()

    asyncio.run(start_again())
    assert second.state.projects == []
    assert asyncio.run(store.list(PATHS.projects)) == []


@pytest.mark.parametrize(
    "meta, now, expected, kept",
    [
        # Sunday to Monday inside January: new ISO week, same month and year
        (meta_doc("Sun Jan 07 2024", 1, 0, 2024), dt.datetime(2024, 1, 8, 7, 0, tzinfo=UTC),
         {"stats.today": 0, "stats.week": 0}, ("month", 1200)),
        # 31 January to 1 February, both in ISO week 5
        (meta_doc("Wed Jan 31 2024", 5, 0, 2024), dt.datetime(2024, 2, 1, 7, 0, tzinfo=UTC),
         {"stats.today": 0, "stats.month": 0}, ("week", 900)),
    ],
    ids=["weekly-only", "monthly-only"],
)
def test_single_period_crossing_is_applied_once(clock: FakeClock, meta: Doc, now: dt.datetime, expected: Doc, kept):
    clock.set(now)
    store = RecordingStore(build_docs(projects=[project_doc("p1", today=500, week=900, month=1200)], meta=meta))
    coordinator = ResetCoordinator(store, PATHS, UTC, clock)

    async def scenario():
        first = await coordinator.on_projects_snapshot(await _projects(store), had_cache=True)
        second = await coordinator.on_projects_snapshot(await _projects(store), had_cache=True)
        return first, second, await store.get(PATHS.project("p1"))

    first, second, project = asyncio.run(scenario())
    assert first.committed
    assert first.plan.project_fields() == expected
    assert second.committed is False and not second.plan.any
    assert len(_reset_batches(store)) == 1

    (batch,) = _reset_batches(store)
    assert [op.data for op in batch if op.path != PATHS.meta] == [expected]
    field_name, value = kept
    assert project["stats"][field_name] == value
    assert project["stats"]["today"] == 0


def test_workspace_without_timezone_resets_on_host_calendar(config, identity):
    ws = Workspace(RecordingStore(), identity, config.model_copy(update={"timezone": None}))
    assert ws.resets.tz is None
