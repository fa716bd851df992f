from __future__ import annotations

import asyncio
import datetime as dt
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .logger import get_logger
from .paths import StorePaths
from .periods import CalendarMarkers, now_utc
from .schemas import INITIAL_PROJECTS, Project, ResetMeta
from .store import DocumentStore

log = get_logger(__name__)

Clock = Callable[[], dt.datetime]


@dataclass(frozen=True)
class ResetPlan:
    daily: bool
    weekly: bool
    monthly: bool
    markers: CalendarMarkers

    @property
    def any(self) -> bool:
        return self.daily or self.weekly or self.monthly

    def project_fields(self) -> Dict[str, int]:
        fields: Dict[str, int] = {}
        if self.daily:
            fields["stats.today"] = 0
        if self.weekly:
            fields["stats.week"] = 0
        if self.monthly:
            fields["stats.month"] = 0
        return fields

    def meta_fields(self) -> Dict[str, Any]:
        return {
            "lastDailyReset": self.markers.day,
            "lastWeeklyReset": self.markers.week,
            "lastMonthlyReset": self.markers.month,
            "lastYear": self.markers.year,
        }


def compute_reset_plan(meta: ResetMeta, now: dt.datetime, tz: Optional[dt.tzinfo] = None) -> ResetPlan:
    """Which rolling stats are due for a reset at ``now`` given the stored markers.

    Week and month numbers repeat every year, so a different ``last_year``
    forces both resets even when the number matches.
    """
    markers = CalendarMarkers.for_instant(now, tz)
    year_changed = meta.last_year != markers.year
    return ResetPlan(
        daily=meta.last_daily_reset != markers.day,
        weekly=meta.last_weekly_reset != markers.week or year_changed,
        monthly=meta.last_monthly_reset != markers.month or year_changed,
        markers=markers,
    )


@dataclass(frozen=True)
class ResetOutcome:
    plan: ResetPlan
    committed: bool = False
    seeded: bool = False


class ResetCoordinator:
    """Applies calendar-boundary resets to project stats, at most once per boundary.

    Runs whenever a project snapshot arrives (and optionally on a timer). The
    markers are written in the same batch as the zeroed stats, so a run right
    after a successful commit is a no-op. Invocations arriving while a run is
    in flight are folded into one more run with the latest project list.
    """

    def __init__(
        self,
        store: DocumentStore,
        paths: StorePaths,
        tz: Optional[dt.tzinfo] = None,
        clock: Clock = now_utc,
    ) -> None:
        self.store = store
        self.paths = paths
        self.tz = tz
        self._clock = clock
        self._running = False
        self._rerun = False
        self._latest: Tuple[List[Project], bool] = ([], False)

    async def read_meta(self) -> ResetMeta:
        doc = await self.store.get(self.paths.meta)
        return ResetMeta.model_validate(doc or {})

    async def on_projects_snapshot(self, projects: Sequence[Project], had_cache: bool = False) -> Optional[ResetOutcome]:
        self._latest = (list(projects), had_cache)
        if self._running:
            self._rerun = True
            return None
        self._running = True
        outcome: Optional[ResetOutcome] = None
        try:
            while True:
                self._rerun = False
                latest, cached = self._latest
                outcome = await self._run(latest, cached)
                if not self._rerun:
                    break
        finally:
            self._running = False
        return outcome

    async def _run(self, projects: List[Project], had_cache: bool) -> ResetOutcome:
        meta = await self.read_meta()
        plan = compute_reset_plan(meta, self._clock(), self.tz)
        committed = False
        if plan.any and projects:
            committed = await self._commit_resets(plan, projects)
        seeded = False
        if not projects and not had_cache and not meta.initialized:
            seeded = await self._seed()
        return ResetOutcome(plan=plan, committed=committed, seeded=seeded)

    async def _commit_resets(self, plan: ResetPlan, projects: List[Project]) -> bool:
        fields = plan.project_fields()
        batch = self.store.batch()
        for project in projects:
            batch.update(self.paths.project(project.id), fields)
        batch.set(self.paths.meta, plan.meta_fields(), merge=True)
        try:
            await batch.commit()
        except Exception:
            log.exception("Periodic reset for %s project(s) failed", len(projects))
            return False
        log.info(
            "Reset rolling stats (daily=%s, weekly=%s, monthly=%s) on %s project(s)",
            plan.daily,
            plan.weekly,
            plan.monthly,
            len(projects),
        )
        return True

    async def _seed(self) -> bool:
        batch = self.store.batch()
        for project in INITIAL_PROJECTS:
            batch.set(self.paths.project(project.id), project.to_document())
        batch.set(self.paths.meta, {"initialized": True}, merge=True)
        try:
            await batch.commit()
        except Exception:
            log.exception("Seeding starter projects failed")
            return False
        log.info("Seeded %s starter project(s)", len(INITIAL_PROJECTS))
        return True

    async def run_periodic(self, interval: float, projects: Callable[[], Sequence[Project]]) -> None:
        """Re-check on a wall-clock timer so idle accounts still reset on time."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.on_projects_snapshot(projects(), had_cache=True)
            except Exception:
                log.exception("Periodic reset check failed")
