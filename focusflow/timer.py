from __future__ import annotations

import asyncio
import datetime as dt
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Optional, Set, Tuple

from .logger import get_logger
from .periods import now_utc
from .store import Increment

if TYPE_CHECKING:
    from .paths import StorePaths
    from .state import AppState
    from .store import DocumentStore

log = get_logger(__name__)

Clock = Callable[[], dt.datetime]

# Project id used when nothing else can be targeted
DEFAULT_PROJECT_ID = "default"

_ONE_SECOND = dt.timedelta(seconds=1)


@dataclass
class TimerState:
    """In-memory stopwatch; never persisted. Active exactly when ``start_time`` is set."""

    is_active: bool = False
    start_time: Optional[dt.datetime] = None
    elapsed_before_start: int = 0
    active_task_id: Optional[str] = None
    active_project_id: Optional[str] = None


@dataclass(frozen=True)
class ToggleResult:
    action: str  # "started" | "stopped"
    seconds_elapsed: Optional[int] = None


def whole_seconds_between(start: dt.datetime, end: dt.datetime) -> int:
    """``floor((end - start) / 1s)``, never negative."""
    return max(0, (end - start) // _ONE_SECOND)


class TimerEngine:
    """Start/stop focus sessions and fold the elapsed time into stored counters.

    Starting only touches local state. Stopping clears local state at once and
    hands the increments to background tasks; a failed increment is logged
    and not retried, since replaying an increment would double count.
    """

    def __init__(
        self,
        store: "DocumentStore",
        state: "AppState",
        paths: "StorePaths",
        clock: Clock = now_utc,
    ) -> None:
        self.store = store
        self.state = state
        self.paths = paths
        self._clock = clock
        self._pending: Set["asyncio.Task[None]"] = set()

    @property
    def timer(self) -> TimerState:
        return self.state.timer

    @property
    def pending(self) -> int:
        return len(self._pending)

    def resolve_target(self, target_id: Optional[str] = None) -> Tuple[Optional[str], str]:
        task = self.state.task(target_id)
        if task is not None:
            return task.id, task.project_id
        if target_id:
            return None, target_id
        if self.state.selected_project_id:
            return None, self.state.selected_project_id
        projects = self.state.projects
        if projects:
            return None, projects[0].id
        return None, DEFAULT_PROJECT_ID

    def toggle(self, target_id: Optional[str] = None) -> ToggleResult:
        if self.timer.is_active:
            return ToggleResult("stopped", self._stop())
        self._start(target_id)
        return ToggleResult("started")

    def _start(self, target_id: Optional[str]) -> None:
        task_id, project_id = self.resolve_target(target_id)
        self.state.timer = TimerState(
            is_active=True,
            start_time=self._clock(),
            elapsed_before_start=0,
            active_task_id=task_id,
            active_project_id=project_id,
        )
        log.info("Timer started (task=%s, project=%s)", task_id, project_id)

    def _stop(self) -> int:
        timer = self.timer
        seconds = whole_seconds_between(timer.start_time, self._clock()) if timer.start_time else 0
        self.state.timer = TimerState()
        log.info(
            "Timer stopped after %ss (task=%s, project=%s)",
            seconds,
            timer.active_task_id,
            timer.active_project_id,
        )
        if seconds > 0:
            if timer.active_task_id:
                self._schedule(self._increment_task(timer.active_task_id, seconds))
            if timer.active_project_id:
                self._schedule(self._increment_project(timer.active_project_id, seconds))
        return seconds

    def elapsed_seconds(self, stored_total: int = 0) -> int:
        """Value to display: live session time while active, the stored total otherwise."""
        timer = self.timer
        if timer.is_active and timer.start_time is not None:
            return timer.elapsed_before_start + whole_seconds_between(timer.start_time, self._clock())
        return stored_total

    def tick(self) -> int:
        """One visual tick: bump the cached counters by a provisional second."""
        timer = self.timer
        if not timer.is_active:
            return 0
        self.state.bump_provisional(timer.active_task_id, timer.active_project_id, 1)
        return self.elapsed_seconds()

    async def run_ticker(self, interval: float = 1.0) -> None:
        while True:
            await asyncio.sleep(interval)
            self.tick()

    async def drain(self) -> None:
        """Wait for every outstanding stop-commit to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _increment_task(self, task_id: str, seconds: int) -> None:
        try:
            await self.store.update(self.paths.task(task_id), {"totalTime": Increment(seconds)})
        except Exception:
            log.exception("Could not save %ss to task %s", seconds, task_id)

    async def _increment_project(self, project_id: str, seconds: int) -> None:
        try:
            await self.store.update(
                self.paths.project(project_id),
                {
                    "totalTime": Increment(seconds),
                    "stats.today": Increment(seconds),
                    "stats.week": Increment(seconds),
                    "stats.month": Increment(seconds),
                },
            )
        except Exception:
            log.exception("Could not save %ss to project %s", seconds, project_id)

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> Optional["asyncio.Task[None]"]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("No running event loop, saving timer result synchronously")
            asyncio.run(coro)
            return None
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task
