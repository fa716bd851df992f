from __future__ import annotations

from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Set

from .ordering import sort_by_order
from .schemas import (
    INITIAL_GOALS,
    Goal,
    InboxTask,
    Project,
    Reminder,
    Task,
    UserPreferences,
    UserProfile,
)
from .stats import DerivedStats, aggregate, apply_goals
from .timer import TimerState


class AppState:
    """Local mirror of one account's live documents plus the timer.

    Documents are replaced wholesale by snapshot deliveries. The only local
    mutation of mirrored documents is the timer tick, which is recorded as
    provisional and dropped by the next delivery of that collection.
    """

    def __init__(self, daily_goal_target: int = 28800):
        self._lock = RLock()
        self._default_daily_target = daily_goal_target
        self._tasks: Dict[str, Task] = {}
        self._projects: Dict[str, Project] = {}
        self._inbox: Dict[str, InboxTask] = {}
        self._reminders: Dict[str, Reminder] = {}
        self._goals: List[Goal] = [goal.model_copy() for goal in INITIAL_GOALS]
        self._provisional: Set[str] = set()
        self._stats = DerivedStats()
        self.preferences = UserPreferences(daily_goal_target=daily_goal_target)
        self.profile: Optional[UserProfile] = None
        self.selected_project_id: Optional[str] = None
        self.timer = TimerState()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def tasks(self) -> List[Task]:
        with self._lock:
            return sort_by_order(self._tasks.values())

    @property
    def projects(self) -> List[Project]:
        with self._lock:
            return list(self._projects.values())

    @property
    def inbox(self) -> List[InboxTask]:
        with self._lock:
            return sort_by_order(self._inbox.values())

    @property
    def reminders(self) -> List[Reminder]:
        with self._lock:
            return list(self._reminders.values())

    @property
    def goals(self) -> List[Goal]:
        with self._lock:
            return list(self._goals)

    @property
    def stats(self) -> DerivedStats:
        return self._stats

    @property
    def daily_progress(self) -> int:
        return self._stats.today

    def task(self, task_id: Optional[str]) -> Optional[Task]:
        if task_id is None:
            return None
        with self._lock:
            return self._tasks.get(task_id)

    def project(self, project_id: Optional[str]) -> Optional[Project]:
        if project_id is None:
            return None
        with self._lock:
            return self._projects.get(project_id)

    def inbox_item(self, item_id: str) -> Optional[InboxTask]:
        with self._lock:
            return self._inbox.get(item_id)

    def reminder(self, reminder_id: str) -> Optional[Reminder]:
        with self._lock:
            return self._reminders.get(reminder_id)

    def has_projects(self) -> bool:
        with self._lock:
            return bool(self._projects)

    def is_provisional(self, kind: str, doc_id: str) -> bool:
        return f"{kind}:{doc_id}" in self._provisional

    # ------------------------------------------------------------------
    # Authoritative snapshots
    # ------------------------------------------------------------------
    def replace_tasks(self, tasks: Iterable[Task]) -> None:
        with self._lock:
            self._tasks = {task.id: task for task in tasks}
            self._provisional = {key for key in self._provisional if not key.startswith("task:")}

    def replace_projects(self, projects: Iterable[Project]) -> None:
        with self._lock:
            self._projects = {project.id: project for project in projects}
            self._provisional = {key for key in self._provisional if not key.startswith("project:")}
            self._recompute()

    def replace_inbox(self, items: Iterable[InboxTask]) -> None:
        with self._lock:
            self._inbox = {item.id: item for item in items}

    def apply_preferences(self, preferences: Optional[UserPreferences]) -> None:
        with self._lock:
            if preferences is None:
                return
            self.preferences = preferences
            if preferences.goal_targets:
                self._goals = [
                    goal.model_copy(update={"target_seconds": preferences.goal_targets[goal.id]})
                    if goal.id in preferences.goal_targets
                    else goal
                    for goal in self._goals
                ]

    def set_profile(self, profile: Optional[UserProfile]) -> None:
        with self._lock:
            self.profile = profile

    # ------------------------------------------------------------------
    # Local-only mutations
    # ------------------------------------------------------------------
    def bump_provisional(self, task_id: Optional[str], project_id: Optional[str], seconds: int = 1) -> None:
        """Optimistically add ``seconds`` to the cached task/project counters."""
        with self._lock:
            task = self._tasks.get(task_id) if task_id else None
            if task is not None:
                self._tasks[task.id] = task.model_copy(update={"total_time": task.total_time + seconds})
                self._provisional.add(f"task:{task.id}")
            project = self._projects.get(project_id) if project_id else None
            if project is not None:
                stats = project.stats.model_copy(
                    update={
                        "today": project.stats.today + seconds,
                        "week": project.stats.week + seconds,
                        "month": project.stats.month + seconds,
                    }
                )
                self._projects[project.id] = project.model_copy(
                    update={"total_time": project.total_time + seconds, "stats": stats}
                )
                self._provisional.add(f"project:{project.id}")
                self._recompute()

    def set_goal_target(self, goal_id: str, target_seconds: int) -> Optional[Goal]:
        with self._lock:
            for index, goal in enumerate(self._goals):
                if goal.id == goal_id:
                    self._goals[index] = goal.model_copy(update={"target_seconds": target_seconds})
                    return self._goals[index]
            return None

    def put_reminder(self, reminder: Reminder) -> None:
        with self._lock:
            self._reminders[reminder.id] = reminder

    def remove_reminder(self, reminder_id: str) -> None:
        with self._lock:
            self._reminders.pop(reminder_id, None)

    def clear(self) -> None:
        """Forget everything mirrored for the signed-in account."""
        with self._lock:
            self._tasks = {}
            self._projects = {}
            self._inbox = {}
            self._reminders = {}
            self._goals = [goal.model_copy() for goal in INITIAL_GOALS]
            self._provisional = set()
            self._stats = DerivedStats()
            self.preferences = UserPreferences(daily_goal_target=self._default_daily_target)
            self.profile = None
            self.selected_project_id = None
            self.timer = TimerState()

    def _recompute(self) -> None:
        self._stats = aggregate(self._projects.values())
        self._goals = apply_goals(self._goals, self._stats)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "projects": self.projects,
                "tasks": self.tasks,
                "inbox": self.inbox,
                "goals": self.goals,
                "reminders": self.reminders,
                "preferences": self.preferences,
                "profile": self.profile,
                "selected_project_id": self.selected_project_id,
                "stats": {"today": self._stats.today, "week": self._stats.week, "month": self._stats.month},
            }
