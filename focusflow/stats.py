from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .schemas import Goal, Project, Task


@dataclass(frozen=True)
class DerivedStats:
    today: int = 0
    week: int = 0
    month: int = 0


def aggregate(projects: Iterable[Project]) -> DerivedStats:
    """Sum the rolling stats over all projects; recomputed on every project-list change."""
    today = week = month = 0
    for project in projects:
        today += project.stats.today or 0
        week += project.stats.week or 0
        month += project.stats.month or 0
    return DerivedStats(today=today, week=week, month=month)


def apply_goals(goals: Iterable[Goal], stats: DerivedStats) -> List[Goal]:
    updated: List[Goal] = []
    for goal in goals:
        if goal.period == "weekly":
            goal = goal.model_copy(update={"current_seconds": stats.week})
        elif goal.period == "monthly":
            goal = goal.model_copy(update={"current_seconds": stats.month})
        updated.append(goal)
    return updated


def goal_percent(current_seconds: int, target_seconds: int) -> float:
    if target_seconds <= 0:
        return 100.0 if current_seconds > 0 else 0.0
    return min(100.0, current_seconds / target_seconds * 100)


def remaining_seconds(current_seconds: int, target_seconds: int) -> int:
    return max(0, target_seconds - current_seconds)


def format_duration(seconds: Optional[int]) -> str:
    if not seconds:
        return "0m"
    hours, rest = divmod(int(seconds), 3600)
    minutes = rest // 60
    if hours > 0:
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"
    return f"{minutes}m"


def activity_history(tasks: Iterable[Task]) -> List[Task]:
    """Tasks that have tracked time, longest first."""
    return sorted((task for task in tasks if task.total_time > 0), key=lambda task: task.total_time, reverse=True)


@dataclass(frozen=True)
class ProjectSummary:
    open_count: int
    completed_count: int
    task_seconds: int


def project_summaries(projects: Iterable[Project], tasks: Iterable[Task]) -> Dict[str, ProjectSummary]:
    by_project: Dict[str, List[Task]] = {project.id: [] for project in projects}
    for task in tasks:
        if task.project_id in by_project:
            by_project[task.project_id].append(task)
    summaries: Dict[str, ProjectSummary] = {}
    for project_id, project_tasks in by_project.items():
        summaries[project_id] = ProjectSummary(
            open_count=sum(1 for task in project_tasks if task.status in ("active", "review")),
            completed_count=sum(1 for task in project_tasks if task.status == "completed"),
            task_seconds=sum(task.total_time for task in project_tasks),
        )
    return summaries
