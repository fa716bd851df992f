from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from pydantic.alias_generators import to_camel

from .errors import OrderKeysExhaustedError
from .logger import get_logger
from .ordering import append_keys, order_between, rebalance
from .resets import ResetOutcome
from .runtime import Workspace
from .schemas import (
    DailyProgressView,
    DailyTargetRequest,
    Goal,
    GoalView,
    HistoryEntry,
    InboxTask,
    Project,
    ProjectCreateRequest,
    ProjectSummaryResponse,
    ProjectUpdateRequest,
    ProfileUpdateRequest,
    Reminder,
    ReminderCreateRequest,
    Task,
    TaskCreateRequest,
    TaskUpdateRequest,
    TimerView,
    UserProfile,
)
from .stats import activity_history, format_duration, goal_percent, project_summaries, remaining_seconds
from .timer import ToggleResult

log = get_logger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _to_fields(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {to_camel(key): value for key, value in changes.items()}


def _get_project(ws: Workspace, project_id: str) -> Project:
    project = ws.state.project(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def _get_task(ws: Workspace, task_id: str) -> Task:
    task = ws.state.task(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


# ----------------------------------------------------------------------
# Timer and navigation
# ----------------------------------------------------------------------


def toggle_timer(ws: Workspace, target_id: Optional[str] = None) -> ToggleResult:
    return ws.timer.toggle(target_id)


def timer_view(ws: Workspace) -> TimerView:
    timer = ws.timer.timer
    return TimerView(
        is_active=timer.is_active,
        start_time=timer.start_time,
        elapsed_before_start=timer.elapsed_before_start,
        active_task_id=timer.active_task_id,
        active_project_id=timer.active_project_id,
        elapsed_seconds=ws.timer.elapsed_seconds(),
    )


def select_project(ws: Workspace, project_id: Optional[str]) -> Optional[str]:
    if project_id is not None:
        _get_project(ws, project_id)
    ws.state.selected_project_id = project_id
    return project_id


async def check_resets(ws: Workspace) -> Optional[ResetOutcome]:
    return await ws.resets.on_projects_snapshot(ws.state.projects, had_cache=True)


# ----------------------------------------------------------------------
# Projects
# ----------------------------------------------------------------------


async def add_project(ws: Workspace, payload: ProjectCreateRequest) -> Project:
    project = Project(id=_new_id("p"), **payload.model_dump())
    await ws.store.set(ws.paths.project(project.id), project.to_document())
    return ws.state.project(project.id) or project


async def update_project(ws: Workspace, project_id: str, payload: ProjectUpdateRequest) -> Project:
    _get_project(ws, project_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes:
        # Only user-editable fields; counters are left to increments and resets
        await ws.store.update(ws.paths.project(project_id), _to_fields(changes))
    return _get_project(ws, project_id)


async def delete_projects(ws: Workspace, project_ids: List[str]) -> int:
    ids = set(project_ids)
    batch = ws.store.batch()
    for project_id in ids:
        batch.delete(ws.paths.project(project_id))
    for task in ws.state.tasks:
        if task.project_id in ids:
            batch.delete(ws.paths.task(task.id))
    if len(batch):
        await batch.commit()
    if ws.state.selected_project_id in ids:
        ws.state.selected_project_id = None
    return len(ids)


def project_summary(ws: Workspace, project_id: str) -> ProjectSummaryResponse:
    project = _get_project(ws, project_id)
    summary = project_summaries([project], ws.state.tasks)[project_id]
    return ProjectSummaryResponse(
        project_id=project_id,
        open_count=summary.open_count,
        completed_count=summary.completed_count,
        task_seconds=summary.task_seconds,
    )


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------


def _project_tasks(ws: Workspace, project_id: str, exclude: Optional[str] = None) -> List[Task]:
    return [task for task in ws.state.tasks if task.project_id == project_id and task.id != exclude]


async def add_task(ws: Workspace, payload: TaskCreateRequest) -> Task:
    _get_project(ws, payload.project_id)
    key, rekeyed = append_keys(_project_tasks(ws, payload.project_id))
    task = Task(
        id=_new_id("t"),
        project_id=payload.project_id,
        title=payload.title,
        status="active",
        total_time=0,
        order=key,
    )
    batch = ws.store.batch()
    for sibling_id, sibling_key in rekeyed.items():
        batch.update(ws.paths.task(sibling_id), {"order": sibling_key})
    batch.set(ws.paths.task(task.id), task.to_document())
    await batch.commit()
    return ws.state.task(task.id) or task


async def update_task(ws: Workspace, task_id: str, payload: TaskUpdateRequest) -> Task:
    task = _get_task(ws, task_id)
    changes = payload.model_dump(exclude_unset=True)
    if "subtasks" in changes and payload.subtasks is not None:
        changes["subtasks"] = [subtask.to_document() for subtask in payload.subtasks]
    new_status = changes.get("status")
    if new_status == "completed" and task.status != "completed":
        changes["completed_at"] = ws.clock().isoformat()
    elif new_status is not None and new_status != "completed":
        changes["completed_at"] = None
    if changes:
        await ws.store.update(ws.paths.task(task_id), _to_fields(changes))
    return _get_task(ws, task_id)


async def delete_task(ws: Workspace, task_id: str) -> None:
    _get_task(ws, task_id)
    await ws.store.delete(ws.paths.task(task_id))


async def toggle_subtask(ws: Workspace, task_id: str, subtask_id: str) -> Task:
    task = _get_task(ws, task_id)
    if not any(subtask.id == subtask_id for subtask in task.subtasks):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subtask not found")
    subtasks = [
        subtask.model_copy(update={"completed": not subtask.completed}) if subtask.id == subtask_id else subtask
        for subtask in task.subtasks
    ]
    await ws.store.update(ws.paths.task(task_id), {"subtasks": [subtask.to_document() for subtask in subtasks]})
    return _get_task(ws, task_id)


async def move_task(
    ws: Workspace,
    task_id: str,
    after_id: Optional[str] = None,
    before_id: Optional[str] = None,
) -> Task:
    """Drop ``task_id`` right after ``after_id`` (or right before ``before_id``) within its project."""
    task = _get_task(ws, task_id)
    siblings = _project_tasks(ws, task.project_id, exclude=task_id)
    ids = [sibling.id for sibling in siblings]
    if after_id is not None:
        if after_id not in ids:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
        index = ids.index(after_id) + 1
    elif before_id is not None:
        if before_id not in ids:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
        index = ids.index(before_id)
    else:
        index = len(siblings)

    prev_task = siblings[index - 1] if index > 0 else None
    next_task = siblings[index] if index < len(siblings) else None
    try:
        if (prev_task and prev_task.order is None) or (next_task and next_task.order is None):
            raise OrderKeysExhaustedError("Neighbour has no order key")
        key = order_between(
            prev_task.order if prev_task else None,
            next_task.order if next_task else None,
        )
    except OrderKeysExhaustedError:
        log.info("Rebalancing order keys for project %s", task.project_id)
        ordered = siblings[:index] + [task] + siblings[index:]
        batch = ws.store.batch()
        for item, new_key in zip(ordered, rebalance(len(ordered))):
            batch.update(ws.paths.task(item.id), {"order": new_key})
        await batch.commit()
    else:
        await ws.store.update(ws.paths.task(task_id), {"order": key})
    return _get_task(ws, task_id)


def history(ws: Workspace) -> List[HistoryEntry]:
    entries: List[HistoryEntry] = []
    for task in activity_history(ws.state.tasks):
        project = ws.state.project(task.project_id)
        entries.append(
            HistoryEntry(
                task_id=task.id,
                title=task.title,
                project_id=task.project_id,
                project_name=project.name if project else None,
                total_time=task.total_time,
                formatted=format_duration(task.total_time),
            )
        )
    return entries


# ----------------------------------------------------------------------
# Inbox
# ----------------------------------------------------------------------


async def add_inbox_task(ws: Workspace, title: str) -> InboxTask:
    key, rekeyed = append_keys(ws.state.inbox)
    item = InboxTask(id=_new_id("i"), title=title, completed=False, order=key)
    batch = ws.store.batch()
    for other_id, other_key in rekeyed.items():
        batch.update(ws.paths.inbox_item(other_id), {"order": other_key})
    batch.set(ws.paths.inbox_item(item.id), item.to_document())
    await batch.commit()
    return ws.state.inbox_item(item.id) or item


async def toggle_inbox_task(ws: Workspace, item_id: str) -> InboxTask:
    item = ws.state.inbox_item(item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inbox item not found")
    completed = not item.completed
    await ws.store.update(ws.paths.inbox_item(item_id), {"completed": completed})
    if completed:
        ws.spawn(_clear_inbox_item(ws, item_id, ws.config.inbox_clear_delay_seconds))
    return item.model_copy(update={"completed": completed})


async def _clear_inbox_item(ws: Workspace, item_id: str, delay: float) -> None:
    await asyncio.sleep(delay)
    path = ws.paths.inbox_item(item_id)
    try:
        doc = await ws.store.get(path)
        if doc is not None and doc.get("completed"):
            await ws.store.delete(path)
    except Exception:
        log.exception("Could not clear completed inbox item %s", item_id)


# ----------------------------------------------------------------------
# Goals, preferences and profile
# ----------------------------------------------------------------------


def goal_views(ws: Workspace) -> List[GoalView]:
    return [
        GoalView(
            **goal.model_dump(),
            percent=goal_percent(goal.current_seconds, goal.target_seconds),
            remaining_seconds=remaining_seconds(goal.current_seconds, goal.target_seconds),
            formatted_current=format_duration(goal.current_seconds),
            formatted_target=format_duration(goal.target_seconds),
        )
        for goal in ws.state.goals
    ]


def daily_progress(ws: Workspace) -> DailyProgressView:
    current = ws.state.daily_progress
    target = ws.state.preferences.daily_goal_target
    return DailyProgressView(
        current_seconds=current,
        target_seconds=target,
        percent=goal_percent(current, target),
        remaining_seconds=remaining_seconds(current, target),
    )


async def update_goal(ws: Workspace, goal_id: str, target_seconds: int) -> Goal:
    goal = ws.state.set_goal_target(goal_id, target_seconds)
    if goal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    await ws.store.set(ws.paths.preferences, {"goalTargets": {goal_id: target_seconds}}, merge=True)
    return goal


async def update_daily_target(ws: Workspace, payload: DailyTargetRequest) -> int:
    ws.state.preferences = ws.state.preferences.model_copy(update={"daily_goal_target": payload.target_seconds})
    await ws.store.set(ws.paths.preferences, {"dailyGoalTarget": payload.target_seconds}, merge=True)
    return payload.target_seconds


async def toggle_dark_mode(ws: Workspace) -> bool:
    enabled = not ws.state.preferences.is_dark_mode
    ws.state.preferences = ws.state.preferences.model_copy(update={"is_dark_mode": enabled})
    try:
        await ws.store.set(ws.paths.preferences, {"isDarkMode": enabled}, merge=True)
    except Exception:
        log.exception("Could not save theme preference")
    return enabled


async def update_profile(ws: Workspace, payload: ProfileUpdateRequest) -> UserProfile:
    profile = UserProfile(**payload.model_dump())
    await ws.store.set(ws.paths.profile, profile.to_document())
    return ws.state.profile or profile


# ----------------------------------------------------------------------
# Reminders (kept in local state only)
# ----------------------------------------------------------------------


def add_reminder(ws: Workspace, payload: ReminderCreateRequest) -> Reminder:
    reminder = Reminder(id=_new_id("r"), **payload.model_dump())
    ws.state.put_reminder(reminder)
    return reminder


async def toggle_reminder(ws: Workspace, reminder_id: str) -> Reminder:
    reminder = ws.state.reminder(reminder_id)
    if reminder is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
    reminder = reminder.model_copy(update={"completed": not reminder.completed})
    ws.state.put_reminder(reminder)
    if reminder.completed:
        ws.spawn(_clear_reminder(ws, reminder_id, ws.config.reminder_clear_delay_seconds))
    return reminder


async def _clear_reminder(ws: Workspace, reminder_id: str, delay: float) -> None:
    await asyncio.sleep(delay)
    reminder = ws.state.reminder(reminder_id)
    if reminder is not None and reminder.completed:
        ws.state.remove_reminder(reminder_id)


async def sign_out(ws: Workspace) -> None:
    await ws.close()
    ws.state.clear()
