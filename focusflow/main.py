from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware

from . import services
from .config import Settings, settings
from .database import build_store
from .logger import configure_logging
from .periods import now_utc
from .runtime import Identity, Workspace
from .schemas import (
    DailyTargetRequest,
    DerivedStatsResponse,
    Goal,
    GoalUpdateRequest,
    GoalView,
    HistoryEntry,
    InboxCreateRequest,
    InboxTask,
    Project,
    ProjectCreateRequest,
    ProjectDeleteRequest,
    ProjectSummaryResponse,
    ProjectUpdateRequest,
    ProfileUpdateRequest,
    Reminder,
    ReminderCreateRequest,
    ResetCheckResponse,
    StateResponse,
    Task,
    TaskCreateRequest,
    TaskMoveRequest,
    TaskUpdateRequest,
    TimerToggleRequest,
    TimerToggleResponse,
    TimerView,
    UserProfile,
    ViewRequest,
)
from .store import DocumentStore
from .timer import Clock

router = APIRouter()


def get_workspace(request: Request) -> Workspace:
    workspace = getattr(request.app.state, "workspace", None)
    if workspace is None or not workspace.started:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Not signed in")
    return workspace


def create_app(
    store: Optional[DocumentStore] = None,
    clock: Optional[Clock] = None,
    identity: Optional[Identity] = None,
    config: Settings = settings,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(config.log_level, config.log_dir)
        workspace = Workspace(
            store if store is not None else build_store(config),
            identity or Identity.from_settings(config),
            config,
            clock or now_utc,
        )
        await workspace.start()
        app.state.workspace = workspace
        try:
            yield
        finally:
            await workspace.close()

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


@router.get("/healthz")
def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/state", response_model=StateResponse)
def read_state(ws: Workspace = Depends(get_workspace)) -> StateResponse:
    snapshot = ws.state.snapshot()
    snapshot["stats"] = DerivedStatsResponse(**snapshot["stats"])
    snapshot["goals"] = services.goal_views(ws)
    return StateResponse(timer=services.timer_view(ws), daily=services.daily_progress(ws), **snapshot)


# ----------------------------------------------------------------------
# Timer and resets
# ----------------------------------------------------------------------


@router.get("/timer", response_model=TimerView)
def read_timer(ws: Workspace = Depends(get_workspace)) -> TimerView:
    return services.timer_view(ws)


@router.post("/timer/toggle", response_model=TimerToggleResponse)
async def timer_toggle(payload: TimerToggleRequest, ws: Workspace = Depends(get_workspace)) -> TimerToggleResponse:
    result = services.toggle_timer(ws, payload.target_id)
    return TimerToggleResponse(
        action=result.action,
        timer=services.timer_view(ws),
        seconds_elapsed=result.seconds_elapsed,
    )


@router.post("/resets/check", response_model=ResetCheckResponse)
async def resets_check(ws: Workspace = Depends(get_workspace)) -> ResetCheckResponse:
    outcome = await services.check_resets(ws)
    if outcome is None:
        # A check is already running and will pick up the latest projects
        return ResetCheckResponse(daily=False, weekly=False, monthly=False, committed=False)
    return ResetCheckResponse(
        daily=outcome.plan.daily,
        weekly=outcome.plan.weekly,
        monthly=outcome.plan.monthly,
        committed=outcome.committed,
    )


@router.post("/view")
def set_view(payload: ViewRequest, ws: Workspace = Depends(get_workspace)) -> Dict[str, Optional[str]]:
    return {"project_id": services.select_project(ws, payload.project_id)}


# ----------------------------------------------------------------------
# Projects and tasks
# ----------------------------------------------------------------------


@router.get("/projects", response_model=List[Project])
def list_projects(ws: Workspace = Depends(get_workspace)) -> List[Project]:
    return ws.state.projects


@router.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
async def create_project(payload: ProjectCreateRequest, ws: Workspace = Depends(get_workspace)) -> Project:
    return await services.add_project(ws, payload)


@router.put("/projects/{project_id}", response_model=Project)
async def edit_project(
    project_id: str, payload: ProjectUpdateRequest, ws: Workspace = Depends(get_workspace)
) -> Project:
    return await services.update_project(ws, project_id, payload)


@router.post("/projects/delete")
async def remove_projects(payload: ProjectDeleteRequest, ws: Workspace = Depends(get_workspace)) -> Dict[str, int]:
    return {"deleted": await services.delete_projects(ws, payload.ids)}


@router.get("/projects/{project_id}/summary", response_model=ProjectSummaryResponse)
def read_project_summary(project_id: str, ws: Workspace = Depends(get_workspace)) -> ProjectSummaryResponse:
    return services.project_summary(ws, project_id)


@router.get("/tasks", response_model=List[Task])
def list_tasks(project_id: Optional[str] = None, ws: Workspace = Depends(get_workspace)) -> List[Task]:
    tasks = ws.state.tasks
    if project_id is not None:
        tasks = [task for task in tasks if task.project_id == project_id]
    return tasks


@router.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreateRequest, ws: Workspace = Depends(get_workspace)) -> Task:
    return await services.add_task(ws, payload)


@router.put("/tasks/{task_id}", response_model=Task)
async def edit_task(task_id: str, payload: TaskUpdateRequest, ws: Workspace = Depends(get_workspace)) -> Task:
    return await services.update_task(ws, task_id, payload)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_task(task_id: str, ws: Workspace = Depends(get_workspace)) -> Response:
    await services.delete_task(ws, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/tasks/{task_id}/subtasks/{subtask_id}/toggle", response_model=Task)
async def flip_subtask(task_id: str, subtask_id: str, ws: Workspace = Depends(get_workspace)) -> Task:
    return await services.toggle_subtask(ws, task_id, subtask_id)


@router.post("/tasks/{task_id}/move", response_model=Task)
async def reorder_task(task_id: str, payload: TaskMoveRequest, ws: Workspace = Depends(get_workspace)) -> Task:
    return await services.move_task(ws, task_id, after_id=payload.after_id, before_id=payload.before_id)


@router.get("/history", response_model=List[HistoryEntry])
def read_history(ws: Workspace = Depends(get_workspace)) -> List[HistoryEntry]:
    return services.history(ws)


# ----------------------------------------------------------------------
# Inbox and reminders
# ----------------------------------------------------------------------


@router.get("/inbox", response_model=List[InboxTask])
def list_inbox(ws: Workspace = Depends(get_workspace)) -> List[InboxTask]:
    return ws.state.inbox


@router.post("/inbox", response_model=InboxTask, status_code=status.HTTP_201_CREATED)
async def create_inbox_task(payload: InboxCreateRequest, ws: Workspace = Depends(get_workspace)) -> InboxTask:
    return await services.add_inbox_task(ws, payload.title)


@router.post("/inbox/{item_id}/toggle", response_model=InboxTask)
async def flip_inbox_task(item_id: str, ws: Workspace = Depends(get_workspace)) -> InboxTask:
    return await services.toggle_inbox_task(ws, item_id)


@router.get("/reminders", response_model=List[Reminder])
def list_reminders(ws: Workspace = Depends(get_workspace)) -> List[Reminder]:
    return ws.state.reminders


@router.post("/reminders", response_model=Reminder, status_code=status.HTTP_201_CREATED)
def create_reminder(payload: ReminderCreateRequest, ws: Workspace = Depends(get_workspace)) -> Reminder:
    return services.add_reminder(ws, payload)


@router.post("/reminders/{reminder_id}/toggle", response_model=Reminder)
async def flip_reminder(reminder_id: str, ws: Workspace = Depends(get_workspace)) -> Reminder:
    return await services.toggle_reminder(ws, reminder_id)


# ----------------------------------------------------------------------
# Goals, settings and profile
# ----------------------------------------------------------------------


@router.get("/goals", response_model=List[GoalView])
def list_goals(ws: Workspace = Depends(get_workspace)) -> List[GoalView]:
    return services.goal_views(ws)


@router.put("/goals/{goal_id}", response_model=Goal)
async def edit_goal(goal_id: str, payload: GoalUpdateRequest, ws: Workspace = Depends(get_workspace)) -> Goal:
    return await services.update_goal(ws, goal_id, payload.target_seconds)


@router.put("/settings/daily-target")
async def edit_daily_target(payload: DailyTargetRequest, ws: Workspace = Depends(get_workspace)) -> Dict[str, int]:
    return {"daily_goal_target": await services.update_daily_target(ws, payload)}


@router.post("/settings/theme/toggle")
async def flip_theme(ws: Workspace = Depends(get_workspace)) -> Dict[str, bool]:
    return {"is_dark_mode": await services.toggle_dark_mode(ws)}


@router.get("/profile", response_model=Optional[UserProfile])
def read_profile(ws: Workspace = Depends(get_workspace)) -> Optional[UserProfile]:
    return ws.state.profile


@router.put("/profile", response_model=UserProfile)
async def edit_profile(payload: ProfileUpdateRequest, ws: Workspace = Depends(get_workspace)) -> UserProfile:
    return await services.update_profile(ws, payload)


@router.post("/auth/sign-out", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(ws: Workspace = Depends(get_workspace)) -> Response:
    await services.sign_out(ws)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


app = create_app()
