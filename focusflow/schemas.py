from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


TaskStatus = Literal["active", "completed", "pending", "review"]
GoalPeriod = Literal["weekly", "monthly"]
ReminderType = Literal["short-term", "long-term"]


class Document(BaseModel):
    """Base for everything persisted in the document store (camelCase fields)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SubTask(Document):
    id: str
    title: str
    completed: bool = False
    deadline: Optional[str] = None


class Task(Document):
    id: str
    project_id: str
    title: str
    subtitle: Optional[str] = None
    status: TaskStatus = "active"
    total_time: int = 0
    subtasks: List[SubTask] = Field(default_factory=list)
    notes: Optional[str] = None
    due_date: Optional[str] = None
    is_priority: bool = False
    order: Optional[float] = None
    completed_at: Optional[str] = None


class ProjectStats(Document):
    today: int = 0
    week: int = 0
    month: int = 0

    @field_validator("today", "week", "month", mode="before")
    @classmethod
    def _missing_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class Project(Document):
    id: str
    name: str
    description: Optional[str] = None
    icon: str = "rocket"
    theme_color: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    deadline: Optional[str] = None
    total_time: int = 0
    stats: ProjectStats = Field(default_factory=ProjectStats)

    @field_validator("stats", mode="before")
    @classmethod
    def _missing_stats(cls, value: Any) -> Any:
        return {} if value is None else value


class Goal(Document):
    id: str
    period: GoalPeriod
    target_seconds: int
    current_seconds: int = 0


class InboxTask(Document):
    id: str
    title: str
    completed: bool = False
    order: Optional[float] = None


class Reminder(Document):
    id: str
    title: str
    type: ReminderType = "short-term"
    due_time: str = ""
    completed: bool = False


class ResetMeta(Document):
    """Per-account checkpoint of the last applied daily/weekly/monthly reset."""

    last_daily_reset: Optional[str] = None
    last_weekly_reset: Optional[int] = None
    last_monthly_reset: Optional[int] = None
    last_year: Optional[int] = None
    initialized: bool = False


class UserPreferences(Document):
    daily_goal_target: int = 28800
    is_dark_mode: bool = False
    goal_targets: Dict[str, int] = Field(default_factory=dict)


class UserProfile(Document):
    name: str
    email: str = ""
    avatar: str = ""


# Starter content for a fresh account
INITIAL_PROJECTS: List[Project] = [
    Project(
        id="p-1",
        name="My First Project",
        description="Start adding tasks to track time...",
        icon="rocket",
        theme_color="bg-blue-500",
    )
]

INITIAL_GOALS: List[Goal] = [
    Goal(id="g-1", period="weekly", target_seconds=144000),
    Goal(id="g-2", period="monthly", target_seconds=576000),
]


# ----------------------------------------------------------------------
# Local UI surface
# ----------------------------------------------------------------------


class TimerView(BaseModel):
    is_active: bool
    start_time: Optional[dt.datetime]
    elapsed_before_start: int
    active_task_id: Optional[str]
    active_project_id: Optional[str]
    elapsed_seconds: int


class TimerToggleRequest(BaseModel):
    target_id: Optional[str] = None


class TimerToggleResponse(BaseModel):
    action: str
    timer: TimerView
    seconds_elapsed: Optional[int] = None


class GoalView(Goal):
    """Goal as shown on the dashboard, with progress against its target."""

    percent: float
    remaining_seconds: int
    formatted_current: str
    formatted_target: str


class DailyProgressView(BaseModel):
    current_seconds: int
    target_seconds: int
    percent: float
    remaining_seconds: int


class DerivedStatsResponse(BaseModel):
    today: int
    week: int
    month: int


class StateResponse(BaseModel):
    projects: List[Project]
    tasks: List[Task]
    inbox: List[InboxTask]
    goals: List[GoalView]
    reminders: List[Reminder]
    preferences: UserPreferences
    profile: Optional[UserProfile]
    selected_project_id: Optional[str]
    timer: TimerView
    stats: DerivedStatsResponse
    daily: DailyProgressView


class ProjectCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    icon: str = "rocket"
    theme_color: Optional[str] = None
    deadline: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None
    theme_color: Optional[str] = None
    deadline: Optional[str] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)


class ProjectDeleteRequest(BaseModel):
    ids: List[str]


class ProjectSummaryResponse(BaseModel):
    project_id: str
    open_count: int
    completed_count: int
    task_seconds: int


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    project_id: str

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    subtitle: Optional[str] = None
    status: Optional[TaskStatus] = None
    subtasks: Optional[List[SubTask]] = None
    notes: Optional[str] = None
    due_date: Optional[str] = None
    is_priority: Optional[bool] = None


class TaskMoveRequest(BaseModel):
    before_id: Optional[str] = None
    after_id: Optional[str] = None


class InboxCreateRequest(BaseModel):
    title: str = Field(min_length=1)


class GoalUpdateRequest(BaseModel):
    target_seconds: int = Field(ge=0)


class DailyTargetRequest(BaseModel):
    target_seconds: int = Field(ge=0)


class ReminderCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    type: ReminderType = "short-term"
    due_time: str = ""


class ProfileUpdateRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = ""
    avatar: str = ""


class ViewRequest(BaseModel):
    project_id: Optional[str] = None


class ResetCheckResponse(BaseModel):
    daily: bool
    weekly: bool
    monthly: bool
    committed: bool


class HistoryEntry(BaseModel):
    task_id: str
    title: str
    project_id: str
    project_name: Optional[str]
    total_time: int
    formatted: str
