from __future__ import annotations

import datetime as dt
import os
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional

os.environ.setdefault("FF_STORAGE", "memory")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from focusflow.config import Settings, settings
from focusflow.errors import StoreError
from focusflow.main import create_app
from focusflow.runtime import Identity, Workspace
from focusflow.store import Doc, MemoryDocumentStore, WriteOp

PREFIX = "users/u1/"


class FakeClock:
    def __init__(self, start: dt.datetime):
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(seconds=seconds, **kwargs)
        return self.now

    def set(self, value: dt.datetime) -> None:
        self.now = value


class RecordingStore(MemoryDocumentStore):
    """Memory store that remembers every commit and can fail writes to chosen paths."""

    def __init__(self, initial: Optional[Dict[str, Doc]] = None):
        super().__init__(initial)
        self.commits: List[List[WriteOp]] = []
        self.fail_prefixes: List[str] = []

    async def commit(self, operations: List[WriteOp]) -> None:
        self.commits.append(list(operations))
        for op in operations:
            if any(op.path.startswith(prefix) for prefix in self.fail_prefixes):
                raise StoreError(f"write to {op.path} rejected")
        await super().commit(operations)

    def operations(self, predicate: Callable[[WriteOp], bool] = lambda op: True) -> List[WriteOp]:
        return [op for ops in self.commits for op in ops if predicate(op)]


def project_doc(project_id: str, today: int = 0, week: int = 0, month: int = 0, total: int = 0, **extra: Any) -> Doc:
    doc: Doc = {
        "id": project_id,
        "name": extra.pop("name", f"Project {project_id}"),
        "icon": "rocket",
        "progress": 0,
        "totalTime": total,
        "stats": {"today": today, "week": week, "month": month},
    }
    doc.update(extra)
    return doc


def task_doc(task_id: str, project_id: str, total: int = 0, **extra: Any) -> Doc:
    doc: Doc = {
        "id": task_id,
        "projectId": project_id,
        "title": extra.pop("title", f"Task {task_id}"),
        "status": "active",
        "totalTime": total,
    }
    doc.update(extra)
    return doc


def meta_doc(day: str, week: int, month: int, year: int, initialized: bool = True) -> Doc:
    return {
        "lastDailyReset": day,
        "lastWeeklyReset": week,
        "lastMonthlyReset": month,
        "lastYear": year,
        "initialized": initialized,
    }


DEFAULT_PROFILE: Doc = {"name": "Ada Lovelace", "email": "ada@example.com", "avatar": ""}


def build_docs(
    projects: Iterable[Doc] = (),
    tasks: Iterable[Doc] = (),
    meta: Optional[Doc] = None,
    profile: Optional[Doc] = DEFAULT_PROFILE,
) -> Dict[str, Doc]:
    docs: Dict[str, Doc] = {}
    if profile is not None:
        docs[f"{PREFIX}settings/profile"] = dict(profile)
    for project in projects:
        docs[f"{PREFIX}projects/{project['id']}"] = project
    for task in tasks:
        docs[f"{PREFIX}tasks/{task['id']}"] = task
    if meta is not None:
        docs[f"{PREFIX}settings/meta"] = meta
    return docs


# Markers matching the default clock below (Tue Jan 02 2024, ISO week 1, January)
CURRENT_META = meta_doc("Tue Jan 02 2024", 1, 0, 2024)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2024, 1, 2, 9, 0, tzinfo=dt.timezone.utc))


@pytest.fixture()
def config() -> Settings:
    return settings.model_copy(
        update={
            "storage_backend": "memory",
            "namespace_mode": "per_user",
            "timezone": "UTC",
            "tick_interval_seconds": 0,
            "reset_check_interval_seconds": 0,
            "inbox_clear_delay_seconds": 0,
            "reminder_clear_delay_seconds": 0,
            "default_daily_goal_seconds": 28800,
        }
    )


@pytest.fixture()
def identity() -> Identity:
    return Identity(uid="u1", display_name="Ada Lovelace", email="ada@example.com")


@pytest.fixture()
def make_workspace(clock: FakeClock, config: Settings, identity: Identity) -> Callable[..., Workspace]:
    def factory(store: Optional[MemoryDocumentStore] = None) -> Workspace:
        return Workspace(store if store is not None else RecordingStore(), identity, config, clock)

    return factory


@pytest.fixture()
def api(clock: FakeClock, config: Settings, identity: Identity) -> Generator[tuple[TestClient, FastAPI, RecordingStore], None, None]:
    store = RecordingStore()
    app = create_app(store=store, clock=clock, identity=identity, config=config)
    with TestClient(app) as client:
        yield client, app, store
