from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Coroutine, List, Optional, Set
from urllib.parse import quote

from .config import Settings, settings
from .logger import get_logger
from .paths import StorePaths
from .periods import now_utc
from .resets import ResetCoordinator
from .schemas import InboxTask, Project, Task, UserPreferences, UserProfile
from .state import AppState
from .store import Doc, DocumentStore, Subscription
from .timer import Clock, TimerEngine

log = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """Signed-in account as reported by the identity provider."""

    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "Identity":
        return cls(
            uid=config.user_id,
            display_name=config.user_name,
            email=config.user_email,
            photo_url=config.user_avatar,
        )

    def default_profile(self) -> UserProfile:
        name = self.display_name or "New User"
        avatar = self.photo_url or (
            f"https://ui-avatars.com/api/?name={quote(self.display_name or 'User')}&background=random"
        )
        return UserProfile(name=name, email=self.email or "", avatar=avatar)


class Workspace:
    """Live view of one account: subscriptions feed ``state``, timer and resets act on it."""

    def __init__(
        self,
        store: DocumentStore,
        identity: Identity,
        config: Settings = settings,
        clock: Clock = now_utc,
    ) -> None:
        self.store = store
        self.identity = identity
        self.config = config
        self.clock = clock
        self.paths = StorePaths.for_user(identity.uid, config.namespace_mode)
        self.state = AppState(daily_goal_target=config.default_daily_goal_seconds)
        self.timer = TimerEngine(store, self.state, self.paths, clock)
        self.resets = ResetCoordinator(store, self.paths, config.tzinfo, clock)
        self._subscriptions: List[Subscription] = []
        self._loops: List["asyncio.Task[None]"] = []
        self._background: Set["asyncio.Task[Any]"] = set()
        self.started = False

    async def start(self, run_loops: bool = True) -> None:
        if self.started:
            return
        self.started = True
        self._subscriptions.append(await self.store.subscribe_document(self.paths.preferences, self._on_preferences))
        self._subscriptions.append(await self.store.subscribe_document(self.paths.profile, self._on_profile))
        self._subscriptions.append(await self.store.subscribe(self.paths.tasks, self._on_tasks))
        self._subscriptions.append(await self.store.subscribe(self.paths.inbox, self._on_inbox))
        self._subscriptions.append(await self.store.subscribe(self.paths.projects, self._on_projects))
        if run_loops:
            loop = asyncio.get_running_loop()
            if self.config.tick_interval_seconds > 0:
                self._loops.append(loop.create_task(self.timer.run_ticker(self.config.tick_interval_seconds)))
            if self.config.reset_check_interval_seconds > 0:
                self._loops.append(
                    loop.create_task(
                        self.resets.run_periodic(
                            self.config.reset_check_interval_seconds, lambda: self.state.projects
                        )
                    )
                )
        log.info("Workspace started for %s", self.identity.uid)

    async def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        for task in self._loops:
            task.cancel()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        await self.drain()
        self.started = False

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding timer commits and delayed cleanups."""
        await self.timer.drain()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Snapshot handlers
    # ------------------------------------------------------------------
    async def _on_projects(self, docs: List[Doc]) -> None:
        projects = [Project.model_validate(doc) for doc in docs]
        had_cache = self.state.has_projects()
        self.state.replace_projects(projects)
        await self.resets.on_projects_snapshot(projects, had_cache)

    def _on_tasks(self, docs: List[Doc]) -> None:
        self.state.replace_tasks(Task.model_validate(doc) for doc in docs)

    def _on_inbox(self, docs: List[Doc]) -> None:
        self.state.replace_inbox(InboxTask.model_validate(doc) for doc in docs)

    def _on_preferences(self, doc: Optional[Doc]) -> None:
        if doc is not None:
            self.state.apply_preferences(UserPreferences.model_validate(doc))

    async def _on_profile(self, doc: Optional[Doc]) -> None:
        if doc is not None:
            self.state.set_profile(UserProfile.model_validate(doc))
            return
        await self.store.set(self.paths.profile, self.identity.default_profile().to_document())
