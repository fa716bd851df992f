from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StorePaths:
    """Collection and document paths for one account.

    ``per_user`` namespaces everything under ``users/{uid}/``; ``flat`` uses
    top-level collections for single-account deployments.
    """

    prefix: str = ""

    @classmethod
    def for_user(cls, uid: str, mode: str = "per_user") -> "StorePaths":
        if mode == "flat":
            return cls("")
        return cls(f"users/{uid}/")

    @property
    def tasks(self) -> str:
        return f"{self.prefix}tasks"

    @property
    def projects(self) -> str:
        return f"{self.prefix}projects"

    @property
    def inbox(self) -> str:
        return f"{self.prefix}inbox"

    @property
    def preferences(self) -> str:
        return f"{self.prefix}settings/user_preferences"

    @property
    def meta(self) -> str:
        return f"{self.prefix}settings/meta"

    @property
    def profile(self) -> str:
        return f"{self.prefix}settings/profile"

    def task(self, task_id: str) -> str:
        return f"{self.tasks}/{task_id}"

    def project(self, project_id: str) -> str:
        return f"{self.projects}/{project_id}"

    def inbox_item(self, item_id: str) -> str:
        return f"{self.inbox}/{item_id}"
