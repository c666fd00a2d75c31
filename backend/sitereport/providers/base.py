from __future__ import annotations

from typing import Optional, Protocol

from sitereport.schemas.artifacts import Milestone, Photo


class PhotoProvider(Protocol):
    async def list_by_project(self, project_id: str) -> list[Photo]: ...

    async def get_by_id(self, photo_id: str) -> Optional[Photo]: ...


class MilestoneProvider(Protocol):
    async def list_by_project(self, project_id: str) -> list[Milestone]: ...

    async def get_by_id(self, milestone_id: str) -> Optional[Milestone]: ...


class SessionProvider(Protocol):
    def current_user_id(self) -> Optional[str]: ...


class StaticSessionProvider:
    def __init__(self, user_id: Optional[str]) -> None:
        self._user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self._user_id
