from __future__ import annotations

import asyncio
import json
import logging
import socket
from typing import Any, Callable, Optional, TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from sitereport.cache import artifact_list_key, get_artifact_rows, set_artifact_rows
from sitereport.config.settings import ProviderSettings, settings
from sitereport.errors import ArtifactProviderError
from sitereport.schemas.artifacts import Milestone, Photo

T = TypeVar("T")


class RestArtifactClient:
    """Reads artifact tables from a PostgREST-style endpoint (``/photos?project_id=eq.X``)."""

    def __init__(
        self,
        provider_settings: ProviderSettings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = provider_settings or settings.providers
        self.logger = logger or logging.getLogger(__name__)

    def _build_url(self, table: str, params: dict[str, str]) -> str:
        base_url = self.settings.base_url.rstrip("/")
        return f"{base_url}/{table}?{urlencode(params)}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.api_key:
            headers["apikey"] = self.settings.api_key
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _fetch_rows(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        request = Request(self._build_url(table, params), headers=self._headers())
        try:
            with urlopen(request, timeout=self.settings.timeout_seconds) as response:
                body = response.read().decode("utf-8")
            payload = json.loads(body)
        except HTTPError as exc:
            raise ArtifactProviderError(table, f"HTTP {exc.code}") from exc
        except (URLError, json.JSONDecodeError, TimeoutError, socket.timeout) as exc:
            raise ArtifactProviderError(table, str(exc)) from exc

        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise ArtifactProviderError(table, "unexpected response shape")
        return [row for row in payload if isinstance(row, dict)]

    async def fetch_rows(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._fetch_rows, table, params)

    async def list_for_project(self, table: str, project_id: str) -> list[dict[str, Any]]:
        cache_key = artifact_list_key(table, project_id)
        cached = get_artifact_rows(cache_key)
        if cached is not None:
            return cached
        rows = await self.fetch_rows(table, {"project_id": f"eq.{project_id}", "select": "*"})
        set_artifact_rows(cache_key, rows, self.settings.list_cache_ttl_seconds)
        return rows

    async def get_one(self, table: str, row_id: str) -> Optional[dict[str, Any]]:
        rows = await self.fetch_rows(table, {"id": f"eq.{row_id}", "select": "*"})
        return rows[0] if rows else None


def photo_from_row(row: dict[str, Any]) -> Photo:
    return Photo(
        id=str(row["id"]),
        url=row.get("url") or row.get("image_url") or "",
        title=row.get("title") or row.get("description"),
        date=row.get("date_taken") or row.get("date") or row.get("created_at"),
        tags=row.get("tags") or [],
    )


def milestone_from_row(row: dict[str, Any]) -> Milestone:
    due_date = row.get("due_date")
    return Milestone(
        id=str(row["id"]),
        title=row.get("title") or "",
        status=row.get("status") or "pending",
        # timestamptz columns come back as full ISO timestamps
        due_date=str(due_date)[:10] if due_date else None,
    )


def _map_rows(table: str, rows: list[dict[str, Any]], mapper: Callable[[dict[str, Any]], T]) -> list[T]:
    try:
        return [mapper(row) for row in rows]
    except (KeyError, ValueError) as exc:
        raise ArtifactProviderError(table, f"malformed row: {exc}") from exc


class RestPhotoProvider:
    table = "photos"

    def __init__(self, client: RestArtifactClient) -> None:
        self.client = client

    async def list_by_project(self, project_id: str) -> list[Photo]:
        rows = await self.client.list_for_project(self.table, project_id)
        return _map_rows(self.table, rows, photo_from_row)

    async def get_by_id(self, photo_id: str) -> Optional[Photo]:
        row = await self.client.get_one(self.table, photo_id)
        return _map_rows(self.table, [row], photo_from_row)[0] if row else None


class RestMilestoneProvider:
    table = "milestones"

    def __init__(self, client: RestArtifactClient) -> None:
        self.client = client

    async def list_by_project(self, project_id: str) -> list[Milestone]:
        rows = await self.client.list_for_project(self.table, project_id)
        return _map_rows(self.table, rows, milestone_from_row)

    async def get_by_id(self, milestone_id: str) -> Optional[Milestone]:
        row = await self.client.get_one(self.table, milestone_id)
        return _map_rows(self.table, [row], milestone_from_row)[0] if row else None
