from __future__ import annotations

import json
from typing import Any

from redis import Redis

from sitereport.config.settings import settings


def _get_client() -> Redis:
    return Redis.from_url(settings.redis_url)


def artifact_list_key(table: str, project_id: str) -> str:
    return f"sitereport:{table}:project:{project_id}"


def get_artifact_rows(cache_key: str) -> list[dict[str, Any]] | None:
    try:
        client = _get_client()
        raw = client.get(cache_key)
    except Exception:
        return None

    if not raw:
        return None

    try:
        rows = json.loads(raw)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    if not isinstance(rows, list):
        return None
    return rows


def set_artifact_rows(cache_key: str, rows: list[dict[str, Any]], ttl_seconds: int) -> None:
    try:
        client = _get_client()
        client.setex(cache_key, ttl_seconds, json.dumps(rows, default=str))
    except Exception:
        return None
