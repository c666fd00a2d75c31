from __future__ import annotations

import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

MilestoneStatus = Literal["pending", "in_progress", "completed"]


class Photo(BaseModel):
    id: str
    url: str
    title: Optional[str] = None
    date: Optional[datetime.datetime] = None
    tags: list[str] = Field(default_factory=list)


class Milestone(BaseModel):
    id: str
    title: str
    status: MilestoneStatus = "pending"
    due_date: Optional[datetime.date] = None


class ProjectSnapshot(BaseModel):
    """Point-in-time copy of the project taken when a report is created."""

    id: str
    name: str
    client_name: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None
    captured_at: Optional[datetime.datetime] = None
