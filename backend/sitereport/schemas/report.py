from __future__ import annotations

import datetime
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from sitereport.schemas.artifacts import ProjectSnapshot
from sitereport.schemas.content import ReportContent, ReportType


class Report(BaseModel):
    id: Optional[uuid.UUID] = None
    project_id: uuid.UUID
    report_type: ReportType
    title: Optional[str] = None
    generated_at: Optional[datetime.datetime] = None
    generated_by: Optional[str] = None
    project_snapshot: Optional[ProjectSnapshot] = None
    updated_at: Optional[datetime.datetime] = None
    is_archived: bool = False
    content: ReportContent

    @model_validator(mode="after")
    def _content_matches_type(self) -> Report:
        if self.content.report_type != self.report_type.value:
            raise ValueError(
                f"content is a {self.content.report_type!r} body but report_type is {self.report_type.value!r}"
            )
        return self

    @property
    def display_title(self) -> str:
        return self.title or self.report_type.value


class ReportDraft(BaseModel):
    """User input for a new report: free-text fields plus the ordered artifact selection."""

    project_id: str
    report_type: str
    generated_by: Optional[str] = None
    title: Optional[str] = None
    fields: dict[str, Any] = Field(default_factory=dict)
    photo_ids: list[str] = Field(default_factory=list)
    milestone_ids: list[str] = Field(default_factory=list)
    project_snapshot: Optional[ProjectSnapshot] = None


class ValidationIssue(BaseModel):
    field: str
    level: Literal["fail", "warn"]
    message: str


class ValidationResult(BaseModel):
    status: Literal["ok", "warn", "fail"]
    issues: list[ValidationIssue] = Field(default_factory=list)
    content: Optional[ReportContent] = None


class BuildResult(BaseModel):
    report: Report
    warnings: list[ValidationIssue] = Field(default_factory=list)


class VariantDescription(BaseModel):
    report_type: ReportType
    title: str
    required_fields: list[str]
    optional_fields: list[str]
    non_empty_lists: list[str]
    json_schema: dict[str, Any]


class ReportCreateRequest(BaseModel):
    report_type: str
    title: Optional[str] = None
    generated_by: Optional[str] = None
    fields: dict[str, Any] = Field(default_factory=dict)
    photo_ids: list[str] = Field(default_factory=list)
    milestone_ids: list[str] = Field(default_factory=list)
    project_snapshot: Optional[ProjectSnapshot] = None


class ReportCreateResponse(BaseModel):
    report: Report
    warnings: list[ValidationIssue] = Field(default_factory=list)
