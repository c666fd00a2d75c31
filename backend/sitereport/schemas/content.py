from __future__ import annotations

import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    computed_field,
    model_validator,
)

from sitereport.aggregation import clamp_percentage, coerce_amount
from sitereport.schemas.artifacts import MilestoneStatus


class ReportType(str, Enum):
    INITIAL_SITE_ASSESSMENT = "Initial Site Assessment"
    PROJECT_PROGRESS = "Project Progress"
    BEFORE_AFTER_TRANSFORMATION = "Before/After Transformation"
    DAMAGE_ISSUE_DOCUMENTATION = "Damage/Issue Documentation"
    CLIENT_APPROVAL = "Client Approval"
    DAILY_WEEKLY_PROGRESS = "Daily/Weekly Progress"
    CONTRACTOR_PERFORMANCE = "Contractor Performance"
    FINAL_PROJECT_COMPLETION = "Final Project Completion"


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def _missing_(cls, value: object) -> Severity | None:
        if isinstance(value, str):
            folded = value.strip().casefold()
            for member in cls:
                if member.value.casefold() == folded:
                    return member
        return None


DEFAULT_SEVERITY = Severity.LOW


def _default_severity(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_SEVERITY
    return value


RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Percentage = Annotated[float, BeforeValidator(clamp_percentage)]
Amount = Annotated[float, BeforeValidator(coerce_amount)]
IssueSeverity = Annotated[Severity, BeforeValidator(_default_severity)]


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _Variant(_Strict):
    pass


# Shared building blocks


class SiteIssue(_Strict):
    description: RequiredText
    severity: IssueSeverity = DEFAULT_SEVERITY
    photo_ids: list[str] = Field(default_factory=list)


class TimelineEntry(_Strict):
    date: datetime.date
    description: str = ""
    photo_ids: list[str] = Field(default_factory=list)


class MilestoneStatusEntry(_Strict):
    milestone_id: str
    title: str
    status: MilestoneStatus
    due_date: Optional[datetime.date] = None


class Comparison(_Strict):
    area: RequiredText = "Unspecified Area"
    before_photo_id: str
    after_photo_id: str
    description: str = ""
    materials: list[str] = Field(default_factory=list)


class DamageIssue(_Strict):
    description: RequiredText
    measurements: Optional[str] = None
    cause_assessment: Optional[str] = None
    recommended_repairs: RequiredText
    photo_ids: list[str] = Field(default_factory=list)


class Signature(_Strict):
    name: RequiredText
    date: datetime.date


class ReportingPeriod(_Strict):
    start: datetime.date
    end: datetime.date

    @model_validator(mode="after")
    def _ordered(self) -> ReportingPeriod:
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class CostItem(_Strict):
    label: str = ""
    amount: Amount = 0.0


class CostBreakdown(_Strict):
    """Ordered cost items. ``total`` is always derived from the current items."""

    items: list[CostItem] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _drop_stored_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and "total" in data:
            data = {key: value for key, value in data.items() if key != "total"}
        return data

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        return sum(item.amount for item in self.items)

    def add(self, label: str, amount: Any) -> CostItem:
        item = CostItem(label=label, amount=amount)
        self.items.append(item)
        return item

    def remove(self, index: int) -> CostItem:
        return self.items.pop(index)

    def edit(self, index: int, label: Optional[str] = None, amount: Any = None) -> CostItem:
        current = self.items[index]
        updated = CostItem(
            label=current.label if label is None else label,
            amount=current.amount if amount is None else amount,
        )
        self.items[index] = updated
        return updated


# Variants


class InitialSiteAssessment(_Variant):
    report_type: Literal["Initial Site Assessment"] = "Initial Site Assessment"
    site_conditions: RequiredText
    key_measurements: dict[str, str] = Field(default_factory=dict)
    site_photo_ids: list[str] = Field(default_factory=list)
    identified_issues: list[SiteIssue] = Field(default_factory=list)


class ProjectProgress(_Variant):
    report_type: Literal["Project Progress"] = "Project Progress"
    recent_accomplishments: RequiredText
    completion_percentage: Percentage
    timeline_notes: Optional[str] = None
    timeline: list[TimelineEntry] = Field(default_factory=list)
    milestone_statuses: list[MilestoneStatusEntry] = Field(default_factory=list)


class BeforeAfterTransformation(_Variant):
    report_type: Literal["Before/After Transformation"] = "Before/After Transformation"
    comparisons: list[Comparison] = Field(min_length=1)
    value_added_statement: Optional[str] = None


class DamageIssueDocumentation(_Variant):
    report_type: Literal["Damage/Issue Documentation"] = "Damage/Issue Documentation"
    issues: list[DamageIssue] = Field(min_length=1)


class ClientApproval(_Variant):
    report_type: Literal["Client Approval"] = "Client Approval"
    work_summary: RequiredText
    photo_ids: list[str] = Field(default_factory=list)
    cost_breakdown: RequiredText
    timeline_impact: Optional[str] = None
    additional_notes: Optional[str] = None
    signature: Optional[Signature] = None


class DailyWeeklyProgress(_Variant):
    report_type: Literal["Daily/Weekly Progress"] = "Daily/Weekly Progress"
    period: ReportingPeriod
    work_completed: RequiredText
    photo_ids: list[str] = Field(default_factory=list)
    hours_worked: Optional[float] = Field(default=None, ge=0)
    resources_used: Optional[str] = None
    issues_encountered: RequiredText
    solutions: Optional[str] = None
    next_period_plan: RequiredText


class ContractorPerformance(_Variant):
    report_type: Literal["Contractor Performance"] = "Contractor Performance"
    contractor_id: RequiredText
    timeline_adherence: RequiredText
    quality_assessment: RequiredText
    communication: RequiredText
    issue_resolution: RequiredText
    photo_ids: list[str] = Field(default_factory=list)
    rating: int = Field(ge=1, le=5)
    comments: Optional[str] = None


class FinalProjectCompletion(_Variant):
    report_type: Literal["Final Project Completion"] = "Final Project Completion"
    before_photo_ids: list[str] = Field(default_factory=list)
    after_photo_ids: list[str] = Field(default_factory=list)
    milestone_summary: list[MilestoneStatusEntry] = Field(default_factory=list)
    costs: CostBreakdown = Field(default_factory=CostBreakdown)
    warranty_information: RequiredText
    maintenance_information: Optional[str] = None
    client_sign_off: Optional[Signature] = None


ReportContent = Annotated[
    Union[
        InitialSiteAssessment,
        ProjectProgress,
        BeforeAfterTransformation,
        DamageIssueDocumentation,
        ClientApproval,
        DailyWeeklyProgress,
        ContractorPerformance,
        FinalProjectCompletion,
    ],
    Field(discriminator="report_type"),
]
