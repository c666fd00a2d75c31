from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, NamedTuple

import pydantic
from annotated_types import MinLen

from sitereport.errors import InvalidVariantError, ValidationError
from sitereport.schemas.content import (
    BeforeAfterTransformation,
    ClientApproval,
    ContractorPerformance,
    DailyWeeklyProgress,
    DamageIssueDocumentation,
    FinalProjectCompletion,
    InitialSiteAssessment,
    ProjectProgress,
    ReportContent,
    ReportType,
)
from sitereport.schemas.report import ValidationIssue, ValidationResult, VariantDescription


class PhotoRef(NamedTuple):
    photo_id: str
    role: str


class MilestoneRef(NamedTuple):
    milestone_id: str
    status: str | None


@dataclass(frozen=True)
class VariantSchema:
    report_type: ReportType
    model: type[pydantic.BaseModel]
    photo_refs: Callable[[Any], Iterable[PhotoRef]]
    milestone_refs: Callable[[Any], Iterable[MilestoneRef]] = lambda content: ()

    @property
    def title(self) -> str:
        return self.report_type.value

    @property
    def required_fields(self) -> list[str]:
        return [name for name, info in self.model.model_fields.items() if info.is_required()]

    @property
    def optional_fields(self) -> list[str]:
        return [
            name
            for name, info in self.model.model_fields.items()
            if not info.is_required() and name != "report_type"
        ]

    @property
    def non_empty_lists(self) -> list[str]:
        return [
            name
            for name, info in self.model.model_fields.items()
            if any(isinstance(meta, MinLen) and meta.min_length > 0 for meta in info.metadata)
        ]

    def describe(self) -> VariantDescription:
        return VariantDescription(
            report_type=self.report_type,
            title=self.title,
            required_fields=self.required_fields,
            optional_fields=self.optional_fields,
            non_empty_lists=self.non_empty_lists,
            json_schema=self.model.model_json_schema(),
        )


def _refs(ids: Iterable[str], role: str) -> list[PhotoRef]:
    return [PhotoRef(photo_id, role) for photo_id in ids]


def _milestone_snapshot_refs(entries: Iterable[Any]) -> list[MilestoneRef]:
    return [MilestoneRef(entry.milestone_id, entry.status) for entry in entries]


_REGISTRY: dict[ReportType, VariantSchema] = {
    schema.report_type: schema
    for schema in (
        VariantSchema(
            ReportType.INITIAL_SITE_ASSESSMENT,
            InitialSiteAssessment,
            photo_refs=lambda c: _refs(c.site_photo_ids, "site")
            + [ref for issue in c.identified_issues for ref in _refs(issue.photo_ids, "issue")],
        ),
        VariantSchema(
            ReportType.PROJECT_PROGRESS,
            ProjectProgress,
            photo_refs=lambda c: [
                ref for entry in c.timeline for ref in _refs(entry.photo_ids, "progress")
            ],
            milestone_refs=lambda c: _milestone_snapshot_refs(c.milestone_statuses),
        ),
        VariantSchema(
            ReportType.BEFORE_AFTER_TRANSFORMATION,
            BeforeAfterTransformation,
            photo_refs=lambda c: [
                ref
                for comparison in c.comparisons
                for ref in (
                    PhotoRef(comparison.before_photo_id, "before"),
                    PhotoRef(comparison.after_photo_id, "after"),
                )
            ],
        ),
        VariantSchema(
            ReportType.DAMAGE_ISSUE_DOCUMENTATION,
            DamageIssueDocumentation,
            photo_refs=lambda c: [ref for issue in c.issues for ref in _refs(issue.photo_ids, "issue")],
        ),
        VariantSchema(
            ReportType.CLIENT_APPROVAL,
            ClientApproval,
            photo_refs=lambda c: _refs(c.photo_ids, "attachment"),
        ),
        VariantSchema(
            ReportType.DAILY_WEEKLY_PROGRESS,
            DailyWeeklyProgress,
            photo_refs=lambda c: _refs(c.photo_ids, "progress"),
        ),
        VariantSchema(
            ReportType.CONTRACTOR_PERFORMANCE,
            ContractorPerformance,
            photo_refs=lambda c: _refs(c.photo_ids, "evidence"),
        ),
        VariantSchema(
            ReportType.FINAL_PROJECT_COMPLETION,
            FinalProjectCompletion,
            photo_refs=lambda c: _refs(c.before_photo_ids, "before") + _refs(c.after_photo_ids, "after"),
            milestone_refs=lambda c: _milestone_snapshot_refs(c.milestone_summary),
        ),
    )
}


def get_variant(report_type: str | ReportType) -> VariantSchema:
    try:
        return _REGISTRY[ReportType(report_type)]
    except ValueError as exc:
        raise InvalidVariantError(f"Unknown report type: {report_type!r}") from exc


def describe_variants() -> list[VariantDescription]:
    return [schema.describe() for schema in _REGISTRY.values()]


_MESSAGES = {
    "missing": "This field is required.",
    "string_too_short": "This field is required.",
    "too_short": "At least one entry is required.",
}


def _issue_from_error(error: dict[str, Any], title: str) -> ValidationIssue:
    field = ".".join(str(part) for part in error["loc"]) or "content"
    if error["type"] == "extra_forbidden":
        message = f"Not a field of the {title} report."
    else:
        message = _MESSAGES.get(error["type"], error["msg"])
    return ValidationIssue(field=field, level="fail", message=message)


def validate_content(report_type: str | ReportType, draft_content: dict[str, Any]) -> ValidationResult:
    schema = get_variant(report_type)
    payload = dict(draft_content)
    declared = payload.get("report_type")
    if declared is not None and declared != schema.report_type.value:
        raise InvalidVariantError(
            f"Content declares {declared!r} but was submitted as {schema.report_type.value!r}"
        )
    payload["report_type"] = schema.report_type.value

    try:
        content = schema.model.model_validate(payload)
    except pydantic.ValidationError as exc:
        issues = [_issue_from_error(error, schema.title) for error in exc.errors()]
        return ValidationResult(status="fail", issues=issues)

    return ValidationResult(status="ok", content=content)


def ensure_valid(report_type: str | ReportType, draft_content: dict[str, Any]) -> ReportContent:
    result = validate_content(report_type, draft_content)
    if result.status == "fail" or result.content is None:
        raise ValidationError(result.issues)
    return result.content


def photo_links(content: ReportContent) -> list[PhotoRef]:
    """Distinct photo references in selection order; the first role wins."""
    seen: set[str] = set()
    links: list[PhotoRef] = []
    for ref in get_variant(content.report_type).photo_refs(content):
        if ref.photo_id in seen:
            continue
        seen.add(ref.photo_id)
        links.append(ref)
    return links


def milestone_links(content: ReportContent) -> list[MilestoneRef]:
    seen: set[str] = set()
    links: list[MilestoneRef] = []
    for ref in get_variant(content.report_type).milestone_refs(content):
        if ref.milestone_id in seen:
            continue
        seen.add(ref.milestone_id)
        links.append(ref)
    return links
