from __future__ import annotations

import datetime
import logging
import uuid
from typing import Any, Callable, Iterable, Optional

import pydantic

from sitereport.aggregation import clamp_percentage, pair_consecutive
from sitereport.errors import ValidationError
from sitereport.providers.base import MilestoneProvider, PhotoProvider, SessionProvider
from sitereport.schemas.artifacts import Milestone, Photo
from sitereport.schemas.content import CostBreakdown, ReportContent, ReportType
from sitereport.schemas.report import BuildResult, Report, ReportDraft, ValidationIssue
from sitereport.validation.registry import (
    get_variant,
    milestone_links,
    photo_links,
    validate_content,
)

UNSPECIFIED_AREA = "Unspecified Area"

# Required fields the builder derives from the artifact selection rather than from free text.
_DERIVED_FIELDS: dict[ReportType, set[str]] = {
    ReportType.BEFORE_AFTER_TRANSFORMATION: {"comparisons"},
}


def _fail(field: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, level="fail", message=message)


def _warn(field: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, level="warn", message=message)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def split_materials(value: Any) -> list[str]:
    if _is_blank(value):
        return []
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        parts = [value]
    return [str(part).strip() for part in parts if str(part).strip()]


def parse_measurements(value: Any) -> dict[str, str]:
    """Accept a mapping or free text such as ``"Width: 20ft, Height: 10ft"``."""
    if isinstance(value, dict):
        return {str(key).strip(): str(val).strip() for key, val in value.items() if str(key).strip()}
    if _is_blank(value):
        return {}
    measurements: dict[str, str] = {}
    segments = [seg.strip() for seg in str(value).replace("\n", ",").split(",") if seg.strip()]
    for index, segment in enumerate(segments, start=1):
        key, sep, val = segment.partition(":")
        if sep and key.strip():
            measurements[key.strip()] = val.strip()
        else:
            measurements[f"Measurement {index}"] = segment
    return measurements


def build_cost_breakdown(value: Any) -> CostBreakdown:
    """Accept a label to amount mapping, ``{"items": [...]}`` or a list of items.

    Items may be ``{"label", "amount"}`` mappings or ``(label, amount)`` pairs.
    Anything else raises ``ValueError``.
    """
    breakdown = CostBreakdown()
    if isinstance(value, CostBreakdown):
        return value.model_copy(deep=True)
    if isinstance(value, dict) and "items" in value:
        value = value["items"]
    if isinstance(value, dict):
        for label, amount in value.items():
            breakdown.add(str(label), amount)
        return breakdown
    if value is None:
        return breakdown
    if not isinstance(value, (list, tuple)):
        raise ValueError("Cost items must be a list of label and amount entries.")
    for index, item in enumerate(value, start=1):
        if isinstance(item, dict):
            label = item.get("label", item.get("key", ""))
            amount = item.get("amount", item.get("value"))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            label, amount = item
        else:
            raise ValueError(f"Cost item {index} must have a label and an amount.")
        breakdown.add(str(label or ""), amount)
    return breakdown


def _dedupe(ids: Iterable[str]) -> tuple[list[str], list[str]]:
    seen: set[str] = set()
    unique: list[str] = []
    duplicates: list[str] = []
    for item in ids:
        if item in seen:
            duplicates.append(item)
            continue
        seen.add(item)
        unique.append(item)
    return unique, duplicates


def _mentions_photos(value: Any) -> bool:
    if isinstance(value, dict):
        return any(
            (key.endswith("photo_ids") and bool(val)) or key.endswith("photo_id") or _mentions_photos(val)
            for key, val in value.items()
        )
    if isinstance(value, list):
        return any(_mentions_photos(item) for item in value)
    return False


def _milestone_snapshot(milestone: Milestone) -> dict[str, Any]:
    return {
        "milestone_id": milestone.id,
        "title": milestone.title,
        "status": milestone.status,
        "due_date": milestone.due_date,
    }


class _Selection:
    """Artifacts chosen by the user, already resolved against the project."""

    def __init__(
        self,
        photo_ids: list[str],
        photos: dict[str, Photo],
        milestone_ids: list[str],
        milestones: dict[str, Milestone],
    ) -> None:
        self.photo_ids = photo_ids
        self.photos = photos
        self.milestone_ids = milestone_ids
        self.milestones = milestones

    def milestone_snapshots(self) -> list[dict[str, Any]]:
        return [
            _milestone_snapshot(self.milestones[milestone_id])
            for milestone_id in self.milestone_ids
            if milestone_id in self.milestones
        ]


Normalizer = Callable[[dict[str, Any], list[ValidationIssue]], dict[str, Any]]
Assembler = Callable[[dict[str, Any], _Selection, list[ValidationIssue]], dict[str, Any]]


def _normalize_site_assessment(data: dict[str, Any], issues: list[ValidationIssue]) -> dict[str, Any]:
    if "key_measurements" in data:
        data["key_measurements"] = parse_measurements(data["key_measurements"])
    identified = data.get("identified_issues")
    if isinstance(identified, str):
        data["identified_issues"] = [{"description": identified}] if identified.strip() else []
    return data


def _normalize_progress(data: dict[str, Any], issues: list[ValidationIssue]) -> dict[str, Any]:
    if "completion_percentage" in data:
        data["completion_percentage"] = clamp_percentage(data["completion_percentage"])
    return data


def _normalize_final(data: dict[str, Any], issues: list[ValidationIssue]) -> dict[str, Any]:
    key = "cost_items" if data.get("cost_items") is not None else "costs"
    cost_input = data.pop("cost_items", None)
    if cost_input is None:
        cost_input = data.pop("costs", None)
    try:
        data["costs"] = build_cost_breakdown(cost_input)
    except ValueError as exc:
        issues.append(_fail(key, str(exc)))
        data["costs"] = CostBreakdown()
    return data


_NORMALIZERS: dict[ReportType, Normalizer] = {
    ReportType.INITIAL_SITE_ASSESSMENT: _normalize_site_assessment,
    ReportType.PROJECT_PROGRESS: _normalize_progress,
    ReportType.FINAL_PROJECT_COMPLETION: _normalize_final,
}


def normalize_fields(
    report_type: ReportType, fields: dict[str, Any], issues: list[ValidationIssue]
) -> dict[str, Any]:
    """Coerce free-form field input (measurement text, cost items) into the stored shape."""
    data = dict(fields)
    normalizer = _NORMALIZERS.get(report_type)
    return normalizer(data, issues) if normalizer else data


def _assemble_site_assessment(data: dict[str, Any], selection: _Selection, warnings: list[ValidationIssue]) -> dict[str, Any]:
    data.setdefault("site_photo_ids", selection.photo_ids)
    return data


def _assemble_progress(data: dict[str, Any], selection: _Selection, warnings: list[ValidationIssue]) -> dict[str, Any]:
    if "timeline" not in data:
        today = datetime.datetime.now(datetime.timezone.utc).date()
        timeline = []
        for photo_id in selection.photo_ids:
            photo = selection.photos.get(photo_id)
            if photo is None:
                continue
            timeline.append(
                {
                    "date": photo.date.date() if photo.date else today,
                    "description": photo.title or "",
                    "photo_ids": [photo.id],
                }
            )
        data["timeline"] = timeline
    data.setdefault("milestone_statuses", selection.milestone_snapshots())
    return data


def _assemble_before_after(data: dict[str, Any], selection: _Selection, warnings: list[ValidationIssue]) -> dict[str, Any]:
    details = data.pop("comparisons", None) or []
    pairing = pair_consecutive(selection.photo_ids)
    comparisons = []
    for index, (before_id, after_id) in enumerate(pairing.pairs):
        detail = details[index] if index < len(details) and isinstance(details[index], dict) else {}
        area = detail.get("area")
        comparisons.append(
            {
                "area": UNSPECIFIED_AREA if _is_blank(area) else str(area).strip(),
                "before_photo_id": before_id,
                "after_photo_id": after_id,
                "description": str(detail.get("description") or "").strip(),
                "materials": split_materials(detail.get("materials")),
            }
        )
    if pairing.unpaired is not None:
        warnings.append(
            _warn(
                "photo_ids",
                f"Photo {pairing.unpaired} has no matching after photo and was left out of the comparisons.",
            )
        )
    if len(details) > len(pairing.pairs):
        warnings.append(
            _warn(
                "comparisons",
                f"{len(details) - len(pairing.pairs)} comparison detail entries had no photo pair and were ignored.",
            )
        )
    data["comparisons"] = comparisons
    return data


def _assemble_damage(data: dict[str, Any], selection: _Selection, warnings: list[ValidationIssue]) -> dict[str, Any]:
    if selection.photo_ids:
        warnings.append(_warn("photo_ids", "Attach photos to individual issues; the report-level selection was ignored."))
    return data


def _assemble_with_photos(data: dict[str, Any], selection: _Selection, warnings: list[ValidationIssue]) -> dict[str, Any]:
    data.setdefault("photo_ids", selection.photo_ids)
    return data


def _assemble_final(data: dict[str, Any], selection: _Selection, warnings: list[ValidationIssue]) -> dict[str, Any]:
    if selection.photo_ids:
        warnings.append(
            _warn("photo_ids", "Use before_photo_ids and after_photo_ids; the report-level selection was ignored.")
        )
    data.setdefault("milestone_summary", selection.milestone_snapshots())
    return data


_ASSEMBLERS: dict[ReportType, Assembler] = {
    ReportType.INITIAL_SITE_ASSESSMENT: _assemble_site_assessment,
    ReportType.PROJECT_PROGRESS: _assemble_progress,
    ReportType.BEFORE_AFTER_TRANSFORMATION: _assemble_before_after,
    ReportType.DAMAGE_ISSUE_DOCUMENTATION: _assemble_damage,
    ReportType.CLIENT_APPROVAL: _assemble_with_photos,
    ReportType.DAILY_WEEKLY_PROGRESS: _assemble_with_photos,
    ReportType.CONTRACTOR_PERFORMANCE: _assemble_with_photos,
    ReportType.FINAL_PROJECT_COMPLETION: _assemble_final,
}

_USES_MILESTONES = {ReportType.PROJECT_PROGRESS, ReportType.FINAL_PROJECT_COMPLETION}


class ReportBuilder:
    """Turns a :class:`ReportDraft` into a validated, fully typed :class:`Report`.

    The builder never persists anything. Field problems are raised as a
    single :class:`ValidationError`; recoverable oddities (an unpaired
    before/after photo, ignored selections) come back as warnings.
    """

    def __init__(
        self,
        photos: PhotoProvider,
        milestones: MilestoneProvider,
        session: Optional[SessionProvider] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.photos = photos
        self.milestones = milestones
        self.session = session
        self.logger = logger or logging.getLogger(__name__)

    def precheck(self, draft: ReportDraft) -> list[ValidationIssue]:
        """Checks that need no artifact lookups: project id and required free text."""
        schema = get_variant(draft.report_type)
        issues: list[ValidationIssue] = []
        try:
            uuid.UUID(str(draft.project_id))
        except ValueError:
            issues.append(_fail("project_id", "A valid project id is required."))

        derived = _DERIVED_FIELDS.get(schema.report_type, set())
        for name in schema.required_fields:
            if name in derived:
                continue
            if _is_blank(draft.fields.get(name)):
                issues.append(_fail(name, "This field is required."))

        if schema.report_type is ReportType.BEFORE_AFTER_TRANSFORMATION and len(set(draft.photo_ids)) < 2:
            issues.append(_fail("comparisons", "Select at least one before/after photo pair."))
        return issues

    async def _load_photos(self, project_id: str) -> dict[str, Photo]:
        return {photo.id: photo for photo in await self.photos.list_by_project(project_id)}

    async def _load_milestones(self, project_id: str) -> dict[str, Milestone]:
        return {milestone.id: milestone for milestone in await self.milestones.list_by_project(project_id)}

    async def build(self, draft: ReportDraft) -> BuildResult:
        schema = get_variant(draft.report_type)
        issues = self.precheck(draft)
        if issues:
            raise ValidationError(issues)

        warnings: list[ValidationIssue] = []
        photo_ids, duplicate_photos = _dedupe(draft.photo_ids)
        if duplicate_photos:
            warnings.append(_warn("photo_ids", f"Duplicate photo selections ignored: {', '.join(duplicate_photos)}"))
        milestone_ids, _ = _dedupe(draft.milestone_ids)

        photos: dict[str, Photo] = {}
        if photo_ids or _mentions_photos(draft.fields):
            photos = await self._load_photos(draft.project_id)
        milestones: dict[str, Milestone] = {}
        if milestone_ids or _mentions_milestones(draft.fields):
            milestones = await self._load_milestones(draft.project_id)

        for milestone_id in milestone_ids:
            if milestone_id not in milestones:
                issues.append(_fail("milestone_ids", f"Milestone {milestone_id} does not belong to this project."))
        if milestone_ids and schema.report_type not in _USES_MILESTONES:
            warnings.append(_warn("milestone_ids", f"{schema.title} reports do not reference milestones."))

        selection = _Selection(photo_ids, photos, milestone_ids, milestones)
        fields = normalize_fields(schema.report_type, draft.fields, issues)
        content_input = _ASSEMBLERS[schema.report_type](fields, selection, warnings)
        result = validate_content(schema.report_type, content_input)
        issues.extend(result.issues)

        if result.content is not None:
            issues.extend(
                _ownership_issues(result.content, photos, milestones, already_reported=set(milestone_ids))
            )

        if issues or result.content is None:
            self.logger.info(
                "Report draft rejected with %d field issue(s)",
                len(issues),
                extra={"project_id": draft.project_id, "report_type": schema.title},
            )
            raise ValidationError(issues)

        for warning in warnings:
            self.logger.warning(
                "Report draft warning on %s: %s",
                warning.field,
                warning.message,
                extra={"project_id": draft.project_id, "report_type": schema.title},
            )

        snapshot = draft.project_snapshot
        if snapshot is not None and snapshot.captured_at is None:
            snapshot = snapshot.model_copy(update={"captured_at": datetime.datetime.now(datetime.timezone.utc)})

        generated_by = draft.generated_by
        if generated_by is None and self.session is not None:
            generated_by = self.session.current_user_id()

        report = Report(
            project_id=uuid.UUID(str(draft.project_id)),
            report_type=schema.report_type,
            title=(draft.title or "").strip() or None,
            generated_by=generated_by,
            project_snapshot=snapshot,
            content=result.content,
        )
        return BuildResult(report=report, warnings=warnings)

    async def revise(self, report: Report, content_patch: Any) -> ReportContent:
        """Merge a content patch into a stored report and check it the way a new draft is checked.

        The patch is shallow-merged over the current content, normalized, validated
        against the report's own variant, and every referenced photo and milestone
        must still belong to the report's project.
        """
        if isinstance(content_patch, pydantic.BaseModel):
            content_patch = content_patch.model_dump(mode="json")
        if not isinstance(content_patch, dict):
            raise ValidationError([_fail("content", "Content must be an object of report fields.")])

        schema = get_variant(report.report_type)
        issues: list[ValidationIssue] = []
        merged = {**report.content.model_dump(mode="json"), **content_patch}
        result = validate_content(schema.report_type, normalize_fields(schema.report_type, merged, issues))
        issues.extend(result.issues)

        if result.content is not None and not issues:
            project_id = str(report.project_id)
            photos = await self._load_photos(project_id) if photo_links(result.content) else {}
            milestones = await self._load_milestones(project_id) if milestone_links(result.content) else {}
            issues.extend(_ownership_issues(result.content, photos, milestones))

        if issues or result.content is None:
            self.logger.info(
                "Report revision rejected with %d field issue(s)",
                len(issues),
                extra={"report_id": str(report.id), "report_type": schema.title},
            )
            raise ValidationError(issues)
        return result.content


def _mentions_milestones(fields: dict[str, Any]) -> bool:
    return any(fields.get(key) for key in ("milestone_statuses", "milestone_summary"))


def _ownership_issues(
    content: Any,
    photos: dict[str, Photo],
    milestones: dict[str, Milestone],
    already_reported: Iterable[str] = (),
) -> list[ValidationIssue]:
    skip = set(already_reported)
    issues = [
        _fail("photo_ids", f"Photo {ref.photo_id} does not belong to this project.")
        for ref in photo_links(content)
        if ref.photo_id not in photos
    ]
    issues.extend(
        _fail("milestone_ids", f"Milestone {ref.milestone_id} does not belong to this project.")
        for ref in milestone_links(content)
        if ref.milestone_id not in milestones and ref.milestone_id not in skip
    )
    return issues
