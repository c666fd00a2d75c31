from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from sitereport.aggregation import clamp
from sitereport.errors import ArtifactProviderError, RenderError
from sitereport.providers.base import MilestoneProvider, PhotoProvider
from sitereport.schemas.artifacts import Milestone, Photo
from sitereport.schemas.content import (
    BeforeAfterTransformation,
    ClientApproval,
    ContractorPerformance,
    DailyWeeklyProgress,
    DamageIssueDocumentation,
    FinalProjectCompletion,
    InitialSiteAssessment,
    MilestoneStatusEntry,
    ProjectProgress,
    ReportType,
    Severity,
    Signature,
)
from sitereport.schemas.document import (
    Block,
    ComparisonBlock,
    MediaBlock,
    MediaEntry,
    MediaItem,
    Placeholder,
    PlaceholderBlock,
    ProgressBlock,
    RenderedDocument,
    TableBlock,
    TextBlock,
)
from sitereport.schemas.report import Report

DATE_FORMAT = "%b %d, %Y"

STATUS_COLORS = {
    "completed": "#4caf50",
    "in_progress": "#ff9800",
    "pending": "#9e9e9e",
}
DEFAULT_STATUS_COLOR = "#9e9e9e"

SEVERITY_COLORS = {
    Severity.LOW: "#4caf50",
    Severity.MEDIUM: "#ff9800",
    Severity.HIGH: "#f44336",
}

STATUS_LABELS = {
    "completed": "Completed",
    "in_progress": "In Progress",
    "pending": "Pending",
}


def format_date(value: Union[datetime.date, str, None]) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        try:
            value = datetime.datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.strftime(DATE_FORMAT)


def format_money(amount: float) -> str:
    return f"${amount:,.2f}"


def status_color(status: Optional[str]) -> str:
    return STATUS_COLORS.get(status or "", DEFAULT_STATUS_COLOR)


def severity_color(severity: Severity) -> str:
    return SEVERITY_COLORS.get(severity, SEVERITY_COLORS[Severity.LOW])


def rating_stars(rating: int, out_of: int = 5) -> str:
    filled = int(clamp(rating, 0, out_of))
    return "★" * filled + "☆" * (out_of - filled)


def progress_percentage(value: Any) -> int:
    return int(round(clamp(float(value or 0))))


class _Context:
    """Artifacts available to a layout plus placeholder bookkeeping."""

    def __init__(
        self,
        report: Report,
        photos: Mapping[str, Photo],
        milestones: Mapping[str, Milestone],
        logger: logging.Logger,
    ) -> None:
        self.report = report
        self.photos = photos
        self.milestones = milestones
        self.logger = logger
        self.missing_photos: list[str] = []

    def media(self, photo_id: str) -> MediaEntry:
        photo = self.photos.get(photo_id)
        if photo is None:
            if photo_id not in self.missing_photos:
                self.missing_photos.append(photo_id)
                self.logger.warning(
                    "Photo %s is no longer available; rendering a placeholder",
                    photo_id,
                    extra={"report_id": str(self.report.id), "photo_id": photo_id},
                )
            return Placeholder(ref_id=photo_id)
        return MediaItem(
            photo_id=photo.id,
            url=photo.url,
            caption=photo.title,
            taken_on=format_date(photo.date) or None,
        )

    def media_block(self, heading: str, photo_ids: Iterable[str]) -> Optional[MediaBlock]:
        items = [self.media(photo_id) for photo_id in photo_ids]
        if not items:
            return None
        return MediaBlock(heading=heading, items=items)

    def milestone_table(self, heading: str, entries: list[MilestoneStatusEntry]) -> Optional[Block]:
        if not entries:
            return None
        rows = []
        colors = []
        for entry in entries:
            if entry.milestone_id not in self.milestones:
                self.logger.info(
                    "Milestone %s no longer exists; showing the captured snapshot",
                    entry.milestone_id,
                    extra={"report_id": str(self.report.id), "milestone_id": entry.milestone_id},
                )
            rows.append([entry.title, STATUS_LABELS.get(entry.status, entry.status), format_date(entry.due_date)])
            colors.append(status_color(entry.status))
        return TableBlock(heading=heading, columns=["Milestone", "Status", "Due"], rows=rows, row_colors=colors)


def _text(heading: str, value: Optional[str]) -> Optional[TextBlock]:
    if value is None or not value.strip():
        return None
    return TextBlock(heading=heading, text=value.strip())


def _signature_block(heading: str, signature: Optional[Signature]) -> Block:
    if signature is None:
        return PlaceholderBlock(heading=heading, message="Awaiting signature")
    return TextBlock(heading=heading, text=f"Signed by {signature.name} on {format_date(signature.date)}")


def _site_assessment(content: InitialSiteAssessment, ctx: _Context) -> list[Optional[Block]]:
    blocks: list[Optional[Block]] = [_text("Site Conditions", content.site_conditions)]
    if content.key_measurements:
        blocks.append(
            TableBlock(
                heading="Key Measurements",
                columns=["Measurement", "Value"],
                rows=[[name, value] for name, value in content.key_measurements.items()],
            )
        )
    blocks.append(ctx.media_block("Site Photos", content.site_photo_ids))
    if content.identified_issues:
        blocks.append(
            TableBlock(
                heading="Identified Issues",
                columns=["Issue", "Severity"],
                rows=[[issue.description, issue.severity.value] for issue in content.identified_issues],
                row_colors=[severity_color(issue.severity) for issue in content.identified_issues],
            )
        )
        blocks.append(
            ctx.media_block(
                "Issue Photos",
                [photo_id for issue in content.identified_issues for photo_id in issue.photo_ids],
            )
        )
    return blocks


def _project_progress(content: ProjectProgress, ctx: _Context) -> list[Optional[Block]]:
    percentage = progress_percentage(content.completion_percentage)
    blocks: list[Optional[Block]] = [
        _text("Recent Accomplishments", content.recent_accomplishments),
        ProgressBlock(heading="Completion", percentage=percentage, label=f"{percentage}% complete"),
        _text("Timeline Notes", content.timeline_notes),
        ctx.milestone_table("Milestones", content.milestone_statuses),
    ]
    for entry in content.timeline:
        heading = format_date(entry.date)
        if entry.description:
            heading = f"{heading}: {entry.description}"
        blocks.append(ctx.media_block(heading, entry.photo_ids) or TextBlock(heading="Timeline", text=heading))
    return blocks


def _before_after(content: BeforeAfterTransformation, ctx: _Context) -> list[Optional[Block]]:
    blocks: list[Optional[Block]] = [
        ComparisonBlock(
            heading=comparison.area,
            before=ctx.media(comparison.before_photo_id),
            after=ctx.media(comparison.after_photo_id),
            description=comparison.description,
            materials=comparison.materials,
        )
        for comparison in content.comparisons
    ]
    blocks.append(_text("Value Added", content.value_added_statement))
    return blocks


def _damage_issues(content: DamageIssueDocumentation, ctx: _Context) -> list[Optional[Block]]:
    blocks: list[Optional[Block]] = []
    for number, issue in enumerate(content.issues, start=1):
        lines = [issue.description]
        if issue.measurements:
            lines.append(f"Measurements: {issue.measurements}")
        if issue.cause_assessment:
            lines.append(f"Cause: {issue.cause_assessment}")
        lines.append(f"Recommended repairs: {issue.recommended_repairs}")
        blocks.append(TextBlock(heading=f"Issue {number}", text="\n".join(lines)))
        blocks.append(ctx.media_block(f"Issue {number} Photos", issue.photo_ids))
    return blocks


def _client_approval(content: ClientApproval, ctx: _Context) -> list[Optional[Block]]:
    return [
        _text("Work Summary", content.work_summary),
        ctx.media_block("Attached Photos", content.photo_ids),
        _text("Cost Breakdown", content.cost_breakdown),
        _text("Timeline Impact", content.timeline_impact),
        _text("Additional Notes", content.additional_notes),
        _signature_block("Client Signature", content.signature),
    ]


def _daily_weekly(content: DailyWeeklyProgress, ctx: _Context) -> list[Optional[Block]]:
    period = f"{format_date(content.period.start)} to {format_date(content.period.end)}"
    resources = []
    if content.hours_worked is not None:
        resources.append(["Hours worked", f"{content.hours_worked:g}"])
    if content.resources_used:
        resources.append(["Resources used", content.resources_used])
    return [
        TextBlock(heading="Reporting Period", text=period),
        _text("Work Completed", content.work_completed),
        ctx.media_block("Progress Photos", content.photo_ids),
        TableBlock(heading="Labor & Resources", columns=["Item", "Detail"], rows=resources) if resources else None,
        _text("Issues Encountered", content.issues_encountered),
        _text("Solutions", content.solutions),
        _text("Plan for Next Period", content.next_period_plan),
    ]


def _contractor_performance(content: ContractorPerformance, ctx: _Context) -> list[Optional[Block]]:
    return [
        TextBlock(heading="Contractor", text=content.contractor_id),
        TableBlock(
            heading="Performance",
            columns=["Area", "Assessment"],
            rows=[
                ["Timeline adherence", content.timeline_adherence],
                ["Quality", content.quality_assessment],
                ["Communication", content.communication],
                ["Issue resolution", content.issue_resolution],
            ],
        ),
        TextBlock(heading="Overall Rating", text=f"{rating_stars(content.rating)} ({content.rating}/5)"),
        _text("Comments", content.comments),
        ctx.media_block("Evidence", content.photo_ids),
    ]


def _final_completion(content: FinalProjectCompletion, ctx: _Context) -> list[Optional[Block]]:
    costs = None
    if content.costs.items:
        costs = TableBlock(
            heading="Final Costs",
            columns=["Item", "Amount"],
            rows=[[item.label, format_money(item.amount)] for item in content.costs.items],
            footer=["Total", format_money(content.costs.total)],
        )
    return [
        ctx.media_block("Before", content.before_photo_ids),
        ctx.media_block("After", content.after_photo_ids),
        ctx.milestone_table("Milestone Summary", content.milestone_summary),
        costs,
        _text("Warranty", content.warranty_information),
        _text("Maintenance", content.maintenance_information),
        _signature_block("Client Sign-off", content.client_sign_off),
    ]


Layout = Callable[[Any, _Context], list[Optional[Block]]]

LAYOUTS: dict[ReportType, Layout] = {
    ReportType.INITIAL_SITE_ASSESSMENT: _site_assessment,
    ReportType.PROJECT_PROGRESS: _project_progress,
    ReportType.BEFORE_AFTER_TRANSFORMATION: _before_after,
    ReportType.DAMAGE_ISSUE_DOCUMENTATION: _damage_issues,
    ReportType.CLIENT_APPROVAL: _client_approval,
    ReportType.DAILY_WEEKLY_PROGRESS: _daily_weekly,
    ReportType.CONTRACTOR_PERFORMANCE: _contractor_performance,
    ReportType.FINAL_PROJECT_COMPLETION: _final_completion,
}


def _by_id(items: Union[Mapping[str, Any], Iterable[Any], None]) -> dict[str, Any]:
    if items is None:
        return {}
    if isinstance(items, Mapping):
        return dict(items)
    return {item.id: item for item in items}


class TemplateResolver:
    """Maps a stored report onto the layout for its type."""

    def __init__(
        self,
        store: Any,
        photos: PhotoProvider,
        milestones: MilestoneProvider,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.photos = photos
        self.milestones = milestones
        self.logger = logger or logging.getLogger(__name__)

    def resolve(
        self,
        report: Report,
        photos: Union[Mapping[str, Photo], Iterable[Photo], None] = None,
        milestones: Union[Mapping[str, Milestone], Iterable[Milestone], None] = None,
    ) -> RenderedDocument:
        if report.content.report_type != report.report_type.value:
            raise RenderError(
                f"Report {report.id} is tagged {report.report_type.value!r} "
                f"but carries {report.content.report_type!r} content"
            )
        layout = LAYOUTS.get(report.report_type)
        if layout is None:
            raise RenderError(f"No layout for report type {report.report_type.value!r}")

        ctx = _Context(report, _by_id(photos), _by_id(milestones), self.logger)
        blocks = [block for block in layout(report.content, ctx) if block is not None]

        snapshot = report.project_snapshot
        subtitle_parts = [part for part in (snapshot.name, snapshot.client_name) if part] if snapshot else []
        generated_on = format_date(report.generated_at or datetime.datetime.now(datetime.UTC))
        summary = f"{report.report_type.value} generated on {generated_on}"
        if report.generated_by:
            summary = f"{summary} by {report.generated_by}"

        return RenderedDocument(
            report_id=str(report.id) if report.id else None,
            report_type=report.report_type.value,
            title=report.display_title,
            subtitle=" | ".join(subtitle_parts),
            summary=summary,
            generated_on=generated_on,
            blocks=blocks,
        )

    async def _fetch(self, getter: Callable[[str], Any], ids: list[str], report_id: str) -> dict[str, Any]:
        async def fetch_one(item_id: str) -> Any:
            try:
                return await getter(item_id)
            except (ArtifactProviderError, KeyError, ValueError) as exc:
                # Unreachable provider or a row that does not map; the layout shows a placeholder
                self.logger.warning(
                    "Artifact %s could not be fetched: %s", item_id, exc, extra={"report_id": report_id}
                )
                return None

        found = await asyncio.gather(*(fetch_one(item_id) for item_id in ids))
        return {item.id: item for item in found if item is not None}

    async def resolve_by_id(self, report_id: Any) -> RenderedDocument:
        report = await self.store.get_by_id(report_id)
        photo_ids = await self.store.linked_photo_ids(report.id)
        milestone_ids = await self.store.linked_milestone_ids(report.id)
        photos = await self._fetch(self.photos.get_by_id, photo_ids, str(report.id))
        milestones = await self._fetch(self.milestones.get_by_id, milestone_ids, str(report.id))
        return self.resolve(report, photos, milestones)
