from __future__ import annotations

import datetime
import logging
import uuid
from typing import Any, Optional

import pydantic
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitereport.db.models import ReportMilestoneLink, ReportPhotoLink, ReportRow, utcnow
from sitereport.errors import (
    InvalidVariantError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from sitereport.schemas.artifacts import ProjectSnapshot
from sitereport.schemas.content import ReportContent, ReportType
from sitereport.schemas.report import Report, ValidationIssue
from sitereport.validation.registry import ensure_valid, milestone_links, photo_links

PATCHABLE_KEYS = {"title", "is_archived", "content", "report_type"}


def _parse_id(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    if value is None:
        return None
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        return None


def _naive_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(datetime.UTC).replace(tzinfo=None)


def _link_rows(report_id: uuid.UUID, content: ReportContent) -> list[Any]:
    rows: list[Any] = [
        ReportPhotoLink(report_id=report_id, photo_id=ref.photo_id, photo_role=ref.role, display_order=index)
        for index, ref in enumerate(photo_links(content))
    ]
    rows.extend(
        ReportMilestoneLink(report_id=report_id, milestone_id=ref.milestone_id, status=ref.status)
        for ref in milestone_links(content)
    )
    return rows


def _patch_issues(patch: Any) -> list[ValidationIssue]:
    if not isinstance(patch, dict):
        return [ValidationIssue(field="patch", level="fail", message="An update must be an object of fields.")]
    issues = [
        ValidationIssue(field=key, level="fail", message="This field cannot be updated.")
        for key in sorted(set(patch) - PATCHABLE_KEYS)
    ]
    if "content" in patch and not isinstance(patch["content"], (dict, pydantic.BaseModel)):
        issues.append(
            ValidationIssue(field="content", level="fail", message="Content must be an object of report fields.")
        )
    if "title" in patch and not (patch["title"] is None or isinstance(patch["title"], str)):
        issues.append(ValidationIssue(field="title", level="fail", message="Title must be text."))
    if "is_archived" in patch and not isinstance(patch["is_archived"], bool):
        issues.append(ValidationIssue(field="is_archived", level="fail", message="Must be true or false."))
    return issues


def _row_to_report(row: ReportRow) -> Report:
    try:
        content = ensure_valid(row.report_type, row.content or {})
        snapshot = ProjectSnapshot.model_validate(row.project_snapshot) if row.project_snapshot else None
        return Report(
            id=row.id,
            project_id=row.project_id,
            report_type=ReportType(row.report_type),
            title=row.title,
            generated_at=row.generated_at,
            generated_by=row.generated_by,
            project_snapshot=snapshot,
            updated_at=row.updated_at,
            is_archived=bool(row.is_archived),
            content=content,
        )
    except (ValidationError, InvalidVariantError, pydantic.ValidationError, ValueError) as exc:
        raise PersistenceError("read", f"stored report {row.id} could not be read: {exc}") from exc


class ReportStore:
    """Durable storage for reports and their photo/milestone join rows."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.logger = logger or logging.getLogger(__name__)

    async def create(self, report: Report) -> Report:
        report_id = report.id or uuid.uuid4()
        now = utcnow()
        # Re-run the registry so nothing unvalidated reaches the table.
        content = ensure_valid(report.report_type, report.content.model_dump(mode="json"))
        row = ReportRow(
            id=report_id,
            project_id=report.project_id,
            report_type=report.report_type.value,
            title=report.title,
            content=content.model_dump(mode="json"),
            project_snapshot=report.project_snapshot.model_dump(mode="json") if report.project_snapshot else None,
            generated_at=_naive_utc(report.generated_at) or now,
            generated_by=report.generated_by,
            updated_at=now,
            is_archived=report.is_archived,
        )
        stored = _row_to_report(row)

        async with self.sessionmaker() as session:
            try:
                session.add(row)
                session.add_all(_link_rows(report_id, content))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                self.logger.error(
                    "Report insert failed: %s", exc, extra={"report_id": str(report_id), "operation": "create"}
                )
                raise PersistenceError("create", str(exc)) from exc

        self.logger.info(
            "Report created",
            extra={
                "report_id": str(report_id),
                "project_id": str(report.project_id),
                "report_type": report.report_type.value,
            },
        )
        return stored

    async def _load_row(self, session: AsyncSession, report_id: Any, operation: str) -> ReportRow:
        parsed = _parse_id(report_id)
        if parsed is None:
            raise NotFoundError(report_id)
        try:
            row = await session.get(ReportRow, parsed)
        except SQLAlchemyError as exc:
            raise PersistenceError(operation, str(exc)) from exc
        if row is None:
            raise NotFoundError(report_id)
        return row

    async def get_by_id(self, report_id: Any) -> Report:
        async with self.sessionmaker() as session:
            row = await self._load_row(session, report_id, "get")
            return _row_to_report(row)

    async def list_by_project(self, project_id: Any) -> list[Report]:
        parsed = _parse_id(project_id)
        if parsed is None:
            return []
        stmt = (
            select(ReportRow)
            .where(ReportRow.project_id == parsed)
            .order_by(ReportRow.generated_at.desc(), ReportRow.updated_at.desc())
        )
        async with self.sessionmaker() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as exc:
                raise PersistenceError("list", str(exc)) from exc
            return [_row_to_report(row) for row in result.scalars().all()]

    async def update(self, report_id: Any, patch: dict[str, Any]) -> Report:
        issues = _patch_issues(patch)
        if issues:
            raise ValidationError(issues)

        async with self.sessionmaker() as session:
            row = await self._load_row(session, report_id, "update")

            requested_type = patch.get("report_type")
            if requested_type is not None:
                requested = requested_type.value if isinstance(requested_type, ReportType) else str(requested_type)
                if requested != row.report_type:
                    raise InvalidVariantError(
                        f"Report {row.id} is a {row.report_type!r} report and cannot become {requested!r}"
                    )

            content = None
            if "content" in patch:
                content_patch = patch["content"]
                if isinstance(content_patch, pydantic.BaseModel):
                    content_patch = content_patch.model_dump(mode="json")
                merged = {**(row.content or {}), **content_patch}
                content = ensure_valid(row.report_type, merged)

            # Everything is validated; apply the patch as one unit.
            if "title" in patch:
                row.title = (patch["title"] or "").strip() or None
            if "is_archived" in patch:
                row.is_archived = bool(patch["is_archived"])
            if content is not None:
                row.content = content.model_dump(mode="json")
            row.updated_at = utcnow()
            updated = _row_to_report(row)

            try:
                if content is not None:
                    await session.execute(delete(ReportPhotoLink).where(ReportPhotoLink.report_id == row.id))
                    await session.execute(
                        delete(ReportMilestoneLink).where(ReportMilestoneLink.report_id == row.id)
                    )
                    session.add_all(_link_rows(row.id, content))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("update", str(exc)) from exc

        self.logger.info(
            "Report updated",
            extra={"report_id": str(updated.id), "report_type": updated.report_type.value},
        )
        return updated

    async def delete(self, report_id: Any) -> None:
        parsed = _parse_id(report_id)
        if parsed is None:
            raise NotFoundError(report_id)
        async with self.sessionmaker() as session:
            try:
                await session.execute(delete(ReportPhotoLink).where(ReportPhotoLink.report_id == parsed))
                await session.execute(delete(ReportMilestoneLink).where(ReportMilestoneLink.report_id == parsed))
                result = await session.execute(delete(ReportRow).where(ReportRow.id == parsed))
                if result.rowcount == 0:
                    await session.rollback()
                    raise NotFoundError(report_id)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("delete", str(exc)) from exc

        self.logger.info("Report deleted", extra={"report_id": str(parsed)})

    async def linked_photo_ids(self, report_id: Any) -> list[str]:
        parsed = _parse_id(report_id)
        if parsed is None:
            return []
        stmt = (
            select(ReportPhotoLink.photo_id)
            .where(ReportPhotoLink.report_id == parsed)
            .order_by(ReportPhotoLink.display_order)
        )
        async with self.sessionmaker() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as exc:
                raise PersistenceError("linked_photos", str(exc)) from exc
            return list(result.scalars().all())

    async def linked_milestone_ids(self, report_id: Any) -> list[str]:
        parsed = _parse_id(report_id)
        if parsed is None:
            return []
        stmt = (
            select(ReportMilestoneLink.milestone_id)
            .where(ReportMilestoneLink.report_id == parsed)
            .order_by(ReportMilestoneLink.created_at, ReportMilestoneLink.milestone_id)
        )
        async with self.sessionmaker() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as exc:
                raise PersistenceError("linked_milestones", str(exc)) from exc
            return list(result.scalars().all())
