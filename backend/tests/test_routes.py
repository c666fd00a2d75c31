import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from fakes import PROJECT_ID, FakeMilestoneProvider, FakePhotoProvider, make_photo
from sitereport.api.routes import (
    create_report_endpoint,
    delete_report_endpoint,
    export_email_endpoint,
    get_report_endpoint,
    health,
    list_reports_endpoint,
    report_types_endpoint,
    update_report_endpoint,
)
from sitereport.builder.report_builder import ReportBuilder
from sitereport.errors import ExportChannelError, InvalidVariantError, NotFoundError, PersistenceError
from sitereport.providers.base import StaticSessionProvider
from sitereport.schemas.content import ReportType
from sitereport.schemas.export import EmailExportRequest
from sitereport.schemas.report import Report, ReportCreateRequest, ReportDraft


class RecordingStore:
    def __init__(self) -> None:
        self.created: list[Report] = []

    async def create(self, report: Report) -> Report:
        stored = report.model_copy(update={"id": uuid.uuid4()})
        self.created.append(stored)
        return stored


def build_builder() -> ReportBuilder:
    return ReportBuilder(
        FakePhotoProvider([make_photo("p1")]),
        FakeMilestoneProvider(),
        StaticSessionProvider("user-9"),
    )


def test_health() -> None:
    assert health() == {"status": "ok"}


def test_report_types_lists_all_variants() -> None:
    assert len(report_types_endpoint()) == len(ReportType)


def test_create_report_persists_built_report() -> None:
    store = RecordingStore()
    payload = ReportCreateRequest(
        report_type=ReportType.CLIENT_APPROVAL.value,
        fields={"work_summary": "Cabinets hung", "cost_breakdown": "$4,000"},
        photo_ids=["p1"],
    )

    response = asyncio.run(create_report_endpoint(PROJECT_ID, payload, builder=build_builder(), store=store))

    assert response.report.id == store.created[0].id
    assert response.report.generated_by == "user-9"
    assert response.warnings == []


def test_create_report_validation_failure_is_422_and_not_persisted() -> None:
    store = RecordingStore()
    payload = ReportCreateRequest(report_type=ReportType.CLIENT_APPROVAL.value, fields={"work_summary": "Hung"})

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(create_report_endpoint(PROJECT_ID, payload, builder=build_builder(), store=store))

    assert excinfo.value.status_code == 422
    assert excinfo.value.detail["issues"][0]["field"] == "cost_breakdown"
    assert store.created == []


def test_unknown_report_type_is_400() -> None:
    payload = ReportCreateRequest(report_type="Weekly Horoscope")

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(create_report_endpoint(PROJECT_ID, payload, builder=build_builder(), store=RecordingStore()))

    assert excinfo.value.status_code == 400


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (NotFoundError("r-1"), 404),
        (PersistenceError("get", "connection refused"), 503),
    ],
)
def test_get_report_maps_store_errors(error, status_code) -> None:
    store = AsyncMock()
    store.get_by_id.side_effect = error

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(get_report_endpoint("r-1", store=store))

    assert excinfo.value.status_code == status_code


def test_update_changing_type_is_400() -> None:
    store = AsyncMock()
    store.update.side_effect = InvalidVariantError("cannot change report type")

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(update_report_endpoint("r-1", {"report_type": "Project Progress"}, store=store))

    assert excinfo.value.status_code == 400


def test_list_and_delete_delegate_to_store() -> None:
    store = AsyncMock()
    store.list_by_project.return_value = []

    assert asyncio.run(list_reports_endpoint("not-a-valid-id", store=store)) == []
    asyncio.run(delete_report_endpoint("r-1", store=store))

    store.list_by_project.assert_awaited_once_with("not-a-valid-id")
    store.delete.assert_awaited_once_with("r-1")


def test_export_channel_failure_is_502() -> None:
    exporter = AsyncMock()
    exporter.export_to_email.side_effect = ExportChannelError("email", "relay refused")

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(
            export_email_endpoint("r-1", EmailExportRequest(address="client@example.com"), exporter=exporter)
        )

    assert excinfo.value.status_code == 502
    assert excinfo.value.detail["channel"] == "email"


def stored_approval_report() -> Report:
    builder = build_builder()
    payload = ReportCreateRequest(
        report_type=ReportType.CLIENT_APPROVAL.value,
        fields={"work_summary": "Cabinets hung", "cost_breakdown": "$4,000"},
        photo_ids=["p1"],
    )
    draft = ReportDraft(project_id=PROJECT_ID, **payload.model_dump())
    return asyncio.run(builder.build(draft)).report.model_copy(update={"id": uuid.uuid4()})


def test_update_content_is_checked_against_project_photos() -> None:
    store = AsyncMock()
    store.get_by_id.return_value = stored_approval_report()

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(
            update_report_endpoint(
                "r-1", {"content": {"photo_ids": ["not-in-project"]}}, store=store, builder=build_builder()
            )
        )

    assert excinfo.value.status_code == 422
    assert excinfo.value.detail["issues"][0]["field"] == "photo_ids"
    store.update.assert_not_awaited()


def test_update_content_passes_revised_content_to_store() -> None:
    report = stored_approval_report()
    store = AsyncMock()
    store.get_by_id.return_value = report
    store.update.return_value = report

    asyncio.run(
        update_report_endpoint("r-1", {"content": {"work_summary": "Doors hung"}}, store=store, builder=build_builder())
    )

    patch = store.update.await_args.args[1]
    assert patch["content"].work_summary == "Doors hung"
    assert patch["content"].photo_ids == ["p1"]
