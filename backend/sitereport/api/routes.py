from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from sitereport.api.dependencies import get_builder, get_export_service, get_resolver, get_store
from sitereport.builder.report_builder import ReportBuilder
from sitereport.errors import (
    ArtifactProviderError,
    ExportChannelError,
    InvalidVariantError,
    NotFoundError,
    PersistenceError,
    RenderError,
    ReportError,
    ValidationError,
)
from sitereport.export.pipeline import ExportService
from sitereport.rendering.resolver import TemplateResolver
from sitereport.schemas.document import RenderedDocument
from sitereport.schemas.export import (
    EmailExportRequest,
    ExportRequest,
    ExportResult,
    FileExportRequest,
)
from sitereport.schemas.report import (
    Report,
    ReportCreateRequest,
    ReportCreateResponse,
    ReportDraft,
    VariantDescription,
)
from sitereport.store.reports import ReportStore
from sitereport.validation.registry import describe_variants

router = APIRouter()

_STATUS_BY_ERROR: list[tuple[type[ReportError], int]] = [
    (ValidationError, 422),
    (InvalidVariantError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RenderError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ExportChannelError, status.HTTP_502_BAD_GATEWAY),
    (ArtifactProviderError, status.HTTP_502_BAD_GATEWAY),
]


def _http_error(exc: ReportError) -> HTTPException:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    detail: dict[str, Any] = {"message": str(exc)}
    if isinstance(exc, ValidationError):
        detail = {
            "message": "Validation failed.",
            "issues": [issue.model_dump() for issue in exc.issues],
        }
    elif isinstance(exc, ExportChannelError):
        detail["channel"] = exc.channel
    elif isinstance(exc, PersistenceError):
        detail["operation"] = exc.operation
    return HTTPException(status_code=status_code, detail=detail)


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/report-types", response_model=list[VariantDescription])
def report_types_endpoint() -> list[VariantDescription]:
    return describe_variants()


@router.post(
    "/projects/{project_id}/reports",
    response_model=ReportCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_report_endpoint(
    project_id: str,
    payload: ReportCreateRequest,
    builder: ReportBuilder = Depends(get_builder),
    store: ReportStore = Depends(get_store),
) -> ReportCreateResponse:
    draft = ReportDraft(project_id=project_id, **payload.model_dump())
    try:
        # 1. Build and validate; nothing is written when this fails
        result = await builder.build(draft)
        # 2. Persist the report together with its join rows
        report = await store.create(result.report)
    except ReportError as exc:
        raise _http_error(exc) from exc
    return ReportCreateResponse(report=report, warnings=result.warnings)


@router.get("/projects/{project_id}/reports", response_model=list[Report])
async def list_reports_endpoint(project_id: str, store: ReportStore = Depends(get_store)) -> list[Report]:
    try:
        return await store.list_by_project(project_id)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.get("/reports/{report_id}", response_model=Report)
async def get_report_endpoint(report_id: str, store: ReportStore = Depends(get_store)) -> Report:
    try:
        return await store.get_by_id(report_id)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.patch("/reports/{report_id}", response_model=Report)
async def update_report_endpoint(
    report_id: str,
    patch: dict[str, Any] = Body(...),
    store: ReportStore = Depends(get_store),
    builder: ReportBuilder = Depends(get_builder),
) -> Report:
    try:
        if "content" in patch:
            # Content edits get the same normalization and ownership checks as a new report
            current = await store.get_by_id(report_id)
            patch = {**patch, "content": await builder.revise(current, patch["content"])}
        return await store.update(report_id, patch)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report_endpoint(report_id: str, store: ReportStore = Depends(get_store)) -> None:
    try:
        await store.delete(report_id)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.get("/reports/{report_id}/document", response_model=RenderedDocument)
async def report_document_endpoint(
    report_id: str, resolver: TemplateResolver = Depends(get_resolver)
) -> RenderedDocument:
    try:
        return await resolver.resolve_by_id(report_id)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.post("/reports/{report_id}/export/file", response_model=ExportResult)
async def export_file_endpoint(
    report_id: str,
    payload: Optional[FileExportRequest] = None,
    exporter: ExportService = Depends(get_export_service),
) -> ExportResult:
    try:
        return await exporter.export_to_file(report_id, payload.filename if payload else None)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.post("/reports/{report_id}/export/email", response_model=ExportResult)
async def export_email_endpoint(
    report_id: str,
    payload: EmailExportRequest,
    exporter: ExportService = Depends(get_export_service),
) -> ExportResult:
    try:
        return await exporter.export_to_email(report_id, payload.address, payload.subject, payload.body)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.post("/reports/{report_id}/export/print", response_model=ExportResult)
async def export_print_endpoint(
    report_id: str, exporter: ExportService = Depends(get_export_service)
) -> ExportResult:
    try:
        return await exporter.export_to_print(report_id)
    except ReportError as exc:
        raise _http_error(exc) from exc


@router.post("/reports/{report_id}/exports", response_model=list[ExportResult])
async def export_many_endpoint(
    report_id: str,
    requests: list[ExportRequest],
    exporter: ExportService = Depends(get_export_service),
) -> list[ExportResult]:
    try:
        return await exporter.export_many(report_id, requests)
    except ReportError as exc:
        raise _http_error(exc) from exc
