from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from sitereport.config.settings import ExportSettings, settings
from sitereport.errors import ExportChannelError, ReportError
from sitereport.export.channels import EmailChannel, FileChannel, PrintChannel
from sitereport.export.pdf import PdfRenderer
from sitereport.rendering.resolver import TemplateResolver
from sitereport.schemas.export import (
    EmailExportRequest,
    ExportRequest,
    ExportResult,
    FileExportRequest,
    PrintExportRequest,
)


class ExportService:
    """Re-resolves and re-renders a report, then hands the PDF to one channel.

    Every export works from the report's current content; no binary is
    cached between calls. Each channel runs under its own timeout and a
    failing channel never affects another.
    """

    def __init__(
        self,
        resolver: TemplateResolver,
        renderer: Optional[PdfRenderer] = None,
        file_channel: Optional[FileChannel] = None,
        email_channel: Optional[EmailChannel] = None,
        print_channel: Optional[PrintChannel] = None,
        export_settings: Optional[ExportSettings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.resolver = resolver
        self.settings = export_settings or settings.export
        self.logger = logger or logging.getLogger(__name__)
        self.renderer = renderer or PdfRenderer(logger=self.logger)
        self.file_channel = file_channel or FileChannel(self.settings, self.logger)
        self.email_channel = email_channel or EmailChannel(export_settings=self.settings, logger=self.logger)
        self.print_channel = print_channel or PrintChannel(self.settings, self.logger)

    async def render(self, report_id: Any) -> bytes:
        document = await self.resolver.resolve_by_id(report_id)
        return await asyncio.to_thread(self.renderer.render, document)

    async def _run(self, channel: str, report_id: Any, deliver: Callable[[bytes], Awaitable[str]]) -> ExportResult:
        async def attempt() -> str:
            pdf = await self.render(report_id)
            return await deliver(pdf)

        started = time.monotonic()
        try:
            detail = await asyncio.wait_for(attempt(), timeout=self.settings.timeout_seconds)
        except asyncio.TimeoutError as exc:
            self.logger.warning(
                "Export timed out after %ss", self.settings.timeout_seconds,
                extra={"report_id": str(report_id), "channel": channel},
            )
            raise ExportChannelError(channel, f"timed out after {self.settings.timeout_seconds}s") from exc

        self.logger.info(
            "Export finished",
            extra={
                "report_id": str(report_id),
                "channel": channel,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return ExportResult(channel=channel, ok=True, detail=detail)

    async def export_to_file(self, report_id: Any, filename: Optional[str] = None) -> ExportResult:
        return await self._run(
            "file", report_id, lambda pdf: self.file_channel.deliver(pdf, report_id, filename)
        )

    async def export_to_email(
        self,
        report_id: Any,
        address: str,
        subject: Optional[str] = None,
        body: Optional[str] = None,
    ) -> ExportResult:
        # Reject a bad address before spending time on rendering.
        self.email_channel.normalize_address(address)
        return await self._run(
            "email", report_id, lambda pdf: self.email_channel.deliver(pdf, report_id, address, subject, body)
        )

    async def export_to_print(self, report_id: Any) -> ExportResult:
        return await self._run("print", report_id, lambda pdf: self.print_channel.deliver(pdf, report_id))

    async def export(self, report_id: Any, request: ExportRequest) -> ExportResult:
        if isinstance(request, FileExportRequest):
            return await self.export_to_file(report_id, request.filename)
        if isinstance(request, EmailExportRequest):
            return await self.export_to_email(report_id, request.address, request.subject, request.body)
        if isinstance(request, PrintExportRequest):
            return await self.export_to_print(report_id)
        raise ExportChannelError(str(getattr(request, "channel", "unknown")), "unsupported export channel")

    async def export_many(self, report_id: Any, requests: list[ExportRequest]) -> list[ExportResult]:
        outcomes = await asyncio.gather(
            *(self.export(report_id, request) for request in requests),
            return_exceptions=True,
        )
        results: list[ExportResult] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, ExportResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, (ReportError, OSError)):
                raise outcome
            self.logger.warning(
                "Export via %s failed: %s", request.channel, outcome,
                extra={"report_id": str(report_id), "channel": request.channel},
            )
            results.append(ExportResult(channel=request.channel, ok=False, error=str(outcome)))
        return results
