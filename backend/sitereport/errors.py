from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sitereport.schemas.report import ValidationIssue


class ReportError(Exception):
    """Base class for every error raised by the report subsystem."""


class ValidationError(ReportError):
    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = issues
        fields = ", ".join(issue.field for issue in issues)
        super().__init__(f"Validation failed for: {fields}")

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


class InvalidVariantError(ReportError):
    """Unknown report type, or an attempt to change an existing one."""


class NotFoundError(ReportError):
    def __init__(self, report_id: object) -> None:
        self.report_id = report_id
        super().__init__(f"Report {report_id} not found.")


class PersistenceError(ReportError):
    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class RenderError(ReportError):
    pass


class ExportChannelError(ReportError):
    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(f"{channel}: {message}")


class ArtifactProviderError(ReportError):
    """An external photo/milestone provider could not be reached or answered garbage."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"{source}: {message}")
