from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

ExportChannelName = Literal["file", "email", "print"]


class FileExportRequest(BaseModel):
    channel: Literal["file"] = "file"
    filename: Optional[str] = None


class EmailExportRequest(BaseModel):
    channel: Literal["email"] = "email"
    address: str
    subject: Optional[str] = None
    body: Optional[str] = None


class PrintExportRequest(BaseModel):
    channel: Literal["print"] = "print"


ExportRequest = Annotated[
    Union[FileExportRequest, EmailExportRequest, PrintExportRequest],
    Field(discriminator="channel"),
]


class ExportResult(BaseModel):
    channel: ExportChannelName
    ok: bool
    detail: Optional[str] = None
    error: Optional[str] = None
