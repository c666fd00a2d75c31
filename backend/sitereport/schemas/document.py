from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class MediaItem(BaseModel):
    kind: Literal["photo"] = "photo"
    photo_id: str
    url: str
    caption: Optional[str] = None
    taken_on: Optional[str] = None


class Placeholder(BaseModel):
    kind: Literal["placeholder"] = "placeholder"
    ref_id: str
    message: str = "Photo unavailable"


MediaEntry = Annotated[Union[MediaItem, Placeholder], Field(discriminator="kind")]


class TextBlock(BaseModel):
    kind: Literal["text"] = "text"
    heading: str
    text: str


class TableBlock(BaseModel):
    kind: Literal["table"] = "table"
    heading: str
    columns: list[str]
    rows: list[list[str]] = Field(default_factory=list)
    footer: Optional[list[str]] = None
    row_colors: Optional[list[Optional[str]]] = None


class MediaBlock(BaseModel):
    kind: Literal["media"] = "media"
    heading: str
    items: list[MediaEntry] = Field(default_factory=list)


class ComparisonBlock(BaseModel):
    """A before/after pair laid out side by side with its description."""

    kind: Literal["comparison"] = "comparison"
    heading: str
    before: MediaEntry
    after: MediaEntry
    description: str = ""
    materials: list[str] = Field(default_factory=list)


class ProgressBlock(BaseModel):
    kind: Literal["progress"] = "progress"
    heading: str
    percentage: int
    label: str


class PlaceholderBlock(BaseModel):
    kind: Literal["missing"] = "missing"
    heading: str
    message: str


Block = Annotated[
    Union[TextBlock, TableBlock, MediaBlock, ComparisonBlock, ProgressBlock, PlaceholderBlock],
    Field(discriminator="kind"),
]


class RenderedDocument(BaseModel):
    report_id: Optional[str] = None
    report_type: str
    title: str
    subtitle: str
    summary: str = ""
    generated_on: str
    blocks: list[Block] = Field(default_factory=list)
