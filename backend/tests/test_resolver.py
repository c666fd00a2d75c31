import asyncio
import datetime
import uuid
from unittest.mock import Mock

import pytest

from fakes import PROJECT_ID, FakeMilestoneProvider, FakePhotoProvider, FakeStore, make_milestone, make_photo
from sitereport.errors import RenderError
from sitereport.providers.rest import RestPhotoProvider
from sitereport.rendering.resolver import (
    LAYOUTS,
    TemplateResolver,
    format_date,
    format_money,
    rating_stars,
    status_color,
)
from sitereport.schemas.artifacts import ProjectSnapshot
from sitereport.schemas.content import (
    BeforeAfterTransformation,
    ClientApproval,
    ContractorPerformance,
    FinalProjectCompletion,
    ProjectProgress,
    ReportType,
)
from sitereport.schemas.document import ComparisonBlock, MediaBlock, Placeholder, PlaceholderBlock, TableBlock
from sitereport.schemas.report import Report


def make_report(report_type: ReportType, content, **kwargs) -> Report:
    return Report(
        id=kwargs.pop("id", uuid.uuid4()),
        project_id=uuid.UUID(PROJECT_ID),
        report_type=report_type,
        generated_at=datetime.datetime(2024, 3, 5, 14, 0),
        generated_by="user-1",
        content=content,
        **kwargs,
    )


def build_resolver(store=None, photos=None, milestones=None, logger=None) -> TemplateResolver:
    return TemplateResolver(
        store or FakeStore(),
        FakePhotoProvider(photos),
        FakeMilestoneProvider(milestones),
        logger=logger,
    )


def test_every_report_type_has_a_layout() -> None:
    assert set(LAYOUTS) == set(ReportType)


def test_derived_values() -> None:
    assert format_date(datetime.date(2024, 3, 5)) == "Mar 05, 2024"
    assert format_date(None) == ""
    assert format_money(1200) == "$1,200.00"
    assert rating_stars(4) == "★★★★☆"
    assert status_color("completed") == "#4caf50"
    assert status_color("in_progress") == "#ff9800"
    assert status_color("pending") == "#9e9e9e"
    assert status_color("blocked") == "#9e9e9e"


def test_before_after_renders_side_by_side_pairs() -> None:
    content = BeforeAfterTransformation(
        comparisons=[
            {"area": "Kitchen", "before_photo_id": "P1", "after_photo_id": "P2", "materials": ["oak"]},
            {"before_photo_id": "P3", "after_photo_id": "P4", "description": "Deck rebuilt"},
        ]
    )
    report = make_report(ReportType.BEFORE_AFTER_TRANSFORMATION, content)
    photos = [make_photo(f"P{n}", day=n) for n in range(1, 5)]

    document = build_resolver().resolve(report, photos)

    comparisons = [block for block in document.blocks if isinstance(block, ComparisonBlock)]
    assert [(block.before.photo_id, block.after.photo_id) for block in comparisons] == [("P1", "P2"), ("P3", "P4")]
    assert [block.heading for block in comparisons] == ["Kitchen", "Unspecified Area"]
    assert comparisons[1].description == "Deck rebuilt"
    assert document.title == ReportType.BEFORE_AFTER_TRANSFORMATION.value
    assert document.generated_on == "Mar 05, 2024"


def test_missing_photo_becomes_placeholder_and_is_logged() -> None:
    logger = Mock()
    content = ClientApproval(work_summary="Done", cost_breakdown="$200", photo_ids=["p1", "gone"])
    report = make_report(ReportType.CLIENT_APPROVAL, content)

    document = build_resolver(logger=logger).resolve(report, [make_photo("p1")])

    media = next(block for block in document.blocks if isinstance(block, MediaBlock))
    assert media.items[0].kind == "photo"
    assert isinstance(media.items[1], Placeholder)
    assert media.items[1].ref_id == "gone"
    assert logger.warning.called
    assert any(isinstance(block, PlaceholderBlock) for block in document.blocks)


def test_progress_layout_colors_and_percentage() -> None:
    content = ProjectProgress(
        recent_accomplishments="Roof on",
        completion_percentage=57.4,
        milestone_statuses=[
            {"milestone_id": "m1", "title": "Foundation", "status": "completed"},
            {"milestone_id": "m2", "title": "Framing", "status": "in_progress"},
            {"milestone_id": "m3", "title": "Finish", "status": "pending"},
        ],
    )
    report = make_report(
        ReportType.PROJECT_PROGRESS,
        content,
        project_snapshot=ProjectSnapshot(id=PROJECT_ID, name="Oak Street", client_name="Rivera"),
    )

    document = build_resolver().resolve(report, [], [make_milestone("m1", "completed")])

    progress = next(block for block in document.blocks if block.kind == "progress")
    table = next(block for block in document.blocks if isinstance(block, TableBlock))
    assert progress.percentage == 57
    assert table.row_colors == ["#4caf50", "#ff9800", "#9e9e9e"]
    assert document.subtitle == "Oak Street | Rivera"


def test_final_completion_cost_footer() -> None:
    content = FinalProjectCompletion(
        warranty_information="Two years",
        costs={"items": [{"label": "A", "amount": 10}, {"label": "B", "amount": 15}]},
    )
    document = build_resolver().resolve(make_report(ReportType.FINAL_PROJECT_COMPLETION, content))

    costs = next(block for block in document.blocks if isinstance(block, TableBlock) and block.heading == "Final Costs")
    assert costs.rows == [["A", "$10.00"], ["B", "$15.00"]]
    assert costs.footer == ["Total", "$25.00"]


def test_contractor_rating_stars() -> None:
    content = ContractorPerformance(
        contractor_id="c-7",
        timeline_adherence="Slipped a week",
        quality_assessment="Solid",
        communication="Daily updates",
        issue_resolution="Fast",
        rating=3,
    )
    document = build_resolver().resolve(make_report(ReportType.CONTRACTOR_PERFORMANCE, content))

    rating = next(block for block in document.blocks if block.heading == "Overall Rating")
    assert rating.text == "★★★☆☆ (3/5)"


def test_content_type_mismatch_raises() -> None:
    content = ClientApproval(work_summary="Done", cost_breakdown="$200")
    report = Report.model_construct(
        id=uuid.uuid4(),
        project_id=uuid.UUID(PROJECT_ID),
        report_type=ReportType.PROJECT_PROGRESS,
        title=None,
        generated_at=None,
        generated_by=None,
        project_snapshot=None,
        updated_at=None,
        is_archived=False,
        content=content,
    )

    with pytest.raises(RenderError):
        build_resolver().resolve(report)


def test_resolve_by_id_refetches_linked_artifacts() -> None:
    content = ClientApproval(work_summary="Done", cost_breakdown="$200", photo_ids=["p1", "p2"])
    report = make_report(ReportType.CLIENT_APPROVAL, content)
    store = FakeStore([report], photo_ids={str(report.id): ["p1", "p2"]})
    resolver = build_resolver(store=store, photos=[make_photo("p1")])

    document = asyncio.run(resolver.resolve_by_id(report.id))

    media = next(block for block in document.blocks if isinstance(block, MediaBlock))
    assert [item.kind for item in media.items] == ["photo", "placeholder"]
    assert document.report_id == str(report.id)


def test_resolve_by_id_survives_provider_outage() -> None:
    content = ClientApproval(work_summary="Done", cost_breakdown="$200", photo_ids=["p1"])
    report = make_report(ReportType.CLIENT_APPROVAL, content)
    store = FakeStore([report], photo_ids={str(report.id): ["p1"]})
    resolver = TemplateResolver(store, FakePhotoProvider([make_photo("p1")], fail=True), FakeMilestoneProvider())

    document = asyncio.run(resolver.resolve_by_id(report.id))

    media = next(block for block in document.blocks if isinstance(block, MediaBlock))
    assert media.items[0].kind == "placeholder"


class RowClient:
    def __init__(self, rows: dict) -> None:
        self.rows = rows

    async def get_one(self, table: str, row_id: str):
        return self.rows.get(row_id)


class KeyErrorPhotoProvider(FakePhotoProvider):
    async def get_by_id(self, photo_id: str):
        if photo_id == "broken":
            raise KeyError("id")
        return await super().get_by_id(photo_id)


def linked_approval_report(photo_ids: list[str]):
    report = make_report(
        ReportType.CLIENT_APPROVAL,
        ClientApproval(work_summary="Done", cost_breakdown="$200", photo_ids=photo_ids),
    )
    return report, FakeStore([report], photo_ids={str(report.id): photo_ids})


def test_unmappable_artifact_row_becomes_placeholder() -> None:
    report, store = linked_approval_report(["p1", "p2"])
    rows = {
        "p1": {"id": "p1", "url": "https://cdn.example.com/p1.jpg", "date": "2024-03-01T09:30:00"},
        "p2": {"id": "p2", "url": "https://cdn.example.com/p2.jpg", "date": "not-a-date"},
    }
    logger = Mock()
    resolver = TemplateResolver(store, RestPhotoProvider(RowClient(rows)), FakeMilestoneProvider(), logger=logger)

    document = asyncio.run(resolver.resolve_by_id(report.id))

    media = next(block for block in document.blocks if isinstance(block, MediaBlock))
    assert media.items[0].kind == "photo"
    assert isinstance(media.items[1], Placeholder)
    assert media.items[1].ref_id == "p2"
    assert logger.warning.called


def test_provider_lookup_error_becomes_placeholder() -> None:
    report, store = linked_approval_report(["p1", "broken"])
    resolver = TemplateResolver(store, KeyErrorPhotoProvider([make_photo("p1")]), FakeMilestoneProvider())

    document = asyncio.run(resolver.resolve_by_id(report.id))

    media = next(block for block in document.blocks if isinstance(block, MediaBlock))
    assert [getattr(item, "ref_id", None) for item in media.items] == [None, "broken"]
