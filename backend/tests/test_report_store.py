import asyncio
import datetime
import uuid

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fakes import PROJECT_ID
from sitereport.db.models import Base, ReportMilestoneLink, ReportPhotoLink, ReportRow
from sitereport.errors import InvalidVariantError, NotFoundError, PersistenceError, ValidationError
from sitereport.schemas.content import ClientApproval, FinalProjectCompletion, ReportType
from sitereport.schemas.report import Report
from sitereport.store.reports import ReportStore


async def open_store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reports.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
    return engine, sessionmaker, ReportStore(sessionmaker)


def approval_report(photo_ids=None, generated_at=None, project_id=PROJECT_ID) -> Report:
    return Report(
        project_id=uuid.UUID(project_id),
        report_type=ReportType.CLIENT_APPROVAL,
        title="Kitchen sign-off",
        generated_at=generated_at,
        generated_by="user-1",
        content=ClientApproval(work_summary="Cabinets installed", cost_breakdown="$4,000", photo_ids=photo_ids or []),
    )


def final_report() -> Report:
    return Report(
        project_id=uuid.UUID(PROJECT_ID),
        report_type=ReportType.FINAL_PROJECT_COMPLETION,
        content=FinalProjectCompletion(
            warranty_information="One year",
            before_photo_ids=["b1"],
            after_photo_ids=["a1"],
            milestone_summary=[{"milestone_id": "m1", "title": "Demo", "status": "completed"}],
        ),
    )


def test_create_then_get_round_trips(tmp_path) -> None:
    async def scenario():
        engine, _, store = await open_store(tmp_path)
        created = await store.create(approval_report(["p1", "p2"]))
        loaded = await store.get_by_id(created.id)
        photo_ids = await store.linked_photo_ids(created.id)
        await engine.dispose()
        return created, loaded, photo_ids

    created, loaded, photo_ids = asyncio.run(scenario())

    assert created.id is not None
    assert created.generated_at is not None
    assert loaded.content == created.content
    assert loaded.title == "Kitchen sign-off"
    assert loaded.generated_by == "user-1"
    assert photo_ids == ["p1", "p2"]


def test_delete_removes_report_and_links(tmp_path) -> None:
    async def scenario():
        engine, _, store = await open_store(tmp_path)
        created = await store.create(approval_report(["p1"]))
        await store.delete(created.id)
        photo_ids = await store.linked_photo_ids(created.id)
        with pytest.raises(NotFoundError):
            await store.get_by_id(created.id)
        with pytest.raises(NotFoundError):
            await store.delete(created.id)
        await engine.dispose()
        return photo_ids

    assert asyncio.run(scenario()) == []


def test_list_by_project_newest_first(tmp_path) -> None:
    other_project = str(uuid.uuid4())

    async def scenario():
        engine, _, store = await open_store(tmp_path)
        older = await store.create(approval_report(generated_at=datetime.datetime(2024, 1, 1)))
        newer = await store.create(approval_report(generated_at=datetime.datetime(2024, 2, 1)))
        await store.create(approval_report(project_id=other_project))
        listed = await store.list_by_project(PROJECT_ID)
        await engine.dispose()
        return older, newer, listed

    older, newer, listed = asyncio.run(scenario())

    assert [report.id for report in listed] == [newer.id, older.id]


@pytest.mark.parametrize("project_id", ["not-a-valid-id", "", None])
def test_list_by_project_with_invalid_id_is_empty(tmp_path, project_id) -> None:
    async def scenario():
        engine, _, store = await open_store(tmp_path)
        await store.create(approval_report())
        listed = await store.list_by_project(project_id)
        await engine.dispose()
        return listed

    assert asyncio.run(scenario()) == []


def test_update_changing_type_is_rejected_whole(tmp_path) -> None:
    async def scenario():
        engine, _, store = await open_store(tmp_path)
        created = await store.create(approval_report())
        with pytest.raises(InvalidVariantError):
            await store.update(
                created.id, {"report_type": ReportType.PROJECT_PROGRESS.value, "title": "Renamed"}
            )
        loaded = await store.get_by_id(created.id)
        await engine.dispose()
        return loaded

    loaded = asyncio.run(scenario())

    assert loaded.title == "Kitchen sign-off"
    assert loaded.report_type is ReportType.CLIENT_APPROVAL


def test_update_merges_content_and_resyncs_links(tmp_path) -> None:
    async def scenario():
        engine, _, store = await open_store(tmp_path)
        created = await store.create(final_report())
        updated = await store.update(
            created.id,
            {
                "is_archived": True,
                "content": {
                    "after_photo_ids": ["a2"],
                    "costs": {"items": [{"label": "A", "amount": 10}, {"label": "B", "amount": 15}], "total": 999},
                },
            },
        )
        photo_ids = await store.linked_photo_ids(created.id)
        milestone_ids = await store.linked_milestone_ids(created.id)
        await engine.dispose()
        return updated, photo_ids, milestone_ids

    updated, photo_ids, milestone_ids = asyncio.run(scenario())

    assert updated.is_archived is True
    assert updated.content.warranty_information == "One year"
    assert updated.content.costs.total == 25
    assert photo_ids == ["b1", "a2"]
    assert milestone_ids == ["m1"]


def test_update_rejects_unknown_keys_and_invalid_content(tmp_path) -> None:
    async def scenario():
        engine, _, store = await open_store(tmp_path)
        created = await store.create(approval_report())
        with pytest.raises(ValidationError) as unknown:
            await store.update(created.id, {"project_id": str(uuid.uuid4())})
        with pytest.raises(ValidationError) as blank:
            await store.update(created.id, {"content": {"work_summary": ""}, "title": "Changed"})
        with pytest.raises(NotFoundError):
            await store.update(uuid.uuid4(), {"title": "Nobody"})
        loaded = await store.get_by_id(created.id)
        await engine.dispose()
        return unknown.value, blank.value, loaded

    unknown, blank, loaded = asyncio.run(scenario())

    assert unknown.fields == ["project_id"]
    assert blank.fields == ["work_summary"]
    assert loaded.title == "Kitchen sign-off"


def test_unreadable_stored_content_is_a_persistence_error(tmp_path) -> None:
    report_id = uuid.uuid4()

    async def scenario():
        engine, sessionmaker, store = await open_store(tmp_path)
        async with sessionmaker() as session:
            session.add(
                ReportRow(
                    id=report_id,
                    project_id=uuid.UUID(PROJECT_ID),
                    report_type=ReportType.CLIENT_APPROVAL.value,
                    content={"work_summary": "Only half a report"},
                )
            )
            await session.commit()
        with pytest.raises(PersistenceError) as excinfo:
            await store.get_by_id(report_id)
        await engine.dispose()
        return excinfo.value

    error = asyncio.run(scenario())

    assert error.operation == "read"


def test_join_rows_carry_roles_and_status(tmp_path) -> None:
    async def scenario():
        engine, sessionmaker, store = await open_store(tmp_path)
        created = await store.create(final_report())
        async with sessionmaker() as session:
            photos = (await session.execute(
                ReportPhotoLink.__table__.select().order_by(ReportPhotoLink.display_order)
            )).all()
            milestones = (await session.execute(ReportMilestoneLink.__table__.select())).all()
        await engine.dispose()
        return created, photos, milestones

    created, photos, milestones = asyncio.run(scenario())

    assert [(row.photo_id, row.photo_role, row.display_order) for row in photos] == [
        ("b1", "before", 0),
        ("a1", "after", 1),
    ]
    assert [(row.milestone_id, row.status) for row in milestones] == [("m1", "completed")]
    assert all(row.report_id == created.id for row in photos)


def test_update_rejects_malformed_values_before_writing(tmp_path) -> None:
    async def scenario():
        engine, _, store = await open_store(tmp_path)
        created = await store.create(approval_report())
        with pytest.raises(ValidationError) as excinfo:
            await store.update(created.id, {"content": "oops", "title": 5, "is_archived": "yes"})
        with pytest.raises(ValidationError) as not_a_dict:
            await store.update(created.id, ["title"])
        loaded = await store.get_by_id(created.id)
        await engine.dispose()
        return excinfo.value, not_a_dict.value, loaded

    malformed, not_a_dict, loaded = asyncio.run(scenario())

    assert malformed.fields == ["content", "title", "is_archived"]
    assert not_a_dict.fields == ["patch"]
    assert loaded.title == "Kitchen sign-off"
    assert loaded.is_archived is False


def test_create_is_atomic_when_a_join_row_fails(tmp_path) -> None:
    report_id = uuid.uuid4()

    async def scenario():
        engine, sessionmaker, store = await open_store(tmp_path)
        # A leftover link row makes the new report's join insert violate the unique constraint
        async with sessionmaker() as session:
            session.add(ReportPhotoLink(report_id=report_id, photo_id="p1", photo_role="attachment"))
            await session.commit()
        with pytest.raises(PersistenceError) as excinfo:
            await store.create(approval_report(["p1"]).model_copy(update={"id": report_id}))
        with pytest.raises(NotFoundError):
            await store.get_by_id(report_id)
        listed = await store.list_by_project(PROJECT_ID)
        await engine.dispose()
        return excinfo.value, listed

    error, listed = asyncio.run(scenario())

    assert error.operation == "create"
    assert listed == []
