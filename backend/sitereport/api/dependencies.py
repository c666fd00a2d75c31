from functools import lru_cache
from typing import Optional

from fastapi import Header

from sitereport.builder.report_builder import ReportBuilder
from sitereport.db.session import AsyncSessionLocal
from sitereport.export.pipeline import ExportService
from sitereport.providers.base import StaticSessionProvider
from sitereport.providers.rest import RestArtifactClient, RestMilestoneProvider, RestPhotoProvider
from sitereport.rendering.resolver import TemplateResolver
from sitereport.store.reports import ReportStore


@lru_cache
def _artifact_client() -> RestArtifactClient:
    return RestArtifactClient()


def get_photo_provider() -> RestPhotoProvider:
    return RestPhotoProvider(_artifact_client())


def get_milestone_provider() -> RestMilestoneProvider:
    return RestMilestoneProvider(_artifact_client())


@lru_cache
def get_store() -> ReportStore:
    return ReportStore(AsyncSessionLocal)


def get_builder(x_user_id: Optional[str] = Header(default=None)) -> ReportBuilder:
    return ReportBuilder(get_photo_provider(), get_milestone_provider(), StaticSessionProvider(x_user_id))


def get_resolver() -> TemplateResolver:
    return TemplateResolver(get_store(), get_photo_provider(), get_milestone_provider())


def get_export_service() -> ExportService:
    return ExportService(get_resolver())
