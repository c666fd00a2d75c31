from contextlib import asynccontextmanager

from fastapi import FastAPI

from sitereport.api.routes import router
from sitereport.config.settings import Settings, settings
from sitereport.db.session import create_tables
from sitereport.logging_config import configure_logging


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app_settings = app_settings or settings
    logger = configure_logging(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await create_tables()
        logger.info("Site report API started")
        yield

    app = FastAPI(title="Site Report API", lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
