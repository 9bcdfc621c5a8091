"""FastAPI application factory."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from job_hunter.config import load_config
from job_hunter.models import Settings, engine as default_engine
from job_hunter.pipeline import PipelineRunner
from job_hunter.scheduler import start_schedule, stop_schedule
from job_hunter.storage.database import init_db

from .api import router as api_router

logger = logging.getLogger("job_hunter.web")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables and install the schedule if enabled
    init_db(app.state.engine)
    runner: PipelineRunner = app.state.runner
    db = runner.session_factory()
    try:
        settings = db.get(Settings, 1)
        if settings is not None and settings.schedule_enabled:
            start_schedule(runner, settings.cron_schedule, settings.timezone)
        else:
            logger.info("Scheduled runs disabled in settings")
    finally:
        db.close()

    yield

    # Shutdown
    stop_schedule()


def create_app(runner: Optional[PipelineRunner] = None, engine=None) -> FastAPI:
    if runner is None:
        config_path = os.environ.get("JOB_HUNTER_CONFIG", "config.yaml")
        runner = PipelineRunner(load_config(config_path, required=False))

    app = FastAPI(title="Job Hunter", lifespan=lifespan)
    app.state.runner = runner
    app.state.engine = engine if engine is not None else default_engine

    app.include_router(api_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
