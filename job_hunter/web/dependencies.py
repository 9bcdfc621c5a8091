"""Shared FastAPI dependencies — DB session and the pipeline runner."""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from job_hunter.pipeline import PipelineRunner


def get_runner(request: Request) -> PipelineRunner:
    return request.app.state.runner


def get_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.runner.session_factory()
    try:
        yield db
    finally:
        db.close()
