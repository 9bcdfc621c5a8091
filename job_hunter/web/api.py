"""JSON routes — trigger a run, read its status, check configuration, list jobs."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from job_hunter.config import GroupConfig, collect_config_errors
from job_hunter.models import SearchGroup, SearchRun, Settings
from job_hunter.pipeline import TRIGGER_MANUAL, PipelineRunner
from job_hunter.scheduler import get_next_run_time
from job_hunter.storage.database import query_jobs

from .dependencies import get_db, get_runner

router = APIRouter(prefix="/api")


@router.post("/run")
def run_now(runner: PipelineRunner = Depends(get_runner)):
    if not runner.start_in_background(TRIGGER_MANUAL):
        return JSONResponse({"success": False, "error": "Pipeline is already running."}, status_code=409)
    return {"success": True}


@router.get("/status")
def status(runner: PipelineRunner = Depends(get_runner), db: Session = Depends(get_db)):
    last = runner.state.last_result
    if last is not None:
        last_run = last.to_dict()
    else:
        row = db.scalars(select(SearchRun).order_by(SearchRun.id.desc()).limit(1)).first()
        last_run = row.to_dict() if row else None

    next_run = get_next_run_time()
    return {
        "is_running": runner.is_running,
        "last_run": last_run,
        "next_run": next_run.isoformat() if next_run else None,
    }


@router.get("/preflight")
def preflight(runner: PipelineRunner = Depends(get_runner), db: Session = Depends(get_db)):
    """Report the problems that would stop a run, without starting one."""
    settings = db.get(Settings, 1)
    rows = db.scalars(select(SearchGroup).where(SearchGroup.is_active.is_(True)).order_by(SearchGroup.id)).all()
    groups = [GroupConfig.from_row(row) for row in rows]
    errors = collect_config_errors(settings, groups, runner.app_config)
    return {"ok": not errors, "errors": errors}


@router.get("/jobs")
def list_jobs(
    verdict: Optional[str] = None,
    group_id: Optional[int] = None,
    company: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    jobs = query_jobs(db, verdict=verdict, group_id=group_id, since=since, until=until, company=company, limit=limit)
    return {"jobs": [job.to_dict() for job in jobs]}
