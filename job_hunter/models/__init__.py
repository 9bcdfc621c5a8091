"""ORM models for the job hunter pipeline."""

from .base import Base, SessionLocal, engine
from .blacklisted_company import BlacklistedCompany
from .run_job_log import RunJobLog
from .search_group import SearchGroup
from .search_run import SearchRun
from .settings import Settings
from .stored_job import StoredJob

__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "BlacklistedCompany",
    "RunJobLog",
    "SearchGroup",
    "SearchRun",
    "Settings",
    "StoredJob",
]
