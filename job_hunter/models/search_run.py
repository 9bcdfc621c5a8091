"""Search run model: one row per pipeline execution."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_PARTIAL_ERROR = "partial_error"
STATUS_FAILED = "failed"


class SearchRun(Base):
    __tablename__ = "search_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ran_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    trigger: Mapped[str] = mapped_column(String(20), default="scheduled")  # scheduled, manual
    status: Mapped[str] = mapped_column(String(20), default=STATUS_RUNNING)

    jobs_fetched: Mapped[int] = mapped_column(Integer, default=0)
    jobs_scored: Mapped[int] = mapped_column(Integer, default=0)
    jobs_strong_match: Mapped[int] = mapped_column(Integer, default=0)
    jobs_weak_match: Mapped[int] = mapped_column(Integer, default=0)
    jobs_no_match: Mapped[int] = mapped_column(Integer, default=0)
    jobs_duplicate: Mapped[int] = mapped_column(Integer, default=0)

    error_log: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    job_logs: Mapped[list["RunJobLog"]] = relationship(back_populates="run")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ran_at": self.ran_at.isoformat() if self.ran_at else None,
            "trigger": self.trigger,
            "status": self.status,
            "jobs_fetched": self.jobs_fetched,
            "jobs_scored": self.jobs_scored,
            "jobs_strong_match": self.jobs_strong_match,
            "jobs_weak_match": self.jobs_weak_match,
            "jobs_no_match": self.jobs_no_match,
            "jobs_duplicate": self.jobs_duplicate,
            "error_log": self.error_log,
            "duration_ms": self.duration_ms,
        }
