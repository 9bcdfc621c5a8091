"""Run job log model: append-only audit row for every posting a run touched."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

OUTCOME_FILTERED = "FILTERED"
OUTCOME_BLACKLISTED = "BLACKLISTED"
OUTCOME_DUPLICATE = "DUPLICATE"


class RunJobLog(Base):
    __tablename__ = "run_job_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(Integer, ForeignKey("search_runs.id"), nullable=False, index=True)
    group_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("search_groups.id"), nullable=True)

    external_id: Mapped[str] = mapped_column(String(512), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    ai_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ai_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    duplicate_of_job_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    logged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    run: Mapped["SearchRun"] = relationship(back_populates="job_logs")
