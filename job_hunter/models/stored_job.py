"""Stored job model: one row per external posting id ever evaluated."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class StoredJob(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    company: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    work_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    apply_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    posted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_date_confidence: Mapped[str] = mapped_column(String(10), default="LOW")
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    ai_score: Mapped[int] = mapped_column(Integer, nullable=False)
    ai_verdict: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    ai_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False)
    duplicate_of_job_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("jobs.id"), nullable=True
    )
    group_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("search_groups.id"), nullable=True
    )

    # Written later by the dashboard / digest, never by scoring
    seen: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied: Mapped[bool] = mapped_column(Boolean, default=False)
    user_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "work_mode": self.work_mode,
            "url": self.url,
            "apply_url": self.apply_url,
            "posted_date": self.posted_date.isoformat() if self.posted_date else None,
            "posted_date_confidence": self.posted_date_confidence,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "ai_score": self.ai_score,
            "ai_verdict": self.ai_verdict,
            "ai_rationale": self.ai_rationale,
            "ai_summary": self.ai_summary,
            "rejection_category": self.rejection_category,
            "is_duplicate": self.is_duplicate,
            "duplicate_of_job_id": self.duplicate_of_job_id,
            "group_id": self.group_id,
            "seen": self.seen,
            "applied": self.applied,
        }
