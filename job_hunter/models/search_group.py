"""Search group model: one named bundle of search parameters, AI prompt and score thresholds."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SearchGroup(Base):
    __tablename__ = "search_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_name: Mapped[str] = mapped_column(String(255), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    keywords: Mapped[list] = mapped_column(JSON, default=list)
    locations: Mapped[list] = mapped_column(JSON, default=list)
    work_modes: Mapped[list] = mapped_column(JSON, default=lambda: ["remote", "hybrid", "onsite"])
    job_type: Mapped[str] = mapped_column(String(50), default="fullTime")
    title_filter: Mapped[str] = mapped_column(Text, default="")  # one phrase per line

    ai_system_prompt: Mapped[str] = mapped_column(Text, default="")
    score_no_match_max: Mapped[int] = mapped_column(Integer, default=50)
    score_weak_match_max: Mapped[int] = mapped_column(Integer, default=70)
    score_strong_match_min: Mapped[int] = mapped_column(Integer, default=71)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
