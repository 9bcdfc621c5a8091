"""Global settings model — a single row (id = 1) shared by every run."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Settings(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # AI config
    ai_model: Mapped[str] = mapped_column(String(100), default="gpt-4o-mini")
    dedup_system_prompt: Mapped[str] = mapped_column(Text, default="")
    summary_prompt: Mapped[str] = mapped_column(Text, default="")

    # API keys (empty = fall back to env / config.yaml)
    serpapi_key: Mapped[str] = mapped_column(String(255), default="")
    openai_api_key: Mapped[str] = mapped_column(String(255), default="")
    resend_api_key: Mapped[str] = mapped_column(String(255), default="")

    # Email config
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    email_recipient: Mapped[str] = mapped_column(String(255), default="")
    email_from: Mapped[str] = mapped_column(String(255), default="")

    # Schedule config
    schedule_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    cron_schedule: Mapped[str] = mapped_column(String(100), default="0 7 * * *")
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
