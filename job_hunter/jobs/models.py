"""Canonical job posting model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

MAX_DESCRIPTION_LENGTH = 20_000


class WorkMode(str, Enum):
    REMOTE = "remote"
    HYBRID = "hybrid"
    ONSITE = "onsite"


class DateConfidence(str, Enum):
    HIGH = "HIGH"
    LOW = "LOW"


@dataclass(frozen=True)
class CanonicalPosting:
    """Provider-agnostic job ad. Never mutated after the source adapter builds it."""

    external_id: str
    title: str
    company: str
    url: str
    location: str = ""
    work_mode: WorkMode = WorkMode.ONSITE
    description: str = ""
    apply_url: Optional[str] = None
    posted_date: Optional[datetime] = None
    posted_date_confidence: DateConfidence = DateConfidence.LOW

    @property
    def description_length(self) -> int:
        return len(self.description)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "external_id": self.external_id,
            "title": self.title,
            "company": self.company,
            "url": self.url,
            "location": self.location,
            "work_mode": self.work_mode.value,
            "description": self.description,
            "apply_url": self.apply_url,
            "posted_date": self.posted_date.isoformat() if self.posted_date else None,
            "posted_date_confidence": self.posted_date_confidence.value,
            "description_length": self.description_length,
        }
