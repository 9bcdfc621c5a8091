"""Shared fixtures: in-memory database, postings, and fake provider / model clients."""

import json
import re
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from job_hunter.config import AIConfig, ApiKeys, AppConfig, EmailConfig, GroupConfig
from job_hunter.errors import SourceError
from job_hunter.jobs.models import CanonicalPosting, WorkMode
from job_hunter.matching.ai_judge import AIJudge
from job_hunter.storage.database import init_db

FIXED_NOW = datetime(2026, 3, 2, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with the settings row and a default group."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def app_config():
    return AppConfig(
        email=EmailConfig(recipient_email="me@example.com", email_from="jobs@example.com"),
        ai=AIConfig(model="gpt-4o-mini", timeout_seconds=5.0),
        api_keys=ApiKeys(serpapi_key="serp-test", openai_api_key="sk-test"),
    )


@pytest.fixture
def group():
    return GroupConfig(
        id=1,
        name="Backend",
        keywords=("Backend Engineer",),
        locations=("Remote",),
        work_modes=("remote",),
        job_type="fullTime",
        title_filter="",
        ai_system_prompt="Score backend roles.",
        no_match_max=50,
        weak_match_max=70,
        strong_match_min=71,
    )


def _posting(external_id, title="Backend Engineer", company="Acme", **kwargs):
    kwargs.setdefault("url", f"https://jobs.example.com/{external_id}")
    kwargs.setdefault("location", "Remote")
    kwargs.setdefault("work_mode", WorkMode.REMOTE)
    kwargs.setdefault("description", f"Build services for {company}. Python and Postgres.")
    return CanonicalPosting(external_id=external_id, title=title, company=company, **kwargs)


@pytest.fixture
def make_posting():
    return _posting


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeAIClient:
    """Stands in for openai.OpenAI; answers by posting title.

    ``scores`` maps a title to an int score, an exception to raise, or a raw
    string to return as the message content. ``dedup`` is the Call 2 payload,
    or a raw string returned as is.
    """

    def __init__(self, scores=None, dedup=None, default_score=40):
        self.scores = dict(scores or {})
        self.dedup = dedup
        self.default_score = default_score
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    @property
    def scoring_calls(self):
        return [c for c in self.calls if c["response_format"]["json_schema"]["name"] == "job_evaluation"]

    @property
    def dedup_calls(self):
        return [c for c in self.calls if c["response_format"]["json_schema"]["name"] == "dedup_check"]

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        user_message = kwargs["messages"][1]["content"]
        if kwargs["response_format"]["json_schema"]["name"] == "dedup_check":
            if isinstance(self.dedup, str):
                return _response(self.dedup)
            payload = self.dedup or {"is_duplicate": False, "duplicate_of_id": None}
            return _response(json.dumps(payload))

        title = re.search(r"Title: (.*)", user_message).group(1)
        value = self.scores.get(title, self.default_score)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, str):
            return _response(value)
        return _response(json.dumps({
            "score": value,
            "verdict": "WEAK_MATCH",
            "rationale": f"Scored {value}",
            "rejection_category": "PROFILE_MISMATCH" if value <= 50 else "NONE",
            "summary": "Owns the payments platform." if value >= 71 else None,
        }))


@pytest.fixture
def fake_ai():
    return FakeAIClient()


@pytest.fixture
def judge(fake_ai):
    return AIJudge(fake_ai, model="gpt-4o-mini", summary_prompt="Summarize.", dedup_prompt="Dedup.", timeout=5.0)


class FakeFetcher:
    """Stands in for fetch_jobs; answers by the group's first keyword."""

    def __init__(self, by_keyword=None):
        self.by_keyword = dict(by_keyword or {})
        self.calls = []

    def __call__(self, filters, api_key, max_results=100, timeout=60, now=None):
        self.calls.append(filters)
        result = self.by_keyword.get(filters.keywords[0], [])
        if isinstance(result, Exception):
            raise result
        return list(result)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def failing_source():
    return SourceError("SerpAPI error for 'Backend Engineer': Invalid API key.")
