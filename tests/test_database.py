"""Tests for storage helpers: idempotent inserts, prior-match lookup, digest queries, stats."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from job_hunter.models import SearchRun, StoredJob
from job_hunter.storage.database import (
    find_prior_strong_matches,
    get_stats,
    insert_jobs_ignore_existing,
    mark_jobs_seen,
    query_jobs,
    unseen_strong_matches,
)

BASE_TIME = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _row(external_id, verdict="STRONG_MATCH", score=85, company="Acme", title="Backend Engineer", **extra):
    row = {
        "external_id": external_id,
        "title": title,
        "company": company,
        "description": f"Description of {external_id}",
        "ai_score": score,
        "ai_verdict": verdict,
        "is_duplicate": False,
        "seen": False,
        "fetched_at": BASE_TIME,
    }
    row.update(extra)
    return row


@pytest.fixture
def stored(session):
    insert_jobs_ignore_existing(session, [
        _row("s1", fetched_at=BASE_TIME),
        _row("s2", fetched_at=BASE_TIME + timedelta(hours=1), company="ACME", title="backend engineer"),
        _row("dup", is_duplicate=True, seen=True),
        _row("weak", verdict="WEAK_MATCH", score=65),
        _row("other", company="Globex", score=95),
    ])
    session.commit()
    return session


def _count(session):
    return session.scalar(select(func.count()).select_from(StoredJob))


class TestInsertJobs:
    def test_existing_ids_are_skipped(self, session):
        insert_jobs_ignore_existing(session, [_row("a", score=90)])
        session.commit()
        insert_jobs_ignore_existing(session, [_row("a", score=10), _row("b")])
        session.commit()

        assert _count(session) == 2
        kept = session.scalars(select(StoredJob).where(StoredJob.external_id == "a")).one()
        assert kept.ai_score == 90

    def test_empty_rows(self, session):
        insert_jobs_ignore_existing(session, [])
        assert _count(session) == 0


class TestFindPriorStrongMatches:
    def test_same_company_and_title_newest_first(self, stored):
        prior = find_prior_strong_matches(stored, "acme", "Backend Engineer")
        assert [p.description for p in prior] == ["Description of s2", "Description of s1"]

    def test_excludes_duplicates_and_other_verdicts(self, stored):
        prior = find_prior_strong_matches(stored, "Acme", "Backend Engineer")
        ids = {p.id for p in prior}
        excluded = stored.scalars(
            select(StoredJob.id).where(StoredJob.external_id.in_(["dup", "weak", "other"]))
        ).all()
        assert ids.isdisjoint(excluded)

    def test_limit(self, stored):
        assert len(find_prior_strong_matches(stored, "Acme", "Backend Engineer", limit=1)) == 1

    def test_none_for_new_company(self, stored):
        assert find_prior_strong_matches(stored, "Initech", "Backend Engineer") == []


class TestDigestQueries:
    def test_unseen_strong_matches_by_score(self, stored):
        jobs = unseen_strong_matches(stored)
        assert [j.external_id for j in jobs][0] == "other"
        assert {j.external_id for j in jobs} == {"s1", "s2", "other"}

    def test_mark_seen(self, stored):
        jobs = unseen_strong_matches(stored)
        mark_jobs_seen(stored, [j.id for j in jobs], BASE_TIME)
        assert unseen_strong_matches(stored) == []


class TestQueryJobs:
    def test_filter_by_verdict(self, stored):
        assert [j.external_id for j in query_jobs(stored, verdict="WEAK_MATCH")] == ["weak"]

    def test_filter_by_company_is_case_insensitive(self, stored):
        assert {j.external_id for j in query_jobs(stored, company=" globex ")} == {"other"}

    def test_filter_by_date_range(self, stored):
        jobs = query_jobs(stored, since=BASE_TIME + timedelta(minutes=30))
        assert [j.external_id for j in jobs] == ["s2"]


class TestGetStats:
    def test_empty_database(self, session):
        stats = get_stats(session)
        assert stats["total_jobs_tracked"] == 0
        assert stats["total_runs"] == 0
        assert "last_run" not in stats

    def test_counts(self, stored):
        stored.add(SearchRun(ran_at=BASE_TIME, trigger="manual", status="success", jobs_fetched=5))
        stored.commit()

        stats = get_stats(stored)
        assert stats["total_jobs_tracked"] == 5
        assert stats["unseen_strong_matches"] == 3
        assert stats["by_verdict"] == {"STRONG_MATCH": 4, "WEAK_MATCH": 1}
        assert stats["last_run"]["jobs_fetched"] == 5
