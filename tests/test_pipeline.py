"""End-to-end pipeline tests against an in-memory database with fake provider and model."""

import threading
import time

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from job_hunter.errors import DigestError, PipelineBusyError
from job_hunter.matching.ai_judge import AIJudge
from job_hunter.models import BlacklistedCompany, RunJobLog, SearchGroup, SearchRun, Settings, StoredJob
from job_hunter.models.search_run import STATUS_FAILED, STATUS_PARTIAL_ERROR, STATUS_SUCCESS
from job_hunter.pipeline import PipelineRunner
from job_hunter.storage import ledger as ledger_module
from job_hunter.storage.database import insert_jobs_ignore_existing

DEFAULT_KEYWORD = "Software Engineer"


@pytest.fixture
def digests():
    return []


@pytest.fixture
def make_runner(session_factory, app_config, fake_ai, digests, fixed_now):
    def fake_digest(session, email, stats, resend_api_key="", now=None):
        digests.append(stats)
        return 0

    def judge_factory(run_config):
        return AIJudge(
            fake_ai,
            model=run_config.ai_model,
            summary_prompt=run_config.summary_prompt,
            dedup_prompt=run_config.dedup_system_prompt,
            timeout=run_config.ai_timeout_seconds,
        )

    def _make(fetcher, **kwargs):
        kwargs.setdefault("digest_sender", fake_digest)
        kwargs.setdefault("judge_factory", judge_factory)
        return PipelineRunner(
            app_config,
            session_factory=session_factory,
            fetcher=fetcher,
            clock=lambda: fixed_now,
            **kwargs,
        )

    return _make


@pytest.fixture
def second_group(session):
    group = SearchGroup(
        group_name="Platform",
        keywords=["Platform Engineer"],
        locations=["Remote"],
        ai_system_prompt="Score platform roles.",
    )
    session.add(group)
    session.commit()
    return group


def _logs(session, run_id):
    return session.scalars(select(RunJobLog).where(RunJobLog.run_id == run_id).order_by(RunJobLog.id)).all()


def _job_count(session):
    return session.scalar(select(func.count()).select_from(StoredJob))


def _job(session, external_id):
    return session.scalars(select(StoredJob).where(StoredJob.external_id == external_id)).one()


class TestVerdicts:
    def test_scores_map_to_verdicts(self, session, make_runner, make_posting, fake_ai, digests, make_fetcher):
        fake_ai.scores = {"Staff Engineer": 85, "Mid Engineer": 70, "Sales Lead": 40}
        fetcher = make_fetcher({DEFAULT_KEYWORD: [
            make_posting("strong", title="Staff Engineer"),
            make_posting("weak", title="Mid Engineer"),
            make_posting("none", title="Sales Lead"),
        ]})

        result = make_runner(fetcher).run()

        assert result.status == STATUS_SUCCESS
        assert (result.stats.jobs_fetched, result.stats.jobs_scored) == (3, 3)
        assert (result.stats.jobs_strong_match, result.stats.jobs_weak_match, result.stats.jobs_no_match) == (1, 1, 1)

        assert _job(session, "strong").ai_verdict == "STRONG_MATCH"
        assert _job(session, "strong").ai_summary == "Owns the payments platform."
        assert _job(session, "weak").ai_verdict == "WEAK_MATCH"
        no_match = _job(session, "none")
        assert no_match.ai_verdict == "NO_MATCH"
        assert no_match.rejection_category == "PROFILE_MISMATCH"

        assert [log.outcome for log in _logs(session, result.run_id)] == ["STRONG_MATCH", "WEAK_MATCH", "NO_MATCH"]
        # No prior strong match in storage, so no Call 2
        assert fake_ai.dedup_calls == []
        assert len(digests) == 1

    def test_run_row_matches_result(self, session, make_runner, make_posting, make_fetcher):
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("a"), make_posting("b")]})
        result = make_runner(fetcher).run(trigger="manual")

        run = session.get(SearchRun, result.run_id)
        assert run.status == STATUS_SUCCESS
        assert run.trigger == "manual"
        assert run.jobs_fetched == 2
        assert run.jobs_no_match == 2
        assert run.duration_ms == 0
        assert result.to_dict()["jobs_no_match"] == 2

    def test_failed_scoring_is_omitted(self, session, make_runner, make_posting, fake_ai, make_fetcher):
        fake_ai.scores = {"Broken": RuntimeError("model overloaded")}
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("bad", title="Broken"), make_posting("ok")]})

        result = make_runner(fetcher).run()

        assert result.status == STATUS_SUCCESS
        assert result.stats.jobs_scored == 1
        assert _job_count(session) == 1
        assert [log.external_id for log in _logs(session, result.run_id)] == ["ok"]


class TestFiltersAndDedup:
    def test_same_id_three_times_collapses(self, session, make_runner, make_posting, fake_ai, make_fetcher):
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("x"), make_posting("x"), make_posting("x")]})

        result = make_runner(fetcher).run()

        assert len(fake_ai.scoring_calls) == 1
        assert result.stats.jobs_duplicate == 2
        assert _job_count(session) == 1
        outcomes = [log.outcome for log in _logs(session, result.run_id)]
        assert outcomes.count("DUPLICATE") == 2
        assert outcomes.count("NO_MATCH") == 1

    def test_company_title_guard_skips_second_call(
        self, session, make_runner, make_posting, make_fetcher, fake_ai
    ):
        insert_jobs_ignore_existing(session, [{
            "external_id": "old", "title": "Staff Engineer", "company": "Acme",
            "description": "Earlier listing.", "ai_score": 90, "ai_verdict": "STRONG_MATCH",
        }])
        session.commit()
        fake_ai.scores = {"Staff Engineer": 88}
        fetcher = make_fetcher({DEFAULT_KEYWORD: [
            make_posting("a", title="Staff Engineer"),
            make_posting("b", title="Staff Engineer"),
        ]})

        result = make_runner(fetcher).run()

        assert len(fake_ai.scoring_calls) == 2
        assert len(fake_ai.dedup_calls) == 1
        assert result.stats.jobs_strong_match == 1
        assert result.stats.jobs_duplicate == 1
        assert not _job(session, "a").is_duplicate
        second = _job(session, "b")
        assert second.is_duplicate and second.seen
        assert [log.outcome for log in _logs(session, result.run_id)] == ["STRONG_MATCH", "DUPLICATE"]

    def test_semantic_duplicate_points_at_prior(self, session, make_runner, make_posting, fake_ai, make_fetcher):
        insert_jobs_ignore_existing(session, [{
            "external_id": "old", "title": "Staff Engineer", "company": "Acme",
            "description": "Earlier listing.", "ai_score": 90, "ai_verdict": "STRONG_MATCH",
        }])
        session.commit()
        prior_id = _job(session, "old").id
        fake_ai.scores = {"Staff Engineer": 88}
        fake_ai.dedup = {"is_duplicate": True, "duplicate_of_id": prior_id}
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("repost", title="Staff Engineer")]})

        result = make_runner(fetcher).run()

        repost = _job(session, "repost")
        assert repost.is_duplicate
        assert repost.duplicate_of_job_id == prior_id
        assert repost.ai_summary is None
        log = _logs(session, result.run_id)[0]
        assert (log.outcome, log.duplicate_of_job_id) == ("DUPLICATE", prior_id)

    def test_blacklisted_company_never_scored(self, session, make_runner, make_posting, fake_ai, make_fetcher):
        session.add(BlacklistedCompany(company_name="evil corp"))
        session.commit()
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("b1", company="Evil Corp "), make_posting("ok")]})

        result = make_runner(fetcher).run()

        assert len(fake_ai.scoring_calls) == 1
        logs = _logs(session, result.run_id)
        assert [(log.external_id, log.outcome) for log in logs] == [("b1", "BLACKLISTED"), ("ok", "NO_MATCH")]
        assert logs[0].ai_score is None
        assert _job_count(session) == 1

    def test_title_filter_logs_removed(self, session, make_runner, make_posting, fake_ai, make_fetcher):
        session.execute(update(SearchGroup).values(title_filter="engineer"))
        session.commit()
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("s", title="Sales Lead"), make_posting("e")]})

        result = make_runner(fetcher).run()

        assert len(fake_ai.scoring_calls) == 1
        assert [log.outcome for log in _logs(session, result.run_id)] == ["FILTERED", "NO_MATCH"]

    def test_second_run_stores_nothing_new(self, session, make_runner, make_posting, fake_ai, make_fetcher):
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("a"), make_posting("b", title="Other")]})
        runner = make_runner(fetcher)

        first = runner.run()
        count_after_first = _job_count(session)
        second = runner.run()

        assert first.stats.jobs_scored == 2
        assert _job_count(session) == count_after_first == 2
        assert second.stats.jobs_scored == 0
        assert second.stats.jobs_duplicate == 2
        # Provider-level duplicates were logged by the first run only
        assert _logs(session, second.run_id) == []
        assert len(fake_ai.scoring_calls) == 2

    def test_cross_group_repeat_scored_once(
        self, session, make_runner, make_posting, make_fetcher, fake_ai, second_group
    ):
        fake_ai.scores = {"Staff Engineer": 85}
        shared = make_posting("X", title="Staff Engineer")
        fetcher = make_fetcher({DEFAULT_KEYWORD: [shared], "Platform Engineer": [shared]})

        result = make_runner(fetcher).run()

        assert result.stats.jobs_fetched == 2
        assert result.stats.jobs_scored == 1
        assert result.stats.jobs_strong_match == 1
        assert len(fake_ai.scoring_calls) == 1
        assert _job_count(session) == 1
        assert _job(session, "X").group_id != second_group.id
        logs = _logs(session, result.run_id)
        assert [(log.group_id, log.outcome) for log in logs][-1] == (second_group.id, "DUPLICATE")


class TestFailureIsolation:
    def test_fetch_error_isolated_to_group(
        self, session, make_runner, make_posting, make_fetcher, second_group, failing_source
    ):
        fetcher = make_fetcher({DEFAULT_KEYWORD: failing_source, "Platform Engineer": [make_posting("p1")]})

        result = make_runner(fetcher).run()

        assert result.status == STATUS_PARTIAL_ERROR
        assert "fetch error" in result.error_log
        assert "Invalid API key" in session.get(SearchRun, result.run_id).error_log
        assert _job(session, "p1").group_id == second_group.id

    def test_persistence_error_isolated_to_group(
        self, session, make_runner, make_posting, make_fetcher, second_group, monkeypatch
    ):
        real_insert = ledger_module.insert_jobs_ignore_existing
        calls = []

        def insert_failing_once(db, rows):
            calls.append(rows)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO jobs", {}, Exception("database is locked"))
            return real_insert(db, rows)

        monkeypatch.setattr(ledger_module, "insert_jobs_ignore_existing", insert_failing_once)
        fetcher = make_fetcher({DEFAULT_KEYWORD: [make_posting("a1")], "Platform Engineer": [make_posting("p1")]})

        result = make_runner(fetcher).run()

        assert result.status == STATUS_PARTIAL_ERROR
        assert "persistence error" in result.error_log
        assert [j.external_id for j in session.scalars(select(StoredJob))] == ["p1"]
        assert result.stats.jobs_scored == 1

    def test_unexpected_fetch_error_isolated_to_group(
        self, session, make_runner, make_posting, make_fetcher, second_group
    ):
        fetcher = make_fetcher({
            DEFAULT_KEYWORD: TypeError("sequence item 0: expected str instance, NoneType found"),
            "Platform Engineer": [make_posting("p1")],
        })

        result = make_runner(fetcher).run()

        assert result.status == STATUS_PARTIAL_ERROR
        assert "fetch error: TypeError" in result.error_log
        assert _job(session, "p1").group_id == second_group.id
        assert session.get(SearchRun, result.run_id).jobs_fetched == 1

    def test_rolled_back_group_releases_its_postings(
        self, session, make_runner, make_posting, make_fetcher, fake_ai, second_group, monkeypatch
    ):
        real_insert = ledger_module.insert_jobs_ignore_existing
        calls = []

        def insert_failing_once(db, rows):
            calls.append(rows)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO jobs", {}, Exception("database is locked"))
            return real_insert(db, rows)

        monkeypatch.setattr(ledger_module, "insert_jobs_ignore_existing", insert_failing_once)
        fake_ai.scores = {"Staff Engineer": 85}
        shared = make_posting("X", title="Staff Engineer")
        fetcher = make_fetcher({DEFAULT_KEYWORD: [shared], "Platform Engineer": [shared]})

        result = make_runner(fetcher).run()

        assert result.status == STATUS_PARTIAL_ERROR
        stored = _job(session, "X")
        assert stored.group_id == second_group.id
        assert not stored.is_duplicate
        assert result.stats.jobs_strong_match == 1
        assert [log.outcome for log in _logs(session, result.run_id)] == ["STRONG_MATCH"]

    def test_digest_failure_is_partial(self, session, make_runner, make_posting, make_fetcher):
        def broken_digest(*args, **kwargs):
            raise DigestError("SMTP error: connection refused")

        result = make_runner(make_fetcher(), digest_sender=broken_digest).run()

        assert result.status == STATUS_PARTIAL_ERROR
        assert "Email send error" in session.get(SearchRun, result.run_id).error_log

    def test_digest_skipped_when_disabled(self, session, make_runner, digests, make_fetcher):
        session.get(Settings, 1).email_enabled = False
        session.commit()

        result = make_runner(make_fetcher()).run()

        assert result.status == STATUS_SUCCESS
        assert digests == []


class TestRunLifecycle:
    def test_config_error_before_run_id_records_one_failed_run(self, session, make_runner, fetcher):
        session.execute(update(SearchGroup).values(is_active=False))
        session.commit()

        result = make_runner(fetcher).run()

        runs = session.scalars(select(SearchRun)).all()
        assert len(runs) == 1
        assert runs[0].status == STATUS_FAILED
        assert "No active roles" in runs[0].error_log
        assert result.status == STATUS_FAILED
        assert result.run_id == runs[0].id
        assert fetcher.calls == []

    def test_fatal_error_after_run_id_updates_same_row(self, session, make_runner, fetcher):
        def broken_factory(run_config):
            raise RuntimeError("openai client unavailable")

        result = make_runner(fetcher, judge_factory=broken_factory).run()

        runs = session.scalars(select(SearchRun)).all()
        assert len(runs) == 1
        assert runs[0].id == result.run_id
        assert runs[0].status == STATUS_FAILED
        assert runs[0].error_log == "openai client unavailable"

    def test_busy_trigger_is_rejected_without_a_run_row(self, session, make_runner, fetcher):
        runner = make_runner(fetcher)
        assert runner.state.try_acquire()
        try:
            with pytest.raises(PipelineBusyError):
                runner.run()
            assert runner.start_in_background() is False
        finally:
            runner.state.release()

        assert session.scalar(select(func.count()).select_from(SearchRun)) == 0
        assert not runner.is_running

    def test_lock_released_after_fatal_error(self, make_runner, fetcher):
        def broken_factory(run_config):
            raise RuntimeError("boom")

        runner = make_runner(fetcher, judge_factory=broken_factory)
        runner.run()
        assert not runner.is_running

    def test_background_run_holds_the_gate(self, session, make_runner, make_posting):
        release = threading.Event()
        entered = threading.Event()

        def slow_fetcher(filters, api_key, **kwargs):
            entered.set()
            release.wait(timeout=5)
            return [make_posting("bg")]

        runner = make_runner(slow_fetcher)
        assert runner.start_in_background() is True
        assert entered.wait(timeout=5)

        assert runner.is_running
        assert runner.start_in_background() is False
        with pytest.raises(PipelineBusyError):
            runner.run()

        release.set()
        deadline = time.monotonic() + 5
        while runner.is_running and time.monotonic() < deadline:
            time.sleep(0.01)

        assert not runner.is_running
        assert runner.state.last_result.status == STATUS_SUCCESS
        assert runner.state.last_result.trigger == "manual"
        assert session.scalar(select(func.count()).select_from(SearchRun)) == 1
