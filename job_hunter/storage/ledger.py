"""Run ledger: the search_runs row and the per-posting audit log of one run."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from job_hunter.errors import PersistenceError
from job_hunter.jobs.models import CanonicalPosting
from job_hunter.matching.ai_judge import DedupOutcome, ScoredPosting
from job_hunter.models import RunJobLog, SearchRun
from job_hunter.models.run_job_log import OUTCOME_DUPLICATE
from job_hunter.models.search_run import (
    STATUS_FAILED,
    STATUS_PARTIAL_ERROR,
    STATUS_RUNNING,
    STATUS_SUCCESS,
)
from job_hunter.storage.database import insert_jobs_ignore_existing

logger = logging.getLogger("job_hunter.storage.ledger")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunStats:
    jobs_fetched: int = 0
    jobs_scored: int = 0
    jobs_strong_match: int = 0
    jobs_weak_match: int = 0
    jobs_no_match: int = 0
    jobs_duplicate: int = 0


class RunLedger:
    """Creates, feeds and finalizes one search_runs row.

    Log entries and job inserts are buffered per group and written by
    ``flush()`` in a single transaction.
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = _utcnow):
        self.session = session
        self.clock = clock
        self.run_id: Optional[int] = None
        self.started_at = clock()
        self._pending_logs: list[RunJobLog] = []
        self._pending_jobs: list[dict] = []

    def start(self, trigger: str) -> int:
        run = SearchRun(ran_at=self.started_at, trigger=trigger, status=STATUS_RUNNING)
        self.session.add(run)
        self.session.commit()
        self.run_id = run.id
        logger.info("Run ID: %d (%s)", run.id, trigger)
        return run.id

    def log(
        self,
        group_id: Optional[int],
        posting: CanonicalPosting,
        outcome: str,
        scored: Optional[ScoredPosting] = None,
        dedup: Optional[DedupOutcome] = None,
    ) -> None:
        self._pending_logs.append(RunJobLog(
            run_id=self.run_id,
            group_id=group_id,
            external_id=posting.external_id,
            title=posting.title,
            company=posting.company,
            location=posting.location or None,
            url=posting.url or None,
            outcome=outcome,
            ai_score=scored.score if scored else None,
            ai_rationale=(scored.rationale or None) if scored else None,
            rejection_category=scored.rejection_category if scored else None,
            duplicate_of_job_id=dedup.duplicate_of_id if dedup else None,
            logged_at=self.clock(),
        ))

    def log_many(self, group_id: Optional[int], postings: list[CanonicalPosting], outcome: str) -> None:
        for posting in postings:
            self.log(group_id, posting, outcome)

    def record_scored(self, group_id: Optional[int], scored: ScoredPosting, dedup: DedupOutcome) -> None:
        """Buffer both the audit entry and the stored job for a scored posting."""
        outcome = OUTCOME_DUPLICATE if dedup.is_duplicate else scored.verdict.value
        self.log(group_id, scored.posting, outcome, scored=scored, dedup=dedup)

        posting = scored.posting
        now = self.clock()
        self._pending_jobs.append({
            "external_id": posting.external_id,
            "title": posting.title,
            "company": posting.company,
            "location": posting.location or None,
            "work_mode": posting.work_mode.value,
            "description": posting.description,
            "url": posting.url or None,
            "apply_url": posting.apply_url,
            "posted_date": posting.posted_date,
            "posted_date_confidence": posting.posted_date_confidence.value,
            "fetched_at": now,
            "ai_score": scored.score,
            "ai_verdict": scored.verdict.value,
            "ai_rationale": scored.rationale or None,
            "ai_summary": None if dedup.is_duplicate else scored.summary,
            "rejection_category": scored.rejection_category,
            "is_duplicate": dedup.is_duplicate,
            "duplicate_of_job_id": dedup.duplicate_of_id,
            "group_id": group_id,
            # Duplicates never go out in a digest
            "seen": dedup.is_duplicate,
            "seen_at": now if dedup.is_duplicate else None,
            "applied": False,
        })

    def flush(self) -> None:
        """Write buffered log entries and jobs atomically; roll back this batch on error."""
        if not self._pending_logs and not self._pending_jobs:
            return
        logs, jobs = self._pending_logs, self._pending_jobs
        self._pending_logs, self._pending_jobs = [], []
        try:
            self.session.add_all(logs)
            insert_jobs_ignore_existing(self.session, jobs)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"batch write failed ({len(logs)} logs, {len(jobs)} jobs): {e}") from e

    def finish(self, stats: RunStats, errors: list[str]) -> str:
        status = STATUS_SUCCESS if not errors else STATUS_PARTIAL_ERROR
        run = self.session.get(SearchRun, self.run_id)
        run.jobs_fetched = stats.jobs_fetched
        run.jobs_scored = stats.jobs_scored
        run.jobs_strong_match = stats.jobs_strong_match
        run.jobs_weak_match = stats.jobs_weak_match
        run.jobs_no_match = stats.jobs_no_match
        run.jobs_duplicate = stats.jobs_duplicate
        run.status = status
        run.error_log = "\n".join(errors) if errors else None
        run.duration_ms = self.elapsed_ms()
        self.session.commit()
        return status

    def fail(self, message: str, trigger: str) -> None:
        """Mark the run failed, inserting the row only when start() never ran."""
        self.session.rollback()
        run = self.session.get(SearchRun, self.run_id) if self.run_id is not None else None
        if run is None:
            run = SearchRun(ran_at=self.started_at, trigger=trigger)
            self.session.add(run)
        run.status = STATUS_FAILED
        run.error_log = message
        run.duration_ms = self.elapsed_ms()
        self.session.commit()
        self.run_id = run.id

    def elapsed_ms(self) -> int:
        return int((self.clock() - self.started_at).total_seconds() * 1000)
