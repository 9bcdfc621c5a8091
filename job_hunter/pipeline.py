"""Pipeline orchestrator — runs every active search group once and records the run.

Per group: fetch → title filter → blacklist → within-run dedup → provider dedup
→ AI scoring (Call 1) → company+title guard / semantic dedup (Call 2) → store.
Then the digest goes out and the run row is finalized.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from job_hunter.config import AppConfig, GroupConfig, RunConfig, build_run_config
from job_hunter.errors import PersistenceError, PipelineBusyError, SourceError
from job_hunter.filtering.dedup import RunDedupState, filter_new_jobs
from job_hunter.filtering.filters import apply_blacklist, apply_title_filter, build_blacklist
from job_hunter.jobs.serpapi_source import SearchFilters, fetch_jobs
from job_hunter.matching.ai_judge import AIJudge, DedupOutcome, ScoredPosting, Verdict, needs_semantic_check
from job_hunter.models import BlacklistedCompany, SearchGroup, SessionLocal, Settings
from job_hunter.models.run_job_log import OUTCOME_BLACKLISTED, OUTCOME_DUPLICATE, OUTCOME_FILTERED
from job_hunter.models.search_run import STATUS_FAILED
from job_hunter.notifications.email_sender import send_digest
from job_hunter.storage.database import find_prior_strong_matches
from job_hunter.storage.ledger import RunLedger, RunStats

logger = logging.getLogger("job_hunter.pipeline")

TRIGGER_SCHEDULED = "scheduled"
TRIGGER_MANUAL = "manual"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineResult:
    ran_at: datetime
    trigger: str
    status: str
    duration_ms: int
    run_id: Optional[int] = None
    error_log: Optional[str] = None
    stats: RunStats = field(default_factory=RunStats)

    def to_dict(self) -> dict:
        """Same shape as SearchRun.to_dict()."""
        return {
            "id": self.run_id,
            "ran_at": self.ran_at.isoformat(),
            "trigger": self.trigger,
            "status": self.status,
            **asdict(self.stats),
            "error_log": self.error_log,
            "duration_ms": self.duration_ms,
        }


class RunState:
    """Single-flight gate plus the last finished result, owned by one runner."""

    def __init__(self):
        self._lock = threading.Lock()
        self.last_result: Optional[PipelineResult] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()


class PipelineRunner:
    def __init__(
        self,
        app_config: AppConfig,
        session_factory=SessionLocal,
        fetcher: Callable = fetch_jobs,
        judge_factory: Callable[[RunConfig], AIJudge] = AIJudge.from_run_config,
        digest_sender: Callable = send_digest,
        clock: Callable[[], datetime] = _utcnow,
        state: Optional[RunState] = None,
    ):
        self.app_config = app_config
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.judge_factory = judge_factory
        self.digest_sender = digest_sender
        self.clock = clock
        self.state = state or RunState()

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def run(self, trigger: str = TRIGGER_SCHEDULED) -> PipelineResult:
        """Run the pipeline in the calling thread. Raises PipelineBusyError if a run is in flight."""
        if not self.state.try_acquire():
            logger.info("Pipeline already running; rejecting %s trigger", trigger)
            raise PipelineBusyError("Pipeline is already running.")
        try:
            return self._execute(trigger)
        finally:
            self.state.release()

    def start_in_background(self, trigger: str = TRIGGER_MANUAL) -> bool:
        """Claim the gate now and run in a daemon thread. False when a run is in flight."""
        if not self.state.try_acquire():
            logger.info("Pipeline already running; rejecting %s trigger", trigger)
            return False

        def _run_and_release():
            try:
                self._execute(trigger)
            except Exception:
                logger.error("Background pipeline run crashed", exc_info=True)
            finally:
                self.state.release()

        thread = threading.Thread(target=_run_and_release, name="pipeline-run", daemon=True)
        thread.start()
        return True

    # -- run ------------------------------------------------------------------

    def _execute(self, trigger: str) -> PipelineResult:
        session = self.session_factory()
        ledger = RunLedger(session, self.clock)
        stats = RunStats()
        errors: list[str] = []

        try:
            run_config = self._load_run_config(session)
            logger.info(
                "Starting pipeline (%s) — %d group(s), %d blacklisted company(ies)",
                trigger, len(run_config.groups), len(run_config.blacklist),
            )
            ledger.start(trigger)

            judge = self.judge_factory(run_config)
            dedup_state = RunDedupState()
            blacklist = build_blacklist(run_config.blacklist)

            for group in run_config.groups:
                self._process_group(session, ledger, judge, dedup_state, blacklist, group, run_config, stats, errors)

            if run_config.email_enabled:
                self._send_digest(session, run_config, stats, errors)
            else:
                logger.info("Email sending is disabled in settings; skipping digest")

            status = ledger.finish(stats, errors)
            result = PipelineResult(
                ran_at=ledger.started_at,
                trigger=trigger,
                status=status,
                duration_ms=ledger.elapsed_ms(),
                run_id=ledger.run_id,
                error_log="\n".join(errors) if errors else None,
                stats=stats,
            )
            logger.info(
                "Pipeline complete in %dms — status: %s (%s)", result.duration_ms, status, trigger
            )

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error("Fatal pipeline error: %s", message, exc_info=True)
            try:
                ledger.fail(message, trigger)
            except SQLAlchemyError:
                logger.error("Could not record failed run", exc_info=True)
            result = PipelineResult(
                ran_at=ledger.started_at,
                trigger=trigger,
                status=STATUS_FAILED,
                duration_ms=ledger.elapsed_ms(),
                run_id=ledger.run_id,
                error_log=message,
            )
        finally:
            session.close()

        self.state.last_result = result
        return result

    def _load_run_config(self, session) -> RunConfig:
        settings = session.get(Settings, 1)
        groups = session.scalars(select(SearchGroup).order_by(SearchGroup.id)).all()
        blacklist = session.scalars(
            select(BlacklistedCompany.company_name).order_by(BlacklistedCompany.company_name)
        ).all()
        return build_run_config(settings, groups, blacklist, self.app_config)

    def _process_group(
        self,
        session,
        ledger: RunLedger,
        judge: AIJudge,
        dedup_state: RunDedupState,
        blacklist: frozenset[str],
        group: GroupConfig,
        run_config: RunConfig,
        stats: RunStats,
        errors: list[str],
    ) -> None:
        logger.info(
            "Group %s [%s]: %d keywords x %d locations",
            group.label, ", ".join(group.locations), len(group.keywords), len(group.locations),
        )

        # 1. Fetch
        filters = SearchFilters(
            keywords=list(group.keywords),
            locations=list(group.locations),
            work_modes=list(group.work_modes),
            job_type=group.job_type,
        )
        try:
            fetched = self.fetcher(
                filters,
                run_config.serpapi_key,
                max_results=run_config.max_results_per_group,
                timeout=run_config.fetch_timeout_seconds,
                now=self.clock(),
            )
        except SourceError as e:
            message = f"Group {group.label} fetch error: {e}"
            logger.error(message)
            errors.append(message)
            return
        except Exception as e:
            message = f"Group {group.label} fetch error: {type(e).__name__}: {e}"
            logger.error(message, exc_info=True)
            errors.append(message)
            return

        stats.jobs_fetched += len(fetched)
        logger.info("Group %s: fetched %d postings", group.label, len(fetched))
        group_stats = RunStats()

        # 2. Static filters
        kept, filtered = apply_title_filter(fetched, group.title_filter)
        ledger.log_many(group.id, filtered, OUTCOME_FILTERED)

        kept, blacklisted = apply_blacklist(kept, blacklist)
        ledger.log_many(group.id, blacklisted, OUTCOME_BLACKLISTED)

        # 3. Within-run dedup: same batch first, then earlier groups
        unique, batch_dupes = dedup_state.collapse_batch(kept)
        accepted, run_dupes = dedup_state.claim_ids(unique)
        within_run_dupes = batch_dupes + run_dupes
        if within_run_dupes:
            logger.info("Group %s: %d within-run duplicate(s) skipped", group.label, len(within_run_dupes))
            group_stats.jobs_duplicate += len(within_run_dupes)
            ledger.log_many(group.id, within_run_dupes, OUTCOME_DUPLICATE)

        # 4. Provider dedup; these were logged by the run that first saw them
        new_postings, provider_dupes = filter_new_jobs(session, accepted)
        group_stats.jobs_duplicate += len(provider_dupes)
        logger.info("Group %s: %d new after provider dedup", group.label, len(new_postings))

        # 5. Call 1 for every new posting, then the duplicate checks for strong matches
        scored_postings = judge.score_postings(new_postings, group)
        group_stats.jobs_scored += len(scored_postings)

        claimed_strong = []
        for scored in scored_postings:
            dedup = self._check_strong_duplicate(session, judge, dedup_state, scored)
            if dedup.is_duplicate:
                group_stats.jobs_duplicate += 1
            elif scored.verdict == Verdict.STRONG_MATCH:
                group_stats.jobs_strong_match += 1
                claimed_strong.append(scored.posting)
            elif scored.verdict == Verdict.WEAK_MATCH:
                group_stats.jobs_weak_match += 1
            else:
                group_stats.jobs_no_match += 1
            ledger.record_scored(group.id, scored, dedup)

        # 6. One transaction for the whole group's logs and jobs
        try:
            ledger.flush()
        except PersistenceError as e:
            message = f"Group {group.label} persistence error: {e}"
            logger.error(message)
            errors.append(message)
            # Nothing from this group was stored, so later groups may claim its postings
            dedup_state.release(accepted, claimed_strong)
            return

        _merge_stats(stats, group_stats)
        logger.info(
            "Group %s: scored %d — Strong=%d Weak=%d NoMatch=%d Dupes=%d",
            group.label, group_stats.jobs_scored, group_stats.jobs_strong_match,
            group_stats.jobs_weak_match, group_stats.jobs_no_match, group_stats.jobs_duplicate,
        )

    def _check_strong_duplicate(
        self, session, judge: AIJudge, dedup_state: RunDedupState, scored: ScoredPosting
    ) -> DedupOutcome:
        if scored.verdict != Verdict.STRONG_MATCH:
            return DedupOutcome()

        posting = scored.posting
        # The provider can list one posting under several ids; the first copy this run wins.
        if dedup_state.is_strong_claimed(posting):
            logger.info(
                "In-run duplicate: '%s' at '%s' (different id, same posting)", posting.title, posting.company
            )
            return DedupOutcome(is_duplicate=True)

        prior_jobs = find_prior_strong_matches(session, posting.company, posting.title)
        dedup = DedupOutcome()
        if needs_semantic_check(prior_jobs):
            dedup = judge.check_duplicate(scored, prior_jobs)
            if dedup.is_duplicate:
                logger.info(
                    "Semantic duplicate: '%s' at '%s' -> original ID %s",
                    posting.title, posting.company, dedup.duplicate_of_id,
                )

        if not dedup.is_duplicate:
            dedup_state.claim_strong(posting)
        return dedup

    def _send_digest(self, session, run_config: RunConfig, stats: RunStats, errors: list[str]) -> None:
        try:
            self.digest_sender(session, run_config.email, stats, run_config.resend_api_key, now=self.clock())
        except Exception as e:
            session.rollback()
            message = f"Email send error: {e}"
            logger.error(message)
            errors.append(message)


def _merge_stats(total: RunStats, group: RunStats) -> None:
    total.jobs_scored += group.jobs_scored
    total.jobs_strong_match += group.jobs_strong_match
    total.jobs_weak_match += group.jobs_weak_match
    total.jobs_no_match += group.jobs_no_match
    total.jobs_duplicate += group.jobs_duplicate
