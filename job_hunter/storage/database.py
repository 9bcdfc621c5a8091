"""Schema setup, idempotent job inserts, and read helpers for stored jobs and runs."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from job_hunter.matching.ai_judge import PriorJob, Verdict
from job_hunter.models import Base, SearchGroup, SearchRun, Settings, StoredJob

logger = logging.getLogger("job_hunter.storage")

DEFAULT_DEDUP_SYSTEM_PROMPT = (
    "You are a job posting deduplication engine. Decide whether a NEW job posting is effectively "
    "the same position as any of the EXISTING postings from the same company. Two postings are "
    "duplicates if they describe the same role even when the text has been reworded, reformatted, "
    "or reposted under a new ID."
)

DEFAULT_SUMMARY_PROMPT = (
    "Analyze the job description and write a 1-line summary of what product or system this role owns:"
)

DEFAULT_AI_SYSTEM_PROMPT = """You are evaluating job postings for a senior software engineer.

SCORING GUIDE (0-100):
90-100: Exceptional match - right seniority, strong domain fit, compelling scope
71-89: Strong match - good seniority and relevant domain
51-70: Weak match - missing key elements; worth noting but not compelling
0-50: No match - wrong level, unrelated field, or clearly unsuitable

IMPORTANT: Evaluate only what is stated. If information is missing, be conservative."""


def init_db(engine: Engine) -> None:
    """Create tables and seed the settings row and a first search group on a new database."""
    if engine.url.drivername.startswith("sqlite") and engine.url.database not in (None, "", ":memory:"):
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(engine)

    with Session(engine) as session:
        if session.get(Settings, 1) is None:
            session.add(Settings(
                id=1,
                dedup_system_prompt=DEFAULT_DEDUP_SYSTEM_PROMPT,
                summary_prompt=DEFAULT_SUMMARY_PROMPT,
            ))
            if not session.scalar(select(func.count()).select_from(SearchGroup)):
                session.add(SearchGroup(
                    group_name="Default",
                    keywords=["Software Engineer"],
                    locations=["United States"],
                    ai_system_prompt=DEFAULT_AI_SYSTEM_PROMPT,
                ))
            session.commit()
            logger.info("Settings table seeded with defaults")


def insert_jobs_ignore_existing(session: Session, rows: list[dict]) -> None:
    """Insert job rows; rows whose external_id already exists are skipped (first writer wins)."""
    if not rows:
        return

    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        dialect_insert = None

    if dialect_insert is not None:
        stmt = dialect_insert(StoredJob.__table__).on_conflict_do_nothing(index_elements=["external_id"])
        session.execute(stmt, rows)
        return

    existing = set(session.scalars(
        select(StoredJob.external_id).where(StoredJob.external_id.in_([r["external_id"] for r in rows]))
    ))
    fresh = [r for r in rows if r["external_id"] not in existing]
    if fresh:
        session.execute(insert(StoredJob.__table__), fresh)


def find_prior_strong_matches(
    session: Session, company: str, title: str, limit: int = 5
) -> list[PriorJob]:
    """Stored non-duplicate strong matches with the same company and title, newest first."""
    rows = session.execute(
        select(StoredJob.id, StoredJob.title, StoredJob.description)
        .where(
            func.lower(StoredJob.company) == company.lower(),
            func.lower(StoredJob.title) == title.lower(),
            StoredJob.is_duplicate.is_(False),
            StoredJob.ai_verdict == Verdict.STRONG_MATCH.value,
        )
        .order_by(StoredJob.fetched_at.desc(), StoredJob.id.desc())
        .limit(limit)
    ).all()
    return [PriorJob(id=row.id, title=row.title, description=row.description or "") for row in rows]


def unseen_strong_matches(session: Session) -> list[StoredJob]:
    """Jobs the next digest should include."""
    return list(session.scalars(
        select(StoredJob)
        .where(
            StoredJob.seen.is_(False),
            StoredJob.is_duplicate.is_(False),
            StoredJob.ai_verdict == Verdict.STRONG_MATCH.value,
        )
        .order_by(StoredJob.ai_score.desc(), StoredJob.fetched_at.desc())
    ))


def mark_jobs_seen(session: Session, job_ids: list[int], now: Optional[datetime] = None) -> None:
    if not job_ids:
        return
    now = now or datetime.now(timezone.utc)
    session.execute(
        update(StoredJob).where(StoredJob.id.in_(job_ids)).values(seen=True, seen_at=now)
    )
    session.commit()


def query_jobs(
    session: Session,
    verdict: Optional[str] = None,
    group_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    company: Optional[str] = None,
    limit: int = 200,
) -> list[StoredJob]:
    """Stored jobs filtered by verdict, group, fetch-date range and company."""
    stmt = select(StoredJob)
    if verdict:
        stmt = stmt.where(StoredJob.ai_verdict == verdict)
    if group_id is not None:
        stmt = stmt.where(StoredJob.group_id == group_id)
    if since is not None:
        stmt = stmt.where(StoredJob.fetched_at >= since)
    if until is not None:
        stmt = stmt.where(StoredJob.fetched_at < until)
    if company:
        stmt = stmt.where(func.lower(StoredJob.company) == company.strip().lower())
    stmt = stmt.order_by(StoredJob.fetched_at.desc(), StoredJob.id.desc()).limit(limit)
    return list(session.scalars(stmt))


def get_stats(session: Session) -> dict:
    """Get database statistics."""
    stats = {
        "total_jobs_tracked": session.scalar(select(func.count()).select_from(StoredJob)),
        "unseen_strong_matches": len(unseen_strong_matches(session)),
        "total_runs": session.scalar(select(func.count()).select_from(SearchRun)),
    }

    rows = session.execute(
        select(StoredJob.ai_verdict, func.count()).group_by(StoredJob.ai_verdict)
    ).all()
    stats["by_verdict"] = {verdict: count for verdict, count in rows}

    last_run = session.scalars(select(SearchRun).order_by(SearchRun.id.desc()).limit(1)).first()
    if last_run:
        stats["last_run"] = last_run.to_dict()

    return stats
