"""Identifier-level deduplication: within a run and against stored jobs.

Neither layer spends an AI call. The semantic layer lives in the AI judge.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from job_hunter.jobs.models import CanonicalPosting
from job_hunter.models import StoredJob

logger = logging.getLogger("job_hunter.filtering.dedup")

# SQLite caps bound parameters per statement; stay well under the limit.
LOOKUP_CHUNK_SIZE = 500


def strong_key(posting: CanonicalPosting) -> str:
    return f"{posting.company.lower()}|{posting.title.lower()}"


class RunDedupState:
    """Run-scoped dedup sets, shared by every group of one run.

    Callers must use it from a single thread; reads and writes happen per
    posting in processing order.
    """

    def __init__(self):
        self._accepted_ids: set[str] = set()
        self._strong_keys: set[str] = set()

    def collapse_batch(
        self, postings: list[CanonicalPosting]
    ) -> tuple[list[CanonicalPosting], list[CanonicalPosting]]:
        """Keep the first occurrence of each external id inside one group's batch."""
        seen: set[str] = set()
        unique, dupes = [], []
        for posting in postings:
            if posting.external_id in seen:
                dupes.append(posting)
            else:
                seen.add(posting.external_id)
                unique.append(posting)
        return unique, dupes

    def claim_ids(
        self, postings: list[CanonicalPosting]
    ) -> tuple[list[CanonicalPosting], list[CanonicalPosting]]:
        """Drop ids an earlier group already accepted this run; record the rest."""
        accepted, dupes = [], []
        for posting in postings:
            if posting.external_id in self._accepted_ids:
                dupes.append(posting)
            else:
                self._accepted_ids.add(posting.external_id)
                accepted.append(posting)
        return accepted, dupes

    def is_strong_claimed(self, posting: CanonicalPosting) -> bool:
        return strong_key(posting) in self._strong_keys

    def claim_strong(self, posting: CanonicalPosting) -> None:
        self._strong_keys.add(strong_key(posting))

    def release(
        self, postings: list[CanonicalPosting], strong_postings: list[CanonicalPosting]
    ) -> None:
        """Give back claims made by a group whose batch was never stored."""
        for posting in postings:
            self._accepted_ids.discard(posting.external_id)
        for posting in strong_postings:
            self._strong_keys.discard(strong_key(posting))


def filter_new_jobs(
    session: Session, postings: list[CanonicalPosting]
) -> tuple[list[CanonicalPosting], list[CanonicalPosting]]:
    """Split postings into (new, provider_dupes) by ids already in storage.

    One batched IN lookup, whatever the verdict or run that stored them.
    """
    if not postings:
        return [], []

    ids = list({p.external_id for p in postings})
    existing: set[str] = set()
    for start in range(0, len(ids), LOOKUP_CHUNK_SIZE):
        chunk = ids[start:start + LOOKUP_CHUNK_SIZE]
        existing.update(
            session.scalars(select(StoredJob.external_id).where(StoredJob.external_id.in_(chunk)))
        )

    new_jobs = [p for p in postings if p.external_id not in existing]
    provider_dupes = [p for p in postings if p.external_id in existing]

    if provider_dupes:
        logger.info("Skipped %d already-stored postings (provider-level dedup)", len(provider_dupes))
    return new_jobs, provider_dupes
