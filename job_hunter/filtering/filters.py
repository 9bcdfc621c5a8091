"""Static title and company-blacklist filters."""

import logging
from collections.abc import Iterable

from job_hunter.jobs.models import CanonicalPosting
from job_hunter.utils.text_processing import normalize_company, tokenize

logger = logging.getLogger("job_hunter.filtering")


def matches_title_filter(title: str, filter_text: str) -> bool:
    """True when the title holds every word of at least one filter line.

    Word order and repeated words do not matter. An empty filter matches everything.
    """
    lines = [tokenize(line) for line in filter_text.splitlines()]
    lines = [words for words in lines if words]
    if not lines:
        return True
    title_words = tokenize(title)
    return any(words <= title_words for words in lines)


def apply_title_filter(
    postings: list[CanonicalPosting], filter_text: str
) -> tuple[list[CanonicalPosting], list[CanonicalPosting]]:
    """Split postings into (kept, removed) by the group's title filter."""
    if not filter_text or not filter_text.strip():
        return list(postings), []

    kept, removed = [], []
    for posting in postings:
        if matches_title_filter(posting.title, filter_text):
            kept.append(posting)
        else:
            removed.append(posting)

    if removed:
        logger.info("Title filter removed %d postings (%d remain)", len(removed), len(kept))
    return kept, removed


def build_blacklist(company_names: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_company(name) for name in company_names if name.strip())


def is_blacklisted(posting: CanonicalPosting, blacklist: frozenset[str]) -> bool:
    return normalize_company(posting.company) in blacklist


def apply_blacklist(
    postings: list[CanonicalPosting], blacklist: frozenset[str]
) -> tuple[list[CanonicalPosting], list[CanonicalPosting]]:
    """Split postings into (kept, removed) by exact, case-insensitive company name."""
    kept, removed = [], []
    for posting in postings:
        if is_blacklisted(posting, blacklist):
            removed.append(posting)
        else:
            kept.append(posting)

    if removed:
        logger.info("Blacklist removed %d postings", len(removed))
    return kept, removed
