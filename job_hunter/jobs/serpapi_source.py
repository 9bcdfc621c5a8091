"""SerpAPI Google Jobs source adapter."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from job_hunter.errors import SourceError
from job_hunter.jobs.models import (
    MAX_DESCRIPTION_LENGTH,
    CanonicalPosting,
    DateConfidence,
    WorkMode,
)

logger = logging.getLogger("job_hunter.jobs.serpapi")

RECENCY_WINDOW = timedelta(hours=48)
PAGE_SIZE = 10

# Extra query words per configured job type; full-time is the provider default.
JOB_TYPE_QUERY = {
    "fullTime": "",
    "partTime": "part time",
    "contract": "contract",
    "temporary": "temporary",
    "internship": "internship",
}

NO_RESULTS_MARKER = "hasn't returned any results"

_RELATIVE_DATE = re.compile(
    r"(\d+)\+?\s*(minute|min|hour|hr|day|week|month)s?\s+ago", re.IGNORECASE
)
_RELATIVE_UNITS = {
    "minute": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "hr": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
}


@dataclass
class SearchFilters:
    keywords: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    work_modes: list[str] = field(default_factory=list)
    job_type: str = "fullTime"


def fetch_jobs(
    filters: SearchFilters,
    api_key: str,
    max_results: int = 100,
    timeout: int = 60,
    now: Optional[datetime] = None,
) -> list[CanonicalPosting]:
    """Fetch postings for one search group from Google Jobs via SerpAPI.

    Runs one query per keyword x location pair until ``max_results`` raw items
    have been collected, maps them to CanonicalPosting and keeps only those
    posted inside the recency window. Raises SourceError on any provider
    failure so the caller can isolate the group.
    """
    if not api_key:
        raise SourceError("SerpAPI key not configured")

    try:
        from serpapi import GoogleSearch
    except ImportError as e:
        raise SourceError("google-search-results package not installed") from e

    now = now or datetime.now(timezone.utc)
    locations = filters.locations or [""]
    raw_items: list[dict] = []

    logger.info(
        "Querying SerpAPI: %d keywords x %d locations",
        len(filters.keywords), len(locations),
    )

    for keyword in filters.keywords:
        for location in locations:
            if len(raw_items) >= max_results:
                break
            params = _build_params(filters, keyword, location, api_key)
            raw_items.extend(
                _fetch_query(GoogleSearch, params, max_results - len(raw_items), timeout)
            )

    logger.info("Raw items from SerpAPI: %d", len(raw_items))

    postings = []
    for item in raw_items:
        try:
            posting = _parse_serpapi_job(item, now)
        except Exception as e:
            logger.warning("Skipping unparseable SerpAPI item %r: %s", _item_id(item), e)
            continue
        if posting is None:
            continue
        if not is_within_window(posting, now):
            continue
        postings.append(posting)

    logger.info("Postings after time-window filter: %d", len(postings))
    return postings


def _build_params(filters: SearchFilters, keyword: str, location: str, api_key: str) -> dict:
    query = keyword
    job_type_words = JOB_TYPE_QUERY.get(filters.job_type, filters.job_type or "")
    if job_type_words:
        query = f"{query} {job_type_words}"

    params = {
        "engine": "google_jobs",
        "q": query,
        "api_key": api_key,
    }
    if location:
        params["location"] = location
    # Other work-mode combinations are left to the AI judge rather than filtered here.
    if filters.work_modes == [WorkMode.REMOTE.value]:
        params["ltype"] = 1
    return params


def _fetch_query(search_cls, params: dict, limit: int, timeout: int) -> list[dict]:
    items: list[dict] = []
    next_page_token = None

    while len(items) < limit:
        page_params = dict(params)
        if next_page_token:
            page_params["next_page_token"] = next_page_token

        try:
            search = search_cls(page_params)
            search.timeout = timeout
            results = search.get_dict()
        except Exception as e:
            raise SourceError(f"SerpAPI request failed for '{params['q']}': {e}") from e

        error = results.get("error")
        if error:
            if NO_RESULTS_MARKER in error:
                break
            raise SourceError(f"SerpAPI error for '{params['q']}': {error}")

        job_results = results.get("jobs_results") or []
        if not job_results:
            break
        items.extend(job_results)

        next_page_token = (results.get("serpapi_pagination") or {}).get("next_page_token")
        if not next_page_token or len(job_results) < PAGE_SIZE:
            break

    return items[:limit]


def _item_id(item) -> str:
    return str(item.get("job_id")) if isinstance(item, dict) else type(item).__name__


def _parse_serpapi_job(item: dict, now: datetime) -> Optional[CanonicalPosting]:
    """Parse a single SerpAPI job result into a CanonicalPosting."""
    external_id = str(item.get("job_id") or "").strip()
    if not external_id:
        return None

    title = item.get("title") or "Unknown Title"
    company = item.get("company_name") or "Unknown Company"
    location = item.get("location") or ""
    description = (item.get("description") or "")[:MAX_DESCRIPTION_LENGTH]
    extensions = item.get("detected_extensions") or {}

    apply_link = ""
    apply_options = item.get("apply_options") or []
    if apply_options:
        apply_link = apply_options[0].get("link") or ""

    url = item.get("share_link") or apply_link
    if not url:
        related_links = item.get("related_links") or []
        if related_links:
            url = related_links[0].get("link") or ""

    # apply_url is the external company-site link, kept only when it differs
    apply_url = apply_link if apply_link and apply_link != url else None

    posted_date, confidence = parse_posted_date(extensions.get("posted_at"), now)

    return CanonicalPosting(
        external_id=external_id,
        title=title,
        company=company,
        url=url,
        location=location,
        work_mode=detect_work_mode(item),
        description=description,
        apply_url=apply_url,
        posted_date=posted_date,
        posted_date_confidence=confidence,
    )


def detect_work_mode(item: dict) -> WorkMode:
    extensions = item.get("detected_extensions") or {}
    if extensions.get("work_from_home"):
        return WorkMode.REMOTE

    text = " ".join([
        item.get("location") or "",
        item.get("title") or "",
        " ".join(str(e) for e in item.get("extensions") or []),
    ]).lower()
    if "hybrid" in text:
        return WorkMode.HYBRID
    if "remote" in text or "work from home" in text:
        return WorkMode.REMOTE
    return WorkMode.ONSITE


def parse_posted_date(raw, now: datetime) -> tuple[Optional[datetime], DateConfidence]:
    """Infer a posting timestamp from epoch, ISO, or relative ("2 days ago") values."""
    if raw is None or raw == "":
        return None, DateConfidence.LOW

    if isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.strip().isdigit()):
        ts = float(raw)
        if ts > 1_000_000_000:
            if ts > 1e12:
                ts /= 1000
            return datetime.fromtimestamp(ts, tz=timezone.utc), DateConfidence.HIGH
        return None, DateConfidence.LOW

    text = str(raw).strip().lower()
    if text in ("just posted", "today", "just now"):
        return now, DateConfidence.HIGH
    if text == "yesterday":
        return now - timedelta(days=1), DateConfidence.HIGH

    match = _RELATIVE_DATE.search(text)
    if match:
        amount = int(match.group(1))
        return now - amount * _RELATIVE_UNITS[match.group(2)], DateConfidence.HIGH

    iso_text = str(raw).strip()
    # fromisoformat only accepts a trailing "Z" from Python 3.11 on
    if iso_text[-1:] in ("Z", "z"):
        iso_text = iso_text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        return None, DateConfidence.LOW
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed, DateConfidence.HIGH


def is_within_window(posting: CanonicalPosting, now: datetime) -> bool:
    if posting.posted_date is None:
        logger.warning(
            "Posting %s: missing posted date, accepting with LOW confidence",
            posting.external_id,
        )
        return True
    return posting.posted_date >= now - RECENCY_WINDOW
