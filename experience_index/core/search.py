"""Keyword and location relevance ranking for agent-facing discovery."""

from __future__ import annotations

import locale
import logging
from functools import cmp_to_key
from typing import TYPE_CHECKING, Iterable, List, Optional

from experience_index.models import SearchCandidate, SearchResult

if TYPE_CHECKING:
    from experience_index.etl.aggregate import ProfileCatalog

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 50

TAG_PHRASE_POINTS = 3
TAG_KEYWORD_POINTS = 2
CATEGORY_POINTS = 1


def use_system_collation() -> None:
    """Collate name tie-breaks with the locale from the environment (LC_ALL, LC_COLLATE, LANG)."""
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as exc:
        logger.warning("Could not apply the environment locale, names will sort by code point: %s", exc)


def clamp_limit(raw) -> int:
    """Parse a caller supplied limit; junk falls back to the default."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    if value == 0:
        return DEFAULT_LIMIT
    return min(max(value, 1), MAX_LIMIT)


def _mutual_substring(a: str, b: str) -> bool:
    return a in b or b in a


def score_candidate(candidate: SearchCandidate, query: str, location: Optional[str] = None) -> Optional[SearchResult]:
    """Score one profile; ``None`` means it has no relevance and is dropped."""
    query_lower = query.lower()
    keywords = query_lower.split()
    tags = [tag.lower() for tag in candidate.tags]
    category = candidate.category.lower()

    score = 0
    match_type = "partial"

    if any(_mutual_substring(tag, query_lower) for tag in tags):
        score += TAG_PHRASE_POINTS
        match_type = "direct"

    for keyword in keywords:
        if any(keyword in tag for tag in tags):
            score += TAG_KEYWORD_POINTS

    if query_lower in category or any(keyword in category for keyword in keywords):
        score += CATEGORY_POINTS
        if match_type == "partial":
            match_type = "category"

    if score == 0:
        return None

    # Only covered areas count; ``based_in`` alone never flags a match.
    location_match = bool(location) and any(
        _mutual_substring(area.lower(), location.lower()) for area in candidate.areas_covered
    )

    return SearchResult(
        company_id=candidate.profile_id,
        name=candidate.name,
        slug=candidate.slug,
        match_type=match_type,
        location_match=location_match,
        relevance_score=score,
        profile_url=f"/profiles/{candidate.slug}",
    )


def _compare(a: SearchResult, b: SearchResult) -> int:
    if a.relevance_score != b.relevance_score:
        return b.relevance_score - a.relevance_score
    if a.location_match != b.location_match:
        return -1 if a.location_match else 1
    left = locale.strxfrm(a.name.casefold())
    right = locale.strxfrm(b.name.casefold())
    return (left > right) - (left < right)


def rank(candidates: Iterable[SearchCandidate], query: str, location: Optional[str] = None, limit: int = DEFAULT_LIMIT) -> List[SearchResult]:
    query = query.strip()
    candidates = list(candidates)
    scored = [result for result in (score_candidate(c, query, location) for c in candidates) if result is not None]
    scored.sort(key=cmp_to_key(_compare))
    logger.debug("Ranked %d of %d candidates for query=%r location=%r", len(scored), len(candidates), query, location)
    return scored[: clamp_limit(limit)]


def search(catalog: ProfileCatalog, query: str, location: Optional[str] = None, limit=DEFAULT_LIMIT) -> List[SearchResult]:
    """Rank the non-draft catalog; an unreachable store yields no results."""
    return rank(catalog.search_candidates(), query, location, limit)
