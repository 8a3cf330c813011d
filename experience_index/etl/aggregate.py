"""Profile read paths: listings, detail aggregation and experience records."""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from experience_index.core.config import Settings
from experience_index.etl.transform import (
    DIMENSION_FIELDS,
    dimension_name,
    first_linked_id,
    links_to,
    percentage,
    round_half_up,
    to_company_ref,
    to_experience_record,
    to_profile,
    to_profile_summary,
    to_search_candidate,
)
from experience_index.models import (
    CompanyRef,
    ConsistencySignals,
    DimensionScores,
    ExperienceRecord,
    Profile,
    ProfileSummary,
    SearchCandidate,
)
from experience_index.vendors.airtable import AirtableClient, UpstreamError, formula_literal

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def average_dimensions(score_rows: List[Row]) -> DimensionScores:
    """Average every named dimension; a dimension without scores averages to 0."""
    totals: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])
    for row in score_rows:
        fields = row.get("fields", {})
        dim = dimension_name(fields.get("rds_id"))
        score = fields.get("score")
        if dim is None or score is None:
            continue
        totals[dim][0] += score
        totals[dim][1] += 1

    averages = {
        DIMENSION_FIELDS[dim]: (total / count if count else 0)
        for dim, (total, count) in totals.items()
        if dim in DIMENSION_FIELDS
    }
    return DimensionScores(**averages)


def summarize_records(record_rows: List[Row]) -> Tuple[float, int, int, int]:
    """Return ``(overall_score, sample_size, high_score_pct, recommendation_rate)``."""
    total = len(record_rows)
    if total == 0:
        return 0, 0, 0, 0

    scores = [row.get("fields", {}).get("overall_score") or 0 for row in record_rows]
    high = sum(1 for score in scores if score >= 8)
    recommended = sum(1 for row in record_rows if row.get("fields", {}).get("recommended"))
    overall = round_half_up(sum(scores) / total, 1)
    return overall, total, percentage(high, total), percentage(recommended, total)


def scores_by_record(score_rows: List[Row]) -> Dict[str, Dict[str, float]]:
    """Map each linked public record id to its ``{dimension: score}`` block."""
    mapping: Dict[str, Dict[str, float]] = {}
    for row in score_rows:
        fields = row.get("fields", {})
        record_id = first_linked_id(fields.get("record"))
        dim = dimension_name(fields.get("rds_id"))
        if not record_id or dim is None or fields.get("score") is None:
            continue
        mapping.setdefault(record_id, {})[dim] = fields["score"]
    return mapping


class ProfileCatalog:
    """Read-only view over the profile, record and dimension-score tables."""

    def __init__(self, client: AirtableClient, settings: Settings, executor: Optional[ThreadPoolExecutor] = None) -> None:
        self._client = client
        self._settings = settings
        self._executor = executor or ThreadPoolExecutor(max_workers=4)

    # ---------- Listings ----------

    def summaries(self) -> List[ProfileSummary]:
        try:
            rows = self._client.fetch_all(self._settings.profiles_table)
        except UpstreamError as exc:
            logger.error("Profile listing unavailable, returning empty list: %s", exc)
            return []
        summaries = [to_profile_summary(row) for row in rows]
        return sorted(summaries, key=lambda summary: summary.business_name.casefold())

    def categories(self) -> List[str]:
        return sorted({summary.category for summary in self.summaries() if summary.category})

    def slugs(self) -> List[str]:
        return [summary.slug for summary in self.summaries() if summary.slug]

    def filter_profiles(
        self,
        *,
        location: Optional[str] = None,
        category: Optional[str] = None,
        min_score: Optional[float] = None,
        min_sample: Optional[int] = None,
    ) -> List[ProfileSummary]:
        profiles = self.summaries()
        if location:
            needle = location.lower()
            profiles = [p for p in profiles if needle in p.location.lower()]
        if category:
            needle = category.lower()
            profiles = [p for p in profiles if needle in p.category.lower()]
        if min_score is not None:
            profiles = [p for p in profiles if p.overall_score >= min_score]
        if min_sample is not None:
            profiles = [p for p in profiles if p.sample_size >= min_sample]
        return profiles

    def search_candidates(self) -> List[SearchCandidate]:
        try:
            rows = self._client.fetch_all(
                self._settings.profiles_table,
                {"filterByFormula": '{status} != "Draft"'},
            )
        except UpstreamError as exc:
            logger.error("Search catalog unavailable, returning no candidates: %s", exc)
            return []
        return [to_search_candidate(row) for row in rows]

    # ---------- Lookups ----------

    def _find_profile_row(self, column: str, value: str) -> Optional[Row]:
        rows = self._client.fetch_all(
            self._settings.profiles_table,
            {"filterByFormula": f"{{{column}}} = {formula_literal(value)}", "maxRecords": "1"},
        )
        return rows[0] if rows else None

    def find_by_company_id(self, company_id: str) -> Optional[CompanyRef]:
        """Resolve an agent-facing ``company_id`` to its Airtable record."""
        row = self._find_profile_row("profile_id", company_id)
        if row is None:
            return None
        return to_company_ref(row)

    def _linked_rows(self, profile_record_id: str) -> Tuple[List[Row], List[Row]]:
        # Formula filters on linked fields match display text, not record ids,
        # so both tables are fetched whole and filtered here.
        scores_future = self._executor.submit(self._client.fetch_all, self._settings.dimension_scores_table)
        records_future = self._executor.submit(self._client.fetch_all, self._settings.records_table)
        score_rows = [row for row in scores_future.result() if links_to(row, profile_record_id)]
        record_rows = [row for row in records_future.result() if links_to(row, profile_record_id)]
        return score_rows, record_rows

    # ---------- Detail ----------

    def detail(self, slug: str) -> Optional[Profile]:
        row = self._find_profile_row("slug", slug)
        if row is None:
            return None

        score_rows, record_rows = self._linked_rows(row["id"])
        overall, total, high_pct, recommend_rate = summarize_records(record_rows)

        profile = to_profile(row)
        profile.overall_score = overall
        profile.sample_size = total
        profile.scores = average_dimensions(score_rows)
        profile.consistency_signals = ConsistencySignals(
            high_score_percentage=high_pct,
            recommendation_rate=recommend_rate,
            top_themes=profile.consistency_signals.top_themes,
        )
        logger.debug("Computed profile %s from %d records and %d dimension scores", slug, total, len(score_rows))
        return profile

    def records(self, slug: str) -> List[ExperienceRecord]:
        row = self._find_profile_row("slug", slug)
        if row is None:
            return []

        score_rows, record_rows = self._linked_rows(row["id"])
        per_record = scores_by_record(score_rows)
        records = [to_experience_record(record, per_record.get(record.get("id"), {})) for record in record_rows]
        # Empty dates compare smallest and land last.
        return sorted(records, key=lambda record: record.date or "", reverse=True)
