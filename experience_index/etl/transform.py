"""Utilities for transforming Airtable rows into domain models."""

import json
import logging
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Mapping, Optional

from experience_index.models import (
    CompanyRef,
    ConsistencySignals,
    CustomerQuote,
    DimensionScores,
    ExperienceRecord,
    ExternalPresence,
    Profile,
    ProfileSummary,
    SearchCandidate,
)

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_LABEL = "Verified Customer"
SUMMARY_PREVIEW_CHARS = 120

# Dimension names as they appear after "::" in rds_id.
DIMENSION_FIELDS = {
    "product": "product_satisfaction",
    "installation": "installation_satisfaction",
    "process": "process_communication",
    "recommend": "likelihood_to_recommend",
}

_QUOTE_LINE = re.compile(r'^"?(.+?)"?\s*[-–—]\s*(.+)$')


def round_half_up(value: float, places: int = 0) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percentage(count: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(round_half_up(100 * count / total))


def derive_sentiment(score: float) -> str:
    if score >= 8:
        return "positive"
    if score >= 5:
        return "mixed"
    return "negative"


def is_checked(value: Any) -> bool:
    """Airtable checkboxes come back as true/1 or are omitted entirely."""
    return value is True or (isinstance(value, (int, float)) and not isinstance(value, bool) and value == 1)


def parse_tags(value: Any) -> List[str]:
    """Normalize a multi-select, linked or comma separated field to a list of strings."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _quote_from_item(item: Any) -> Optional[CustomerQuote]:
    if isinstance(item, str):
        return CustomerQuote(quote=item, name=DEFAULT_CUSTOMER_LABEL)
    if isinstance(item, Mapping):
        text = item.get("quote") or item.get("text") or ""
        return CustomerQuote(quote=str(text), name=item.get("name") or DEFAULT_CUSTOMER_LABEL)
    return None


def parse_quotes(value: Any) -> List[CustomerQuote]:
    """Accept a list of ``{quote, name}``, its JSON form, or ``"quote" - name`` lines."""
    if not value:
        return []
    if isinstance(value, list):
        return [quote for quote in map(_quote_from_item, value) if quote is not None]

    text = str(value)
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    else:
        if isinstance(parsed, list):
            return [quote for quote in map(_quote_from_item, parsed) if quote is not None]
        return []

    quotes: List[CustomerQuote] = []
    for line in text.split("\n"):
        if not line.strip():
            continue
        match = _QUOTE_LINE.match(line)
        if match:
            quotes.append(CustomerQuote(quote=match.group(1), name=match.group(2)))
        else:
            quotes.append(CustomerQuote(quote=re.sub(r"^[\"']|[\"']$", "", line), name=DEFAULT_CUSTOMER_LABEL))
    return quotes


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            logger.debug("Unable to parse date %r", value)
            return None


def format_date_range(fields: Mapping[str, Any]) -> str:
    start = _parse_date(fields.get("date_range_start"))
    end = _parse_date(fields.get("date_range_end"))
    if start and end:
        return f"{start:%b}–{end:%b} {end.year}"
    updated = _parse_date(fields.get("last_updated_at"))
    if updated:
        return f"{updated:%b %Y}"
    return ""


def _short_description(fields: Mapping[str, Any]) -> str:
    if fields.get("short_description"):
        return fields["short_description"]
    summary = fields.get("summary")
    if summary:
        return summary[:SUMMARY_PREVIEW_CHARS] + "..."
    return ""


def to_profile_summary(record: Mapping[str, Any]) -> ProfileSummary:
    fields = record.get("fields", {})
    return ProfileSummary(
        profile_id=fields.get("profile_id", ""),
        slug=fields.get("slug", ""),
        business_name=fields.get("name", ""),
        location=fields.get("based_in") or "",
        category=fields.get("category", ""),
        tags=parse_tags(fields.get("Tags")),
        overall_score=fields.get("overall_score_avg") or 0,
        sample_size=fields.get("sample_size") or 0,
        date_range=format_date_range(fields),
        logo_url=fields.get("logo_url"),
        short_description=_short_description(fields),
        website=fields.get("website_url"),
    )


def to_profile(record: Mapping[str, Any]) -> Profile:
    """Map the stored profile columns; the detail path overwrites the computed fields."""
    fields = record.get("fields", {})
    return Profile(
        profile_id=fields.get("profile_id", ""),
        slug=fields.get("slug", ""),
        business_name=fields.get("name", ""),
        location=fields.get("based_in") or "",
        category=fields.get("category", ""),
        tags=parse_tags(fields.get("Tags")),
        overall_score=fields.get("overall_score_avg") or 0,
        sample_size=fields.get("sample_size") or 0,
        date_range=format_date_range(fields),
        summary=fields.get("summary") or "",
        scores=DimensionScores(
            product_satisfaction=fields.get("score_product") or 0,
            installation_satisfaction=fields.get("score_installation") or 0,
            process_communication=fields.get("score_communication") or 0,
            likelihood_to_recommend=fields.get("score_recommend") or 0,
        ),
        consistency_signals=ConsistencySignals(
            high_score_percentage=fields.get("pct_8_plus") or 0,
            recommendation_rate=fields.get("recommendation_rate") or 0,
            top_themes=parse_tags(fields.get("top_themes")),
        ),
        customer_voice=parse_quotes(fields.get("public_quotes")),
        logo_url=fields.get("logo_url"),
        website=fields.get("website_url"),
        short_description=fields.get("short_description"),
        services=parse_tags(fields.get("services")),
        base_location=fields.get("based_in"),
        areas_covered=parse_tags(fields.get("areas_covered")),
        external_presence=ExternalPresence(
            platform1_name=fields.get("platform_1_name"),
            platform1_review_count=fields.get("platform_1_review_count"),
            platform1_url=fields.get("platform_1_url"),
            platform2_name=fields.get("platform_2_name"),
            platform2_review_count=fields.get("platform_2_review_count"),
            platform2_url=fields.get("platform_2_url"),
        ),
    )


def visible_action_note(note: Any, approved: Any) -> Optional[str]:
    """Return the company action note only when present and explicitly approved."""
    if not isinstance(note, str) or not note.strip():
        return None
    if approved is not True:
        return None
    return note.strip()


def to_experience_record(record: Mapping[str, Any], dimension_scores: Optional[Mapping[str, float]] = None) -> ExperienceRecord:
    fields = record.get("fields", {})
    dimension_scores = dimension_scores or {}
    score = fields.get("overall_score") or 0
    recommend_fallback = 10 if fields.get("recommended") else 0

    approved = is_checked(fields.get("company_action_note_approved"))
    note = visible_action_note(fields.get("company_action_note"), approved)

    return ExperienceRecord(
        customer_label=fields.get("customer_label") or DEFAULT_CUSTOMER_LABEL,
        date=fields.get("experience_date") or fields.get("experience_month") or "",
        overall_score=score,
        summary_public=fields.get("record_summary_public") or "",
        sentiment=derive_sentiment(score),
        tags=parse_tags(fields.get("tags")),
        ratings=DimensionScores(
            product_satisfaction=dimension_scores.get("product", 0),
            installation_satisfaction=dimension_scores.get("installation", 0),
            process_communication=dimension_scores.get("process", 0),
            likelihood_to_recommend=dimension_scores.get("recommend", recommend_fallback),
        ),
        behavioural_note=(fields.get("behavioural_note") or "").strip() or None,
        company_action_note=note,
        company_action_note_approved=note is not None,
    )


def dimension_name(rds_id: Any) -> Optional[str]:
    """Extract ``process`` from ``recXXX::process``."""
    if not isinstance(rds_id, str):
        return None
    parts = rds_id.split("::")
    if len(parts) < 2 or not parts[1]:
        return None
    return parts[1]


def links_to(record: Mapping[str, Any], record_id: str, field_name: str = "profile") -> bool:
    """Linked-record membership by Airtable record id, never by display text."""
    linked = record.get("fields", {}).get(field_name) or []
    if isinstance(linked, str):
        linked = [linked]
    return record_id in linked


def to_company_ref(record: Mapping[str, Any]) -> CompanyRef:
    fields = record.get("fields", {})
    return CompanyRef(
        record_id=record.get("id", ""),
        profile_id=fields.get("profile_id", ""),
        name=fields.get("name", ""),
        slug=fields.get("slug", ""),
    )


def to_search_candidate(record: Mapping[str, Any]) -> SearchCandidate:
    fields = record.get("fields", {})
    return SearchCandidate(
        profile_id=fields.get("profile_id", ""),
        name=fields.get("name", ""),
        slug=fields.get("slug", ""),
        category=fields.get("category") or "",
        tags=parse_tags(fields.get("Tags")),
        based_in=fields.get("based_in") or "",
        areas_covered=parse_tags(fields.get("areas_covered")),
    )


def first_linked_id(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, Iterable):
        for item in value:
            if item:
                return str(item)
    return None
