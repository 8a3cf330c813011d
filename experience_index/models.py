"""Core data models shared by the profile read paths and the intake pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel(key): _camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_camelize(item) for item in value]
    return value


def to_json_dict(obj: Any) -> Dict[str, Any]:
    """Serialize a model the way the presentation layer consumes it (camelCase keys)."""
    return _camelize(asdict(obj))


@dataclass(slots=True)
class DimensionScores:
    product_satisfaction: float = 0
    installation_satisfaction: float = 0
    process_communication: float = 0
    likelihood_to_recommend: float = 0


@dataclass(slots=True)
class ConsistencySignals:
    high_score_percentage: int = 0
    recommendation_rate: int = 0
    top_themes: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CustomerQuote:
    quote: str
    name: str


@dataclass(slots=True)
class ExternalPresence:
    platform1_name: Optional[str] = None
    platform1_review_count: Optional[int] = None
    platform1_url: Optional[str] = None
    platform2_name: Optional[str] = None
    platform2_review_count: Optional[int] = None
    platform2_url: Optional[str] = None


@dataclass(slots=True)
class ProfileSummary:
    """Listing snapshot of a published business."""

    profile_id: str
    slug: str
    business_name: str
    location: str
    category: str
    tags: List[str] = field(default_factory=list)
    overall_score: float = 0
    sample_size: int = 0
    date_range: str = ""
    logo_url: Optional[str] = None
    short_description: str = ""
    website: Optional[str] = None


@dataclass(slots=True)
class Profile:
    """Full profile as shown on the detail page.

    ``overall_score``, ``sample_size``, ``scores`` and the numeric consistency
    signals are recomputed from linked records on every detail fetch.
    """

    profile_id: str
    slug: str
    business_name: str
    location: str
    category: str
    tags: List[str] = field(default_factory=list)
    overall_score: float = 0
    sample_size: int = 0
    date_range: str = ""
    summary: str = ""
    scores: DimensionScores = field(default_factory=DimensionScores)
    consistency_signals: ConsistencySignals = field(default_factory=ConsistencySignals)
    customer_voice: List[CustomerQuote] = field(default_factory=list)
    logo_url: Optional[str] = None
    website: Optional[str] = None
    short_description: Optional[str] = None
    services: List[str] = field(default_factory=list)
    base_location: Optional[str] = None
    areas_covered: List[str] = field(default_factory=list)
    external_presence: ExternalPresence = field(default_factory=ExternalPresence)


@dataclass(slots=True)
class ExperienceRecord:
    customer_label: str
    date: str
    overall_score: float
    summary_public: str
    sentiment: str
    headline: str = ""
    tags: List[str] = field(default_factory=list)
    ratings: DimensionScores = field(default_factory=DimensionScores)
    behavioural_note: Optional[str] = None
    # Only populated when the note is non-empty and explicitly approved.
    company_action_note: Optional[str] = None
    company_action_note_approved: bool = False


@dataclass(slots=True)
class CompanyRef:
    """Minimal profile lookup used by the agent existence check."""

    record_id: str
    profile_id: str
    name: str
    slug: str

    @property
    def profile_url(self) -> str:
        return f"/profiles/{self.slug}"


@dataclass(slots=True)
class SearchCandidate:
    profile_id: str
    name: str
    slug: str
    category: str
    tags: List[str] = field(default_factory=list)
    based_in: str = ""
    areas_covered: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SearchResult:
    company_id: str
    name: str
    slug: str
    match_type: str
    location_match: bool
    relevance_score: int
    profile_url: str


@dataclass(slots=True)
class AgentQuoteRequest:
    """Validated agent submission."""

    company_id: str
    postcode_full: str
    job_description: str
    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    agent_name: Optional[str] = None
    agent_ref: Optional[str] = None


@dataclass(slots=True)
class PublicQuoteRequest:
    """Validated public form submission."""

    profile_slug: str
    postcode: str
    service_type: str
    notes: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
