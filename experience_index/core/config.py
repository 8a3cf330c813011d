"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    airtable_api_key: str
    airtable_base_id: str
    profiles_table: str = "Public Profiles"
    records_table: str = "Public Records"
    dimension_scores_table: str = "Record Dimension Scores"
    leads_table: str = "Inbound Leads"
    airtable_timeout: float = 10.0
    airtable_cache_ttl: float = 0.0
    agent_keys: Tuple[str, ...] = ()
    revalidate_secret: str = ""
    site_url: str = "https://serviceexperienceindex.com"
    database_url: str = ""
    port: int = 8080

    @property
    def airtable_configured(self) -> bool:
        return bool(self.airtable_api_key and self.airtable_base_id)


def parse_agent_keys(raw: str) -> Tuple[str, ...]:
    """Split the comma separated allow-list, dropping blanks."""
    return tuple(key.strip() for key in (raw or "").split(",") if key.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    airtable_api_key = os.getenv("AIRTABLE_API_KEY", "")
    airtable_base_id = os.getenv("AIRTABLE_BASE_ID", "")
    agent_keys = parse_agent_keys(os.getenv("SEI_AGENT_KEY", ""))
    site_url = os.getenv("SITE_URL", "https://serviceexperienceindex.com").rstrip("/")

    if not airtable_api_key or not airtable_base_id:
        logger.warning("AIRTABLE_API_KEY or AIRTABLE_BASE_ID is not set; profile reads will return no data.")
    if not agent_keys:
        logger.warning("SEI_AGENT_KEY is not configured; agent submissions will be rejected.")

    return Settings(
        airtable_api_key=airtable_api_key,
        airtable_base_id=airtable_base_id,
        profiles_table=os.getenv("AIRTABLE_PUBLIC_PROFILES_TABLE", "Public Profiles"),
        records_table=os.getenv("AIRTABLE_PUBLIC_RECORDS_TABLE", "Public Records"),
        dimension_scores_table=os.getenv("AIRTABLE_DIMENSION_SCORES_TABLE", "Record Dimension Scores"),
        leads_table=os.getenv("AIRTABLE_LEADS_TABLE", "Inbound Leads"),
        airtable_timeout=float(os.getenv("AIRTABLE_TIMEOUT_SECONDS", "10")),
        airtable_cache_ttl=float(os.getenv("AIRTABLE_CACHE_TTL_SECONDS", "0")),
        agent_keys=agent_keys,
        revalidate_secret=os.getenv("REVALIDATE_SECRET", ""),
        site_url=site_url,
        database_url=os.getenv("DATABASE_URL", ""),
        port=int(os.getenv("PORT", "8080")),
    )
