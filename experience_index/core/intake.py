"""Inbound lead intake for the public quote form and the agent API.

Both entry points share validation and write semantics but differ in how
strict they are: the public form always acknowledges the visitor, while the
agent API reports every failure so callers can retry on their side.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from experience_index.core.config import Settings
from experience_index.core.errors import (
    InternalError,
    NotFound,
    RateLimited,
    Unauthorized,
    ValidationError,
    WriteFailed,
)
from experience_index.core.limits import DedupeStore, KeyedLocks, WindowStore
from experience_index.etl.aggregate import ProfileCatalog
from experience_index.models import AgentQuoteRequest, PublicQuoteRequest
from experience_index.vendors.airtable import AirtableClient, UpstreamError

logger = logging.getLogger(__name__)

UK_POSTCODE_REGEX = re.compile(r"^[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}$", re.IGNORECASE)

# (limit, window seconds)
PUBLIC_IP_LIMIT: Tuple[int, float] = (5, 60)
AGENT_KEY_LIMIT: Tuple[int, float] = (30, 60)
AGENT_COMPANY_LIMIT: Tuple[int, float] = (10, 3600)
DEDUPE_WINDOW_SECONDS = 24 * 60 * 60

BEARER_PREFIX = "Bearer "


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX):].strip() or None


def validate_agent_payload(body: Any) -> AgentQuoteRequest:
    """Check the agent payload structure, collecting every failing field."""
    if not isinstance(body, dict):
        raise ValidationError(["body"], "Request body must be a JSON object")

    errors: List[str] = []

    company_id = body.get("company_id")
    if not _non_empty_str(company_id):
        errors.append("company_id")

    customer = body.get("customer")
    if not isinstance(customer, dict):
        errors.append("customer")
        customer = {}
    else:
        postcode = customer.get("postcode_full")
        if not _non_empty_str(postcode):
            errors.append("customer.postcode_full")
        elif not UK_POSTCODE_REGEX.match(postcode.strip()):
            errors.append("customer.postcode_full (invalid UK postcode format)")

        if not _non_empty_str(customer.get("email")) and not _non_empty_str(customer.get("phone")):
            errors.append("customer.email or customer.phone (at least one required)")

    job = body.get("job")
    if not isinstance(job, dict):
        errors.append("job")
        job = {}
    else:
        description = job.get("description")
        if not isinstance(description, str) or not description.strip():
            errors.append("job.description")

    if errors:
        raise ValidationError(errors)

    source = body.get("source") if isinstance(body.get("source"), dict) else {}

    def _optional(mapping: Dict[str, Any], key: str) -> Optional[str]:
        value = mapping.get(key)
        return value if _non_empty_str(value) else None

    return AgentQuoteRequest(
        company_id=company_id,
        postcode_full=customer["postcode_full"].strip(),
        job_description=job["description"].strip(),
        customer_name=_optional(customer, "name"),
        email=_optional(customer, "email"),
        phone=_optional(customer, "phone"),
        agent_name=_optional(source, "agent_name"),
        agent_ref=_optional(source, "agent_ref"),
    )


def validate_public_payload(body: Any) -> PublicQuoteRequest:
    if not isinstance(body, dict):
        raise ValidationError(["body"], "Request body must be a JSON object")

    errors: List[str] = []
    profile_slug = body.get("profile_slug")
    postcode = body.get("postcode")
    service_type = body.get("service_type")

    if not _non_empty_str(profile_slug):
        errors.append("profile_slug")
    if not isinstance(postcode, str) or len(postcode) < 3:
        errors.append("postcode")
    if not _non_empty_str(service_type):
        errors.append("service_type")
    if not body.get("email") and not body.get("phone"):
        errors.append("email or phone")

    if errors:
        raise ValidationError(errors)

    notes = body.get("notes")
    return PublicQuoteRequest(
        profile_slug=profile_slug,
        postcode=postcode,
        service_type=service_type,
        notes=notes if isinstance(notes, str) else "",
        email=str(body["email"]) if body.get("email") else None,
        phone=str(body["phone"]) if body.get("phone") else None,
    )


def dedupe_fingerprint(req: AgentQuoteRequest) -> str:
    """Agent reference wins; otherwise contact (email before phone) plus postcode."""
    if req.agent_ref:
        return f"ref:{req.company_id}:{req.agent_ref}"
    contact = req.email or req.phone or ""
    return f"contact:{req.company_id}:{contact}:{req.postcode_full}"


def _token_hint(token: str) -> str:
    return f"{token[:4]}…" if len(token) > 4 else "…"


class IntakePipeline:
    """Runs submissions through auth, limits, validation, dedupe and the lead write."""

    def __init__(
        self,
        client: AirtableClient,
        catalog: ProfileCatalog,
        settings: Settings,
        windows: WindowStore,
        dedupe: DedupeStore,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self._client = client
        self._catalog = catalog
        self._settings = settings
        self._windows = windows
        self._dedupe = dedupe
        self._locks = locks or KeyedLocks()

    # ---------- Public form ----------

    def admit_public(self, address: str) -> None:
        limit, window = PUBLIC_IP_LIMIT
        if not self._windows.hit("ip", address, limit, window):
            logger.info("Public quote request rate limited for %s", address)
            raise RateLimited("ip", "Too many requests. Please try again later.")

    def submit_public(self, body: Any) -> Dict[str, Any]:
        req = validate_public_payload(body)

        fields: Dict[str, Any] = {
            "profile": req.profile_slug,
            "postcode_full": req.postcode,
            "job_description": " — ".join(part for part in (req.service_type, req.notes) if part),
            "lead_status": "new",
            "source": "website",
        }
        if req.email:
            fields["customer_email"] = req.email
        else:
            fields["customer_phone"] = req.phone

        try:
            created = self._client.create_record(self._settings.leads_table, fields)
        except UpstreamError as exc:
            # No retry queue exists; the visitor is still told the request went through.
            logger.error("Failed to write public quote request for %s: %s", req.profile_slug, exc)
        else:
            logger.info("Created public quote request %s for %s", created.get("id"), req.profile_slug)

        return {
            "success": True,
            "message": "Quote request submitted successfully",
            "timestamp": utc_timestamp(),
        }

    # ---------- Agent API ----------

    def authorize_agent(self, authorization: Optional[str]) -> str:
        """Check the bearer token and its per-key window; both happen before body parsing."""
        token = extract_bearer_token(authorization)
        if token is None or not self._settings.agent_keys or token not in self._settings.agent_keys:
            raise Unauthorized()

        limit, window = AGENT_KEY_LIMIT
        if not self._windows.hit("api-key", token, limit, window):
            logger.info("Agent key %s rate limited", _token_hint(token))
            raise RateLimited("api-key", f"API key rate limit exceeded ({limit}/min)")
        return token

    def submit_agent(self, body: Any) -> Dict[str, Any]:
        req = validate_agent_payload(body)

        limit, window = AGENT_COMPANY_LIMIT
        if not self._windows.hit("company", req.company_id, limit, window):
            logger.info("Company %s rate limited", req.company_id)
            raise RateLimited("company", f"Company rate limit exceeded for {req.company_id} ({limit}/hour)")

        fingerprint = dedupe_fingerprint(req)
        with self._locks.hold(fingerprint):
            existing = self._dedupe.lookup(fingerprint, DEDUPE_WINDOW_SECONDS)
            if existing:
                logger.info("Duplicate agent submission for %s, returning lead %s", req.company_id, existing)
                return {
                    "ok": True,
                    "deduped": True,
                    "lead_id": existing,
                    "message": "Duplicate request detected, returning existing lead",
                }

            try:
                company = self._catalog.find_by_company_id(req.company_id)
            except UpstreamError as exc:
                logger.error("Company lookup failed for %s: %s", req.company_id, exc)
                raise InternalError("Failed to verify company") from exc
            if company is None:
                raise NotFound(f"No profile found for company_id: {req.company_id}")

            fields: Dict[str, Any] = {
                "profile": [company.record_id],
                "customer_name": req.customer_name or "Not provided",
                "postcode_full": req.postcode_full,
                "job_description": req.job_description,
                "lead_status": "new",
                "source": "agent",
            }
            if req.email:
                fields["customer_email"] = req.email
            if req.phone:
                fields["customer_phone"] = req.phone

            try:
                created = self._client.create_record(self._settings.leads_table, fields)
            except UpstreamError as exc:
                logger.error("Agent lead write failed for %s: %s", req.company_id, exc)
                raise WriteFailed() from exc

            lead_id = created["id"]
            self._dedupe.record(fingerprint, lead_id)

        logger.info("Created agent lead %s for %s (agent=%s)", lead_id, req.company_id, req.agent_name or "unknown")
        return {
            "ok": True,
            "deduped": False,
            "lead_id": lead_id,
            "company": {
                "id": req.company_id,
                "name": company.name,
                "profile_url": company.profile_url,
            },
            "timestamp": utc_timestamp(),
        }
