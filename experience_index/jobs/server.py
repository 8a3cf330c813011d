"""HTTP entrypoint for profile reads and lead intake (Cloud Run friendly)."""

from __future__ import annotations

import hmac
import logging
import os
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional
from xml.sax.saxutils import escape

from flask import Flask, Response, jsonify, request

from experience_index.core import db
from experience_index.core.config import Settings, get_settings
from experience_index.core.errors import IntakeError, InternalError, RateLimited, ValidationError
from experience_index.core.intake import IntakePipeline, utc_timestamp
from experience_index.core.limits import InMemoryDedupeStore, InMemoryWindowStore
from experience_index.core.search import search, use_system_collation
from experience_index.etl.aggregate import ProfileCatalog
from experience_index.models import to_json_dict
from experience_index.vendors.airtable import AirtableClient, UpstreamError

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & services ----------
app = Flask(__name__)

STATIC_PAGES = (
    ("/", "1.0", "weekly"),
    ("/standards", "0.8", "monthly"),
    ("/profiles", "0.9", "daily"),
)


@dataclass
class Services:
    settings: Settings
    client: AirtableClient
    catalog: ProfileCatalog
    intake: IntakePipeline


_services: Optional[Services] = None
_services_lock = threading.Lock()


def build_services(settings: Settings) -> Services:
    client = AirtableClient.from_settings(settings)
    catalog = ProfileCatalog(client, settings)
    if settings.database_url:
        db.ensure_schema()
        windows, dedupe = db.PostgresWindowStore(), db.PostgresDedupeStore()
        logger.info("Using PostgreSQL for rate limits and dedupe")
    else:
        windows, dedupe = InMemoryWindowStore(), InMemoryDedupeStore()
        logger.info("Using in-process rate limits and dedupe (single instance only)")
    intake = IntakePipeline(client, catalog, settings, windows, dedupe)
    return Services(settings=settings, client=client, catalog=catalog, intake=intake)


def get_services() -> Services:
    global _services
    if _services is None:
        with _services_lock:
            if _services is None:
                _services = build_services(get_settings())
    return _services


def _caller_address() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or request.remote_addr or "unknown"


def _optional_number(name: str, cast):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return cast(raw)
    except ValueError:
        return None


# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never the backing store."""
    settings = get_services().settings
    return (
        jsonify(
            {
                "status": "ok",
                "airtable_configured": settings.airtable_configured,
                "agent_keys_configured": len(settings.agent_keys),
                "shared_limits": bool(settings.database_url),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/api/quote-requests")
def public_quote_request() -> Any:
    """
    Public quote form submission.
    Required JSON fields: profile_slug, postcode, service_type, email or phone
    Optional: notes
    """
    intake = get_services().intake
    try:
        intake.admit_public(_caller_address())
        payload = request.get_json(force=True, silent=True)
        return jsonify(intake.submit_public(payload)), 200
    except RateLimited as exc:
        return jsonify({"error": exc.message}), 429
    except ValidationError as exc:
        return jsonify({"error": exc.message, "fields": exc.fields}), 400
    except Exception as exc:  # noqa: BLE001
        logger.exception("Quote request error: %s", exc)
        return jsonify({"error": "Failed to submit quote request"}), 500


@app.post("/api/agent/quote-requests")
def agent_quote_request() -> Any:
    intake = get_services().intake
    try:
        intake.authorize_agent(request.headers.get("Authorization"))
        payload = request.get_json(force=True, silent=True)
        return jsonify(intake.submit_agent(payload)), 200
    except IntakeError as exc:
        return jsonify(exc.to_payload()), exc.status
    except Exception as exc:  # noqa: BLE001
        logger.exception("Agent quote request error: %s", exc)
        error = InternalError()
        return jsonify(error.to_payload()), error.status


@app.get("/api/profiles")
def list_profiles() -> Any:
    """Filtered listing; query params: location, category, minScore, minSample."""
    profiles = get_services().catalog.filter_profiles(
        location=request.args.get("location") or None,
        category=request.args.get("category") or None,
        min_score=_optional_number("minScore", float),
        min_sample=_optional_number("minSample", int),
    )
    return jsonify(
        {
            "profiles": [to_json_dict(profile) for profile in profiles],
            "count": len(profiles),
            "timestamp": utc_timestamp(),
        }
    )


@app.get("/api/profiles/search")
def search_profiles() -> Any:
    query = (request.args.get("query") or "").strip()
    location = request.args.get("location") or None
    if not query:
        error = ValidationError(["query"], "query parameter is required")
        payload: Dict[str, Any] = error.to_payload()
        return jsonify(payload), error.status

    try:
        results = search(get_services().catalog, query, location, request.args.get("limit", "10"))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Agent search error: %s", exc)
        return jsonify(InternalError("Search failed").to_payload()), 500

    return jsonify(
        {
            "ok": True,
            "query": query,
            "location": location,
            "results": [asdict(result) for result in results],
        }
    )


@app.get("/api/profiles/<slug>")
def profile_detail(slug: str) -> Any:
    catalog = get_services().catalog
    try:
        profile = catalog.detail(slug)
        if profile is None:
            return jsonify({"error": "Profile not found"}), 404
        records = catalog.records(slug)
    except UpstreamError as exc:
        logger.error("Profile %s unavailable: %s", slug, exc)
        return jsonify({"error": "Failed to fetch profile"}), 500

    return jsonify(
        {
            "profile": to_json_dict(profile),
            "records": [to_json_dict(record) for record in records],
            "timestamp": utc_timestamp(),
        }
    )


@app.post("/api/revalidate")
def revalidate() -> Any:
    services = get_services()
    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        payload = {}
    secret = payload.get("secret")
    expected = services.settings.revalidate_secret
    if not expected or not isinstance(secret, str) or not hmac.compare_digest(secret.encode(), expected.encode()):
        return jsonify({"error": "Invalid secret"}), 401

    slug = payload.get("slug")
    dropped = services.client.invalidate()
    logger.info("Revalidated Airtable cache (slug=%s, dropped=%d)", slug or "all", dropped)
    return jsonify({"revalidated": True, "timestamp": utc_timestamp(), "slug": slug or "all"})


@app.get("/sitemap.xml")
def sitemap() -> Any:
    services = get_services()
    base_url = services.settings.site_url
    pages = list(STATIC_PAGES)
    pages.extend((f"/profiles/{slug}", "0.7", "weekly") for slug in services.catalog.slugs())

    entries = "\n".join(
        f"  <url>\n"
        f"    <loc>{escape(base_url + path)}</loc>\n"
        f"    <changefreq>{changefreq}</changefreq>\n"
        f"    <priority>{priority}</priority>\n"
        f"  </url>"
        for path, priority, changefreq in pages
    )
    body = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        f"{entries}\n"
        "</urlset>"
    )
    return Response(body, mimetype="application/xml")


def main() -> None:
    """
    Cloud Run injects PORT (usually 8080); local runs fall back to the settings value.
    """
    use_system_collation()
    settings = get_settings()
    port = int(os.getenv("PORT") or settings.port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()
