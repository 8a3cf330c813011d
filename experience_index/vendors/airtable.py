"""Client utilities for the Airtable REST API."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from experience_index.core.config import Settings

logger = logging.getLogger(__name__)
_BASE_URL = "https://api.airtable.com/v0"
_PAGE_SIZE = 100


class UpstreamError(RuntimeError):
    """Raised when Airtable is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def formula_literal(value: str) -> str:
    """Quote a value for embedding inside a filterByFormula expression."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class AirtableClient:
    """Thin wrapper around one Airtable base.

    List reads degrade to an empty result when credentials are missing so the
    site can run locally without a base. Writes never degrade.
    """

    def __init__(
        self,
        api_key: str,
        base_id: str,
        *,
        timeout: float = 10.0,
        cache_ttl: float = 0.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key
        self._base_id = base_id
        self._timeout = timeout
        self._cache_ttl = cache_ttl
        self._session = session or requests.Session()
        self._cache: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], Tuple[float, List[Dict[str, Any]]]] = {}
        self._cache_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[requests.Session] = None) -> "AirtableClient":
        return cls(
            settings.airtable_api_key,
            settings.airtable_base_id,
            timeout=settings.airtable_timeout,
            cache_ttl=settings.airtable_cache_ttl,
            session=session,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._base_id)

    def _table_url(self, table: str) -> str:
        return f"{_BASE_URL}/{self._base_id}/{quote(table, safe='')}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def fetch_all(self, table: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """Return every record of ``table``, following the offset token."""
        if not self.configured:
            logger.warning("Airtable not configured, returning empty results for %s", table)
            return []

        params = dict(params or {})
        cache_key = (table, tuple(sorted(params.items())))
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        if "maxRecords" not in params:
            params.setdefault("pageSize", str(_PAGE_SIZE))

        records: List[Dict[str, Any]] = []
        offset: Optional[str] = None
        pages = 0
        while True:
            page_params = dict(params)
            if offset:
                page_params["offset"] = offset
            payload = self._request("GET", table, params=page_params)
            page = payload.get("records")
            if not isinstance(page, list):
                raise UpstreamError(f"Airtable fetch from {table} returned no record list")
            records.extend(page)
            pages += 1
            offset = payload.get("offset")
            if not offset:
                break

        logger.debug("Fetched %d records from %s across %d page(s)", len(records), table, pages)
        self._cache_put(cache_key, records)
        return records

    def create_record(self, table: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create one record and return it as Airtable echoes it back."""
        if not self.configured:
            logger.error("Airtable not configured; cannot create record in %s", table)
            raise UpstreamError("Airtable is not configured")

        payload = self._request("POST", table, json={"records": [{"fields": fields}]})
        created = payload.get("records")
        if not isinstance(created, list) or not created or not isinstance(created[0], dict) or not created[0].get("id"):
            raise UpstreamError(f"Airtable create in {table} returned no record")
        return created[0]

    def invalidate(self) -> int:
        """Drop every cached list response; returns how many entries were dropped."""
        with self._cache_lock:
            dropped = len(self._cache)
            self._cache.clear()
        if dropped:
            logger.info("Invalidated %d cached Airtable responses", dropped)
        return dropped

    def _request(self, method: str, table: str, **kwargs: Any) -> Dict[str, Any]:
        url = self._table_url(table)
        try:
            response = self._session.request(method, url, headers=self._headers(), timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("Airtable %s %s failed: %s", method, table, exc)
            raise UpstreamError(f"Airtable request failed: {exc}") from exc

        if not (200 <= response.status_code < 300):
            logger.error("Airtable %s %s failed: status=%s body=%s", method, table, response.status_code, response.text[:500])
            raise UpstreamError(f"Airtable {method} failed: {response.status_code}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Airtable %s %s returned a non-JSON body: %s", method, table, response.text[:500])
            raise UpstreamError(f"Airtable {method} returned invalid JSON", status_code=response.status_code) from exc
        if not isinstance(payload, dict):
            logger.error("Airtable %s %s returned %s instead of an object", method, table, type(payload).__name__)
            raise UpstreamError(f"Airtable {method} returned an unexpected body", status_code=response.status_code)
        return payload

    def _cache_get(self, key):
        if self._cache_ttl <= 0:
            return None
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            expires_at, records = entry
            if time.monotonic() >= expires_at:
                del self._cache[key]
                return None
            return list(records)

    def _cache_put(self, key, records: List[Dict[str, Any]]) -> None:
        if self._cache_ttl <= 0:
            return
        with self._cache_lock:
            self._cache[key] = (time.monotonic() + self._cache_ttl, list(records))
