"""PostgreSQL-backed rate-limit and dedupe stores for multi-instance deployments."""

import logging
import time
from contextlib import contextmanager
from typing import Optional

from psycopg2 import pool

from experience_index.core.config import get_settings
from experience_index.core.limits import SWEEP_INTERVAL_SECONDS, SweepSchedule

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS rate_limit_windows (
    scope TEXT NOT NULL,
    key TEXT NOT NULL,
    count INTEGER NOT NULL,
    reset_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (scope, key)
);
CREATE TABLE IF NOT EXISTS lead_dedupe (
    fingerprint TEXT PRIMARY KEY,
    lead_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

# The row lock taken by ON CONFLICT makes read-compare-increment one step.
# Counts keep growing past the limit inside a window; a hit is allowed while
# the returned count stays within it.
_HIT_WINDOW = """
INSERT INTO rate_limit_windows (scope, key, count, reset_at)
VALUES (%(scope)s, %(key)s, 1, NOW() + make_interval(secs => %(window)s))
ON CONFLICT (scope, key) DO UPDATE SET
    count = CASE WHEN rate_limit_windows.reset_at < NOW() THEN 1
                 ELSE rate_limit_windows.count + 1 END,
    reset_at = CASE WHEN rate_limit_windows.reset_at < NOW() THEN EXCLUDED.reset_at
                    ELSE rate_limit_windows.reset_at END
RETURNING count;
"""

_SWEEP_WINDOWS = "DELETE FROM rate_limit_windows WHERE reset_at < NOW();"

_LOOKUP_DEDUPE = """
SELECT lead_id FROM lead_dedupe
WHERE fingerprint = %(fingerprint)s
  AND created_at > NOW() - make_interval(secs => %(max_age)s);
"""

_RECORD_DEDUPE = """
INSERT INTO lead_dedupe (fingerprint, lead_id, created_at)
VALUES (%(fingerprint)s, %(lead_id)s, NOW())
ON CONFLICT (fingerprint) DO UPDATE SET
    lead_id = EXCLUDED.lead_id,
    created_at = EXCLUDED.created_at;
"""

_SWEEP_DEDUPE = "DELETE FROM lead_dedupe WHERE created_at < NOW() - make_interval(secs => %(retention)s);"


def ensure_schema() -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_SCHEMA)
        conn.commit()
    logger.info("Rate-limit and dedupe tables ready")


def _execute(sql: str, params: Optional[dict] = None, fetch: bool = False):
    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                cur.execute(sql, params or {})
                row = cur.fetchone() if fetch else None
                affected = cur.rowcount
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    return row if fetch else affected


class PostgresWindowStore:
    def __init__(self, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        self._gate = SweepSchedule(time.monotonic, sweep_interval)

    def hit(self, scope: str, key: str, limit: int, window_seconds: float) -> bool:
        if self._gate.due():
            self.sweep()
        row = _execute(_HIT_WINDOW, {"scope": scope, "key": key, "window": window_seconds}, fetch=True)
        return row is not None and row[0] <= limit

    def sweep(self) -> int:
        removed = _execute(_SWEEP_WINDOWS)
        if removed:
            logger.debug("Swept %d expired rate-limit windows", removed)
        return removed


class PostgresDedupeStore:
    def __init__(self, retention_seconds: float = 24 * 60 * 60, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        self._retention = retention_seconds
        self._gate = SweepSchedule(time.monotonic, sweep_interval)

    def lookup(self, fingerprint: str, max_age_seconds: float) -> Optional[str]:
        if self._gate.due():
            self.sweep()
        row = _execute(_LOOKUP_DEDUPE, {"fingerprint": fingerprint, "max_age": max_age_seconds}, fetch=True)
        return row[0] if row else None

    def record(self, fingerprint: str, lead_id: str) -> None:
        _execute(_RECORD_DEDUPE, {"fingerprint": fingerprint, "lead_id": lead_id})

    def sweep(self) -> int:
        removed = _execute(_SWEEP_DEDUPE, {"retention": self._retention})
        if removed:
            logger.debug("Swept %d expired dedupe entries", removed)
        return removed
