import re
import sys
from pathlib import Path

import pytest

# Ensure the `experience_index` package is importable when running pytest from the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from experience_index.core.config import Settings  # noqa: E402
from experience_index.vendors.airtable import UpstreamError  # noqa: E402

_FORMULA = re.compile(r'^\{(\w+)\} (=|!=) "(.*)"$')


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeAirtable:
    """In-memory stand-in for AirtableClient that understands the simple formulas we send."""

    def __init__(self, tables=None):
        self.tables = tables or {}
        self.created = []
        self.fetches = []
        self.fail_reads = False
        self.fail_writes = False
        self._next_id = 1

    def fetch_all(self, table, params=None):
        self.fetches.append((table, dict(params or {})))
        if self.fail_reads:
            raise UpstreamError("Airtable fetch failed: 503", status_code=503)
        rows = list(self.tables.get(table, []))
        params = params or {}
        formula = params.get("filterByFormula")
        if formula:
            column, op, value = _FORMULA.match(formula).groups()
            if op == "=":
                rows = [row for row in rows if row["fields"].get(column) == value]
            else:
                rows = [row for row in rows if row["fields"].get(column) != value]
        if "maxRecords" in params:
            rows = rows[: int(params["maxRecords"])]
        return rows

    def create_record(self, table, fields):
        if self.fail_writes:
            raise UpstreamError("Airtable POST failed: 422", status_code=422)
        record = {"id": f"recLead{self._next_id}", "fields": dict(fields)}
        self._next_id += 1
        self.created.append((table, dict(fields)))
        return record

    def invalidate(self):
        return 0


@pytest.fixture
def settings():
    return Settings(
        airtable_api_key="keyTest",
        airtable_base_id="appTest",
        agent_keys=("agent-key-1", "agent-key-2"),
        revalidate_secret="s3cret",
        site_url="https://example.test",
    )


@pytest.fixture
def clock():
    return FakeClock()


def profile_row(record_id, **fields):
    return {"id": record_id, "fields": fields}


@pytest.fixture
def catalog_tables(settings):
    profiles = [
        profile_row(
            "recProfA",
            profile_id="acme-heating",
            name="Acme Heating",
            slug="acme-heating",
            status="Active",
            category="Heating",
            based_in="London",
            areas_covered=["Clapham", "Battersea"],
            Tags="Boiler Repair, Boiler Installation",
            overall_score_avg=9.1,
            sample_size=12,
            summary="Family run heating engineers.",
            top_themes="Tidy, Punctual",
            public_quotes='"Brilliant job" - Sarah (SW11)',
            date_range_start="2024-01-05",
            date_range_end="2024-03-20",
        ),
        profile_row(
            "recProfB",
            profile_id="bright-sparks",
            name="bright sparks",
            slug="bright-sparks",
            status="Active",
            category="Electrical",
            based_in="Leeds",
            Tags=["Rewiring"],
        ),
        profile_row(
            "recProfC",
            profile_id="draft-co",
            name="Draft Co",
            slug="draft-co",
            status="Draft",
            category="Heating",
            Tags="Boiler Repair",
        ),
    ]
    records = [
        profile_row("recR1", profile=["recProfA"], customer_label="Sarah (SW11)", experience_date="2024-03-01",
                    overall_score=9, recommended=True, record_summary_public="Great work"),
        profile_row("recR2", profile=["recProfA"], experience_date="2024-02-10", overall_score=7, recommended=1,
                    company_action_note="Thanks for the feedback", company_action_note_approved=True),
        profile_row("recR3", profile=["recProfA"], overall_score=4, company_action_note="thanks"),
        profile_row("recR4", profile=["recProfB"], experience_date="2024-05-01", overall_score=10, recommended=True),
    ]
    scores = [
        profile_row("recD1", rds_id="recR1::product", record=["recR1"], profile=["recProfA"], score=9),
        profile_row("recD2", rds_id="recR2::product", record=["recR2"], profile=["recProfA"], score=6),
        profile_row("recD3", rds_id="recR1::process", record=["recR1"], profile=["recProfA"], score=8),
        profile_row("recD4", rds_id="recR4::product", record=["recR4"], profile=["recProfB"], score=2),
    ]
    return {
        settings.profiles_table: profiles,
        settings.records_table: records,
        settings.dimension_scores_table: scores,
    }


@pytest.fixture
def fake_airtable(catalog_tables):
    return FakeAirtable(catalog_tables)
