from dataclasses import replace

import pytest

from experience_index.jobs import search_profiles


def test_run_search_job_requires_airtable(monkeypatch, settings):
    monkeypatch.setattr(search_profiles, "get_settings", lambda: replace(settings, airtable_api_key=""))

    with pytest.raises(RuntimeError):
        search_profiles.run_search_job(query="boiler", location=None, limit=10)


def test_run_search_job_rejects_blank_query(monkeypatch, settings):
    monkeypatch.setattr(search_profiles, "get_settings", lambda: settings)

    with pytest.raises(ValueError):
        search_profiles.run_search_job(query="   ", location=None, limit=10)


def test_run_search_job_returns_json_ready_results(monkeypatch, settings, fake_airtable):
    monkeypatch.setattr(search_profiles, "get_settings", lambda: settings)
    monkeypatch.setattr(search_profiles.AirtableClient, "from_settings", staticmethod(lambda _settings: fake_airtable))

    results = search_profiles.run_search_job(query=" boiler ", location="Clapham", limit=5)

    assert [result["slug"] for result in results] == ["acme-heating"]
    assert results[0]["profile_url"] == "/profiles/acme-heating"
    assert results[0]["location_match"] is True
    assert results[0]["match_type"] == "direct"


def test_build_parser_defaults():
    args = search_profiles.build_parser().parse_args(["boiler repair"])

    assert args.query == "boiler repair"
    assert args.location is None
    assert args.limit == 10

    args = search_profiles.build_parser().parse_args(["rewiring", "--location", "Leeds", "--limit", "3"])
    assert (args.location, args.limit) == ("Leeds", 3)
