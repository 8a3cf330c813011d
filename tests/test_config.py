from experience_index.core import config


def setup_function(function):
    config.get_settings.cache_clear()


def teardown_function(function):
    config.get_settings.cache_clear()


def test_get_settings_reads_env(monkeypatch):
    monkeypatch.setenv("AIRTABLE_API_KEY", "key123")
    monkeypatch.setenv("AIRTABLE_BASE_ID", "appXYZ")
    monkeypatch.setenv("SEI_AGENT_KEY", " alpha , beta,, ")
    monkeypatch.setenv("AIRTABLE_PUBLIC_PROFILES_TABLE", "Profiles v2")
    monkeypatch.setenv("AIRTABLE_CACHE_TTL_SECONDS", "30")
    monkeypatch.setenv("SITE_URL", "https://example.org/")
    monkeypatch.setenv("PORT", "9100")

    settings = config.get_settings()

    assert settings.airtable_api_key == "key123"
    assert settings.airtable_base_id == "appXYZ"
    assert settings.airtable_configured is True
    assert settings.agent_keys == ("alpha", "beta")
    assert settings.profiles_table == "Profiles v2"
    assert settings.records_table == "Public Records"
    assert settings.airtable_cache_ttl == 30.0
    assert settings.site_url == "https://example.org"
    assert settings.port == 9100


def test_get_settings_warns_when_missing(monkeypatch, caplog):
    monkeypatch.delenv("AIRTABLE_API_KEY", raising=False)
    monkeypatch.delenv("AIRTABLE_BASE_ID", raising=False)
    monkeypatch.delenv("SEI_AGENT_KEY", raising=False)
    monkeypatch.setattr(config, "load_dotenv", lambda: None)

    with caplog.at_level("WARNING"):
        settings = config.get_settings()

    messages = " ".join(caplog.messages)
    assert "AIRTABLE_API_KEY or AIRTABLE_BASE_ID is not set" in messages
    assert "SEI_AGENT_KEY is not configured" in messages
    assert settings.airtable_configured is False
    assert settings.agent_keys == ()
    assert settings.leads_table == "Inbound Leads"


def test_parse_agent_keys_handles_blank():
    assert config.parse_agent_keys("") == ()
    assert config.parse_agent_keys(" , ") == ()
    assert config.parse_agent_keys("one") == ("one",)
