import pytest

from poi_catalog.core import config


def setup_function(function):
    config.get_settings.cache_clear()


def teardown_function(function):
    config.get_settings.cache_clear()


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr(config, "load_dotenv", lambda: None)


def test_get_settings_reads_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_PLACES_API_KEY", "abc123")
    monkeypatch.setenv("CATALOG_PATH", "/tmp/catalog.json")
    monkeypatch.setenv("DEFAULT_PHONE_REGION", "us")
    monkeypatch.setenv("PLACES_REQUESTS_PER_SECOND", "2.5")
    monkeypatch.setenv("ENRICH_BATCH_SIZE", "10")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = config.get_settings()

    assert settings.google_api_key == "abc123"
    assert settings.catalog_path == "/tmp/catalog.json"
    assert settings.default_phone_region == "US"
    assert settings.requests_per_second == 2.5
    assert settings.batch_size == 10
    assert settings.log_level == "DEBUG"


def test_get_settings_warns_when_missing(monkeypatch, caplog):
    for name in ("GOOGLE_PLACES_API_KEY", "CATALOG_PATH", "DEFAULT_PHONE_REGION", "ENRICH_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)

    with caplog.at_level("WARNING"):
        settings = config.get_settings()

    assert "GOOGLE_PLACES_API_KEY is not configured" in " ".join(caplog.messages)
    assert settings.google_api_key == ""
    assert settings.catalog_path == "data/catalog.json"
    assert settings.default_phone_region == "KY"
    assert settings.batch_size == 50
    assert settings.max_retries == 4


def test_invalid_number_falls_back_to_default(monkeypatch, caplog):
    monkeypatch.setenv("ENRICH_MAX_PHOTOS", "lots")

    with caplog.at_level("WARNING"):
        settings = config.get_settings()

    assert settings.max_photos == 5
    assert "ENRICH_MAX_PHOTOS" in " ".join(caplog.messages)


def test_require_api_key(monkeypatch):
    monkeypatch.delenv("GOOGLE_PLACES_API_KEY", raising=False)
    settings = config.get_settings()

    with pytest.raises(config.ConfigError):
        config.require_api_key(settings)

    assert config.require_api_key(config.Settings(google_api_key="k")) == "k"
