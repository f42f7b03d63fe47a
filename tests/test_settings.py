"""
Tests for settings validation.
"""

from shared.config.settings import Settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_development_defaults_pass():
    assert make_settings().validate_production_settings() == []


def test_production_flags_unsafe_defaults():
    errors = make_settings(environment="production").validate_production_settings()

    assert "DEBUG must be False in production" in errors
    assert any("DATABASE_URL" in e for e in errors)


def test_production_with_server_database():
    current = make_settings(
        environment="production",
        debug=False,
        database_url="postgresql+psycopg://app:secret@db:5432/app",
    )

    assert current.validate_production_settings() == []


def test_publish_retries_must_allow_one_attempt():
    current = make_settings(
        environment="production",
        debug=False,
        database_url="postgresql+psycopg://db/app",
        redis_publish_max_retries=0,
    )

    assert current.validate_production_settings() == ["REDIS_PUBLISH_MAX_RETRIES must be at least 1"]


def test_environment_variables_override(monkeypatch):
    monkeypatch.setenv("EVENT_CHANNEL", "orders-events")
    monkeypatch.setenv("EMIT_DELETION_EVENTS", "false")

    current = make_settings()

    assert current.event_channel == "orders-events"
    assert current.emit_deletion_events is False
