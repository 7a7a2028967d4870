from __future__ import annotations

import pytest

from progress_engine.core.config import Settings, load_settings

TUNABLES = (
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_JSON",
    "DEFAULT_TIMEZONE",
    "MAX_APPLY_RETRIES",
    "STRUCTURE_LOOKUP_TIMEOUT_SECONDS",
    "PROGRESS_CACHE_TTL",
    "QUIZ_PASS_SCORE",
    "EVENT_ID_RETENTION_DAYS",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in TUNABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.log_json is False
    assert settings.default_timezone == "UTC"
    assert settings.max_apply_retries == 3
    assert settings.structure_lookup_timeout_seconds == 2.0
    assert settings.progress_cache_ttl == 300
    assert settings.quiz_pass_score == 70.0
    assert settings.event_id_retention_days == 30


def test_engine_tunables_from_env(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("DEFAULT_TIMEZONE", "Asia/Tokyo")
    clean_env.setenv("MAX_APPLY_RETRIES", "5")
    clean_env.setenv("STRUCTURE_LOOKUP_TIMEOUT_SECONDS", "0.5")
    clean_env.setenv("PROGRESS_CACHE_TTL", "60")
    clean_env.setenv("QUIZ_PASS_SCORE", "80")
    clean_env.setenv("EVENT_ID_RETENTION_DAYS", "7")
    settings = load_settings()
    assert settings.default_timezone == "Asia/Tokyo"
    assert settings.max_apply_retries == 5
    assert settings.structure_lookup_timeout_seconds == 0.5
    assert settings.progress_cache_ttl == 60
    assert settings.quiz_pass_score == 80.0
    assert settings.event_id_retention_days == 7


def test_choices_are_case_and_space_insensitive(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("APP_ENV", "  PROD ")
    clean_env.setenv("LOG_LEVEL", "Warning")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "warning"


def test_blank_urls_mean_in_memory(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("DATABASE_URL", "  ")
    clean_env.setenv("REDIS_URL", "")
    settings = load_settings()
    assert settings.database_url is None
    assert settings.redis_url is None


@pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("no", False)])
def test_log_json_flag(clean_env: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    clean_env.setenv("LOG_JSON", raw)
    assert load_settings().log_json is expected


@pytest.mark.parametrize(
    "name,raw,message",
    [
        ("APP_ENV", "staging", "APP_ENV must be dev"),
        ("LOG_LEVEL", "verbose", "LOG_LEVEL must be debug"),
        ("LOG_JSON", "maybe", "LOG_JSON must be a boolean"),
        ("PORT", "eighty", "PORT must be an integer"),
        ("DEFAULT_TIMEZONE", "Mars/Olympus_Mons", "DEFAULT_TIMEZONE must be an IANA zone"),
        ("MAX_APPLY_RETRIES", "0", "MAX_APPLY_RETRIES must be >= 1"),
        ("MAX_APPLY_RETRIES", "three", "MAX_APPLY_RETRIES must be an integer"),
        ("STRUCTURE_LOOKUP_TIMEOUT_SECONDS", "soon", "must be a number"),
        ("STRUCTURE_LOOKUP_TIMEOUT_SECONDS", "0", "must be positive"),
        ("QUIZ_PASS_SCORE", "120", "QUIZ_PASS_SCORE must be within 0..100"),
        ("EVENT_ID_RETENTION_DAYS", "0", "EVENT_ID_RETENTION_DAYS must be >= 1"),
    ],
)
def test_bad_values_fail_startup(
    clean_env: pytest.MonkeyPatch, name: str, raw: str, message: str
) -> None:
    clean_env.setenv(name, raw)
    with pytest.raises(ValueError, match=message):
        load_settings()


def test_settings_env_properties_and_frozen() -> None:
    s = Settings(  # type: ignore[arg-type]
        app_env="test",
        log_level="info",
        log_json=False,
        port=8000,
        database_url=None,
        redis_url=None,
    )
    assert (s.is_dev, s.is_test, s.is_prod) == (False, True, False)
    with pytest.raises(AttributeError):
        s.app_env = "prod"  # type: ignore[misc]
