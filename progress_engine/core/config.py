"""Process configuration, read once from the environment at import.

  APP_ENV                           dev | test | prod
  LOG_LEVEL / LOG_JSON              see core/logging.py
  PORT                              uvicorn port for ``python -m progress_engine.main``
  DATABASE_URL                      postgresql+asyncpg://...; unset → in-memory store
  REDIS_URL                         redis://...; unset → in-memory cache and queue
  DEFAULT_TIMEZONE                  IANA zone for learners with no profile zone
  MAX_APPLY_RETRIES                 extra attempts after a version conflict
  STRUCTURE_LOOKUP_TIMEOUT_SECONDS  budget for one catalog lookup
  PROGRESS_CACHE_TTL                seconds a cached progress read lives
  QUIZ_PASS_SCORE                   percentage at which a quiz counts as passed
  EVENT_ID_RETENTION_DAYS           how long an applied event_id is remembered

A bad value fails startup with a ValueError naming the variable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, get_args
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getchoice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = _getenv(name, default).lower()
    if raw not in choices:
        raise ValueError(f"{name} must be {'|'.join(choices)} (got {raw!r})")
    return raw


def _getbool(name: str, default: str) -> bool:
    raw = _getenv(name, default).lower()
    if raw not in ("1", "0", "true", "false", "yes", "no"):
        raise ValueError(f"{name} must be a boolean (got {raw!r})")
    return raw in ("1", "true", "yes")


def _getint(name: str, default: str) -> int:
    raw = _getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _getfloat(name: str, default: str) -> float:
    raw = _getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None


def _getzone(name: str, default: str) -> str:
    raw = _getenv(name, default)
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"{name} must be an IANA zone name (got {raw!r})") from None
    return raw


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    default_timezone: str = "UTC"
    max_apply_retries: int = 3
    structure_lookup_timeout_seconds: float = 2.0
    progress_cache_ttl: int = 300
    quiz_pass_score: float = 70.0
    event_id_retention_days: int = 30

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    max_apply_retries = _getint("MAX_APPLY_RETRIES", "3")
    if max_apply_retries < 1:
        raise ValueError(f"MAX_APPLY_RETRIES must be >= 1 (got {max_apply_retries})")

    lookup_timeout = _getfloat("STRUCTURE_LOOKUP_TIMEOUT_SECONDS", "2.0")
    if lookup_timeout <= 0:
        raise ValueError("STRUCTURE_LOOKUP_TIMEOUT_SECONDS must be positive")

    quiz_pass_score = _getfloat("QUIZ_PASS_SCORE", "70")
    if not 0 <= quiz_pass_score <= 100:
        raise ValueError(f"QUIZ_PASS_SCORE must be within 0..100 (got {quiz_pass_score})")

    retention_days = _getint("EVENT_ID_RETENTION_DAYS", "30")
    if retention_days < 1:
        raise ValueError(f"EVENT_ID_RETENTION_DAYS must be >= 1 (got {retention_days})")

    return Settings(  # type: ignore[arg-type]
        app_env=_getchoice("APP_ENV", "dev", get_args(AppEnv)),
        log_level=_getchoice("LOG_LEVEL", "info", get_args(LogLevel)),
        log_json=_getbool("LOG_JSON", "false"),
        port=_getint("PORT", "8000"),
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        default_timezone=_getzone("DEFAULT_TIMEZONE", "UTC"),
        max_apply_retries=max_apply_retries,
        structure_lookup_timeout_seconds=lookup_timeout,
        progress_cache_ttl=_getint("PROGRESS_CACHE_TTL", "300"),
        quiz_pass_score=quiz_pass_score,
        event_id_retention_days=retention_days,
    )


SETTINGS = load_settings()
