"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from studio_push.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the notification dispatcher."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  pg_connect_timeout: int
  firebase_service_account_json: str | None
  firebase_service_account_json_path: str | None
  push_vapid_public_key: str | None
  batch_limit: int
  push_http_timeout_seconds: float
  token_cache_enabled: bool
  task_secret: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  # The endpoint is invoked by schedulers rather than browsers; allow any origin unless narrowed.
  if not raw:
    return ("*",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
  if not origins:
    raise ValueError("STUDIO_PUSH_ALLOWED_ORIGINS must include at least one origin.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  stripped = raw.strip()
  return stripped or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _pg_dsn() -> str | None:
  # Fall back to DATABASE_URL, which is what the hosted platform injects.
  return _optional_str(os.getenv("STUDIO_PUSH_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("STUDIO_PUSH_ENV", "development").lower()
  debug = _parse_bool(os.getenv("STUDIO_PUSH_DEBUG"))

  log_max_bytes = _positive_int("STUDIO_PUSH_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("STUDIO_PUSH_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("STUDIO_PUSH_LOG_BACKUP_COUNT must be zero or a positive integer.")

  batch_limit = _positive_int("STUDIO_PUSH_BATCH_LIMIT", "50")

  push_http_timeout_seconds = float(os.getenv("PUSH_HTTP_TIMEOUT_SECONDS", "10"))
  if push_http_timeout_seconds <= 0:
    raise ValueError("PUSH_HTTP_TIMEOUT_SECONDS must be positive.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("STUDIO_PUSH_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=_pg_dsn(),
    pg_connect_timeout=_positive_int("STUDIO_PUSH_PG_CONNECT_TIMEOUT", "5"),
    firebase_service_account_json=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    push_vapid_public_key=_optional_str(os.getenv("PUSH_VAPID_PUBLIC_KEY")),
    batch_limit=batch_limit,
    push_http_timeout_seconds=push_http_timeout_seconds,
    token_cache_enabled=_parse_bool(os.getenv("STUDIO_PUSH_TOKEN_CACHE_ENABLED"), default=True),
    task_secret=_optional_str(os.getenv("STUDIO_PUSH_TASK_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the full runtime configuration."""
  return DatabaseSettings(debug=_parse_bool(os.getenv("STUDIO_PUSH_DEBUG")), pg_dsn=_pg_dsn(), pg_connect_timeout=_positive_int("STUDIO_PUSH_PG_CONNECT_TIMEOUT", "5"))
