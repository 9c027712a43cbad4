"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from medcards.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the medcards service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  gemini_api_key: str | None
  cleaning_model: str
  cleaning_think_more: bool
  generation_model: str
  generation_think_more: bool
  grader_model: str
  grader_think_more: bool
  max_lanes: int
  lane_cooldown_seconds: float
  retry_base_seconds: float
  max_job_retries: int
  integrity_max_attempts: int
  min_quote_chars: int
  cross_section_max_chars: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("MEDCARDS_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("MEDCARDS_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("MEDCARDS_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or not raw.strip():
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _int_env(name: str, default: int, *, minimum: int) -> int:
  """Read an integer variable and enforce a lower bound."""
  value = int(os.getenv(name, str(default)))
  if value < minimum:
    raise ValueError(f"{name} must be >= {minimum}.")
  return value


def _float_env(name: str, default: float) -> float:
  value = float(os.getenv(name, str(default)))
  if value < 0:
    raise ValueError(f"{name} must not be negative.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("MEDCARDS_ENV", "development").lower()
  debug = _parse_bool(os.getenv("MEDCARDS_DEBUG"))
  allowed_origins = _parse_origins(os.getenv("MEDCARDS_ALLOWED_ORIGINS"))

  log_dir = os.getenv("MEDCARDS_LOG_DIR") or str(Path(__file__).resolve().parents[1] / "logs")
  log_max_bytes = _int_env("MEDCARDS_LOG_MAX_BYTES", 5 * 1024 * 1024, minimum=1)
  log_backup_count = _int_env("MEDCARDS_LOG_BACKUP_COUNT", 10, minimum=0)

  # Prefer the namespaced key but accept the SDK's conventional variable.
  gemini_api_key = _optional_str(os.getenv("MEDCARDS_GEMINI_API_KEY")) or _optional_str(os.getenv("GEMINI_API_KEY"))

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=allowed_origins,
    log_dir=log_dir,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    gemini_api_key=gemini_api_key,
    cleaning_model=os.getenv("MEDCARDS_CLEANING_MODEL", "gemini-3-flash-preview"),
    cleaning_think_more=_parse_bool(os.getenv("MEDCARDS_CLEANING_THINK_MORE")),
    generation_model=os.getenv("MEDCARDS_GENERATION_MODEL", "gemini-3-pro-preview"),
    generation_think_more=_parse_bool(os.getenv("MEDCARDS_GENERATION_THINK_MORE"), default=True),
    grader_model=os.getenv("MEDCARDS_GRADER_MODEL", "gemini-3-flash-preview"),
    grader_think_more=_parse_bool(os.getenv("MEDCARDS_GRADER_THINK_MORE")),
    max_lanes=_int_env("MEDCARDS_MAX_LANES", 5, minimum=1),
    lane_cooldown_seconds=_float_env("MEDCARDS_LANE_COOLDOWN_SECONDS", 5.0),
    retry_base_seconds=_float_env("MEDCARDS_RETRY_BASE_SECONDS", 2.0),
    max_job_retries=_int_env("MEDCARDS_MAX_JOB_RETRIES", 3, minimum=0),
    integrity_max_attempts=_int_env("MEDCARDS_INTEGRITY_MAX_ATTEMPTS", 2, minimum=1),
    min_quote_chars=_int_env("MEDCARDS_MIN_QUOTE_CHARS", 10, minimum=0),
    cross_section_max_chars=_int_env("MEDCARDS_CROSS_SECTION_MAX_CHARS", 35000, minimum=0),
  )
