from __future__ import annotations

import pytest

from medcards.config import _parse_bool, get_settings


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch, fresh_settings):
  monkeypatch.setenv("MEDCARDS_ALLOWED_ORIGINS", "http://localhost:3000, https://cards.example.org")
  for name in ("MEDCARDS_GEMINI_API_KEY", "GEMINI_API_KEY", "MEDCARDS_MAX_LANES", "MEDCARDS_LANE_COOLDOWN_SECONDS", "MEDCARDS_GENERATION_THINK_MORE"):
    monkeypatch.delenv(name, raising=False)
  return monkeypatch


def test_defaults(env) -> None:
  settings = get_settings()

  assert settings.allowed_origins == ("http://localhost:3000", "https://cards.example.org")
  assert settings.max_lanes == 5
  assert settings.lane_cooldown_seconds == 5.0
  assert settings.retry_base_seconds == 2.0
  assert settings.max_job_retries == 3
  assert settings.integrity_max_attempts == 2
  assert settings.generation_think_more is True
  assert settings.gemini_api_key is None


def test_numeric_overrides(env) -> None:
  env.setenv("MEDCARDS_MAX_LANES", "2")
  env.setenv("MEDCARDS_LANE_COOLDOWN_SECONDS", "0.5")

  settings = get_settings()

  assert settings.max_lanes == 2
  assert settings.lane_cooldown_seconds == 0.5


def test_zero_lanes_is_rejected(env) -> None:
  env.setenv("MEDCARDS_MAX_LANES", "0")
  with pytest.raises(ValueError, match="MEDCARDS_MAX_LANES"):
    get_settings()


@pytest.mark.parametrize("origins", ["", " , ", "http://localhost:3000,*"])
def test_invalid_origins_are_rejected(env, origins: str) -> None:
  env.setenv("MEDCARDS_ALLOWED_ORIGINS", origins)
  with pytest.raises(ValueError, match="MEDCARDS_ALLOWED_ORIGINS"):
    get_settings()


def test_api_key_falls_back_to_sdk_variable(env) -> None:
  env.setenv("GEMINI_API_KEY", "sdk-key")
  assert get_settings().gemini_api_key == "sdk-key"


def test_namespaced_api_key_wins(env) -> None:
  env.setenv("GEMINI_API_KEY", "sdk-key")
  env.setenv("MEDCARDS_GEMINI_API_KEY", "  own-key ")
  assert get_settings().gemini_api_key == "own-key"


@pytest.mark.parametrize(("raw", "expected"), [("1", True), ("Yes", True), (" on ", True), ("false", False), ("nope", False), (None, False), ("  ", False)])
def test_parse_bool(raw: str | None, expected: bool) -> None:
  assert _parse_bool(raw) is expected


def test_parse_bool_default_applies_to_blank_values() -> None:
  assert _parse_bool(None, default=True) is True
  assert _parse_bool("", default=True) is True
  assert _parse_bool("0", default=True) is False
