"""Shared fixtures: scripted model fakes and a controllable scheduler clock."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator, Sequence
from typing import Any

# Ensure required settings are available before importing the app.
os.environ.setdefault("MEDCARDS_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("MEDCARDS_LOG_DIR", os.path.join(tempfile.gettempdir(), "medcards-tests"))

import pytest  # noqa: E402

from medcards.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse  # noqa: E402
from medcards.config import get_settings  # noqa: E402


class FakeModel(AIModel):
  """Model double that replays scripted responses and records every call."""

  def __init__(self, responses: Sequence[str | BaseException] = (), *, name: str = "fake-model") -> None:
    self.name = name
    self.responses: list[str | BaseException] = list(responses)
    self.calls: list[dict[str, Any]] = []

  async def generate(self, prompt: str, *, response_schema: dict[str, Any] | None = None, temperature: float | None = None) -> ModelResponse:
    self.calls.append({"prompt": prompt, "response_schema": response_schema, "temperature": temperature})
    if not self.responses:
      raise AssertionError("Unexpected model call: no scripted response left.")
    outcome = self.responses.pop(0)
    if isinstance(outcome, BaseException):
      raise outcome
    return SimpleModelResponse(content=outcome)


class FakeProvider(Provider):
  """Provider double handing out one shared FakeModel."""

  def __init__(self, model: FakeModel | None = None) -> None:
    self.name = "fake"
    self.model = model or FakeModel()
    self.requested: list[tuple[str | None, bool]] = []

  def get_model(self, model: str | None = None, *, think_more: bool = False) -> AIModel:
    if model == "unsupported-model":
      raise ValueError(f"Unsupported model '{model}'.")
    self.requested.append((model, think_more))
    return self.model


class FakeClock:
  """Monotonic clock stand-in advanced explicitly by tests."""

  def __init__(self, start: float = 1000.0) -> None:
    self.now = start

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def fake_model_factory() -> type[FakeModel]:
  return FakeModel


@pytest.fixture
def fake_provider_factory() -> type[FakeProvider]:
  return FakeProvider


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def fresh_settings() -> Iterator[None]:
  """Drop cached settings before and after a test that changes the environment."""
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()
