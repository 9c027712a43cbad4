"""Base interfaces for AI providers and models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol


class ModelResponse(Protocol):
  """Response contract for model outputs."""

  content: str
  usage: dict[str, int] | None


@dataclass
class SimpleModelResponse:
  """Raw text returned by a model call plus token usage."""

  content: str
  usage: dict[str, int] | None = None


class AIModel(ABC):
  """Abstract base class for AI models."""

  name: str
  think_more: bool = False

  @abstractmethod
  async def generate(self, prompt: str, *, response_schema: dict[str, Any] | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate a response; JSON mode is requested when a response schema is given."""


class Provider(ABC):
  """Abstract base class for AI providers."""

  name: str

  @abstractmethod
  def get_model(self, model: str | None = None, *, think_more: bool = False) -> AIModel:
    """Return the model client for the provider."""
