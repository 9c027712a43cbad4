"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Final

from google import genai
from google.genai import errors as genai_errors

from medcards.ai.errors import GatewayError, RateLimitError, is_rate_limit_error
from medcards.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse

logger = logging.getLogger(__name__)

THINKING_BUDGET: Final[int] = 32768
_THINKING_MODELS: Final[frozenset[str]] = frozenset({"gemini-3-pro-preview", "gemini-2.5-pro"})
# Medical source text trips the default filters on anatomy and dosing content.
_SAFETY_SETTINGS: Final[list[dict[str, str]]] = [
  {"category": category, "threshold": "BLOCK_NONE"}
  for category in ("HARM_CATEGORY_HARASSMENT", "HARM_CATEGORY_HATE_SPEECH", "HARM_CATEGORY_SEXUALLY_EXPLICIT", "HARM_CATEGORY_DANGEROUS_CONTENT")
]


class GeminiModel(AIModel):
  """Gemini model client with JSON mode and optional extended thinking."""

  def __init__(self, name: str, api_key: str | None = None, *, think_more: bool = False) -> None:
    self.name: str = name
    self.think_more = think_more

    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
      raise ValueError("GEMINI_API_KEY environment variable is required")

    self._client = genai.Client(api_key=api_key)

  def _build_config(self, response_schema: dict[str, Any] | None, temperature: float | None) -> dict[str, Any]:
    """Assemble the request config as a plain dict to avoid SDK validation of the JSON schema."""
    config: dict[str, Any] = {"safety_settings": _SAFETY_SETTINGS}
    if temperature is not None:
      config["temperature"] = temperature
    if response_schema is not None:
      config["response_mime_type"] = "application/json"
      config["response_schema"] = response_schema
    if self.think_more and self.name in _THINKING_MODELS:
      config["thinking_config"] = {"thinking_budget": THINKING_BUDGET}
    return config

  async def generate(self, prompt: str, *, response_schema: dict[str, Any] | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate a response from Gemini, translating SDK failures into gateway errors."""
    config = self._build_config(response_schema, temperature)
    started = time.monotonic()
    logger.info("Gemini call started model=%s json=%s think_more=%s prompt_chars=%d", self.name, response_schema is not None, self.think_more, len(prompt))

    try:
      # Use the async client to avoid blocking the asyncio event loop.
      response = await self._client.aio.models.generate_content(model=self.name, contents=prompt, config=config)
    except genai_errors.APIError as e:
      logger.warning("Gemini call failed model=%s code=%s: %s", self.name, e.code, e)
      if is_rate_limit_error(e):
        raise RateLimitError(f"Gemini rate limit (RESOURCE_EXHAUSTED): {e}") from e
      raise GatewayError(f"Gemini request failed: {e}") from e
    except Exception as e:
      logger.warning("Gemini call failed model=%s: %s", self.name, e)
      if is_rate_limit_error(e):
        raise RateLimitError(f"Gemini rate limit: {e}") from e
      raise GatewayError(f"Gemini request failed: {e}") from e

    text = response.text
    if not text:
      raise GatewayError("Gemini returned an empty response (possibly blocked by safety filters).")

    usage = None
    if response.usage_metadata:
      usage = {"prompt_tokens": response.usage_metadata.prompt_token_count, "completion_tokens": response.usage_metadata.candidates_token_count, "total_tokens": response.usage_metadata.total_token_count}
    logger.info("Gemini call finished model=%s elapsed=%.2fs usage=%s", self.name, time.monotonic() - started, usage)
    return SimpleModelResponse(content=text, usage=usage)


class GeminiProvider(Provider):
  """Gemini provider."""

  _DEFAULT_MODEL: Final[str] = "gemini-3-flash-preview"
  _AVAILABLE_MODELS: Final[set[str]] = {"gemini-3-pro-preview", "gemini-3-flash-preview", "gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.0-flash"}

  def __init__(self, api_key: str | None = None) -> None:
    self.name: str = "gemini"
    self._api_key = api_key

  def get_model(self, model: str | None = None, *, think_more: bool = False) -> AIModel:
    """Return a Gemini model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported Gemini model '{model_name}'.")
    return GeminiModel(model_name, api_key=self._api_key, think_more=think_more)
