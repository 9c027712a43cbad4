"""Provider implementations."""

from medcards.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse
from medcards.ai.providers.gemini import GeminiModel, GeminiProvider

__all__ = ["AIModel", "ModelResponse", "SimpleModelResponse", "Provider", "GeminiModel", "GeminiProvider"]
