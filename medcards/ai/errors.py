"""Error types and classification helpers for LLM gateway calls."""

from __future__ import annotations

from collections.abc import Iterable

_RATE_LIMIT_HINTS: tuple[str, ...] = ("429", "resource_exhausted", "resource exhausted", "quota exceeded", "too many requests", "rate limit")


class GatewayError(RuntimeError):
  """Raised when a model call fails or returns unusable output."""


class RateLimitError(GatewayError):
  """Raised when the model provider signals a rate limit or exhausted quota."""


class ComparatorIntegrityError(RuntimeError):
  """Raised when a model response drops, invents or corrupts comparator tokens."""

  def __init__(self, message: str, *, missing: Iterable[str] = (), unknown: Iterable[str] = (), suspicious: Iterable[str] = ()) -> None:
    super().__init__(message)
    self.missing = list(missing)
    self.unknown = list(unknown)
    self.suspicious = list(suspicious)


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def is_rate_limit_error(exc: BaseException) -> bool:
  """Return True when an exception indicates a rate limit or quota signal."""
  if isinstance(exc, RateLimitError):
    return True

  # Provider SDK errors expose the HTTP status directly.
  if getattr(exc, "code", None) == 429 or getattr(exc, "status_code", None) == 429:
    return True

  return _match_hint(str(exc).lower(), _RATE_LIMIT_HINTS)
