"""Backoff arithmetic shared by job retries and lane cooldowns."""

from __future__ import annotations


def job_backoff_seconds(retry_count: int, base_seconds: float = 2.0) -> float:
  """
  Return the delay before a failed job may run again.

  The delay doubles per failure: with a 2s base, retries wait 4s, 8s and 16s.
  """
  if retry_count < 0:
    raise ValueError("retry_count must be >= 0")
  return base_seconds * (2**retry_count)


def retry_reason(retry_count: int, *, rate_limited: bool, error: BaseException) -> str:
  """Build the human-readable reason stored on a retrying job."""
  if rate_limited:
    return f"Rate limit. Retry #{retry_count}"
  return str(error) or type(error).__name__
