"""Identifier utilities."""

from __future__ import annotations

import time
import uuid


def generate_batch_id() -> str:
  """Return a new batch identifier."""
  return str(uuid.uuid4())


def generate_job_id(index: int, *, now_ms: int | None = None) -> str:
  """Return a job identifier unique within a batch submitted at ``now_ms``."""
  stamp = now_ms if now_ms is not None else int(time.time() * 1000)
  return f"job-{stamp}-{index}"
