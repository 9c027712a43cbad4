"""Shared FastAPI dependencies for the scheduler and the model provider."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from medcards.ai.providers.base import Provider
from medcards.jobs.scheduler import BatchScheduler
from medcards.services.batches import BatchService


def _state(request: Request, name: str) -> object:
  value = getattr(request.app.state, name, None)
  if value is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Service not ready: {name} is not initialized.")
  return value


async def get_provider(request: Request) -> Provider:
  """Return the process-wide model provider created at startup."""
  return _state(request, "provider")  # type: ignore[return-value]


async def get_scheduler(request: Request) -> BatchScheduler:
  return _state(request, "scheduler")  # type: ignore[return-value]


async def get_batch_service(request: Request) -> BatchService:
  return _state(request, "batches")  # type: ignore[return-value]
