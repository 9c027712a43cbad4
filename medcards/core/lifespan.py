import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from medcards.ai.providers.gemini import GeminiProvider
from medcards.core.logging import initialize_logging
from medcards.jobs.scheduler import BatchScheduler, SchedulerConfig
from medcards.services.batches import BatchService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the per-process scheduler, then tear the scheduler down on exit."""
  from medcards.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("medcards.core.lifespan")

  initialize_logging(settings)
  logger.info("Startup complete - logging verified.")

  if not settings.gemini_api_key:
    logger.warning("No Gemini API key configured; model calls will fail until GEMINI_API_KEY is set.")

  # Tests may install their own provider and scheduler before startup.
  if getattr(app.state, "provider", None) is None:
    app.state.provider = GeminiProvider(settings.gemini_api_key)
  if getattr(app.state, "scheduler", None) is None:
    app.state.scheduler = BatchScheduler(SchedulerConfig.from_settings(settings))
  app.state.batches = BatchService(app.state.scheduler, app.state.provider)
  logger.info("Scheduler ready lanes=%d cooldown=%.1fs retry_base=%.1fs max_retries=%d", settings.max_lanes, settings.lane_cooldown_seconds, settings.retry_base_seconds, settings.max_job_retries)

  try:
    yield
  finally:
    await app.state.batches.shutdown()
    logger.info("Shutdown complete.")
