"""Wire the MCQ generator into the scheduler and drive batches in the background."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from medcards.ai.mcq import generate_mcq_batch
from medcards.ai.providers.base import AIModel, Provider
from medcards.jobs.models import Job, JobSection
from medcards.jobs.scheduler import BatchOutcome, BatchScheduler, JobRunner
from medcards.schema.mcq import GenerationParams, MCQItem

logger = logging.getLogger(__name__)


def build_job_runner(model: AIModel, params: GenerationParams) -> JobRunner:
  """Return a runner that generates the items of one job's section with fixed params.

  The model's coverage report and the salvage count are kept on the job so the
  batch audit can surface them.
  """

  async def _run(job: Job) -> list[MCQItem]:
    result = await generate_mcq_batch(model, section_title=job.section_title, section_content=job.section_content, params=params)
    job.report = result.report
    job.salvaged = result.salvaged
    return result.items

  return _run


class BatchService:
  """Own the background task that drives the scheduler of the running app."""

  def __init__(self, scheduler: BatchScheduler, provider: Provider) -> None:
    self.scheduler = scheduler
    self.provider = provider
    self._driver: asyncio.Task[BatchOutcome | None] | None = None

  def start(self, sections: Sequence[JobSection], params: GenerationParams) -> str:
    """Submit ``sections`` as a new batch and start driving it; returns the batch id."""
    model = self.provider.get_model(params.model, think_more=bool(params.think_more))
    batch_id = self.scheduler.submit_batch(sections, runner=build_job_runner(model, params))
    self._driver = asyncio.get_running_loop().create_task(self._drive(batch_id))
    return batch_id

  def reset(self) -> None:
    self.scheduler.reset()

  async def wait(self) -> BatchOutcome | None:
    """Wait for the current driver; None when no batch was started or it was reset."""
    if self._driver is None:
      return None
    return await asyncio.shield(self._driver)

  async def shutdown(self) -> None:
    """Reset the scheduler and wait for the driver and every dispatched call to settle."""
    self.scheduler.reset()
    if self._driver is not None:
      await asyncio.gather(self._driver, return_exceptions=True)
    await self.scheduler.drain()

  async def _drive(self, batch_id: str) -> BatchOutcome | None:
    try:
      outcome = await self.scheduler.run_until_complete()
    except Exception:
      logger.exception("Batch %s driver crashed", batch_id)
      raise
    if outcome is None:
      logger.info("Batch %s stopped before completion", batch_id)
    else:
      logger.info("Batch %s finished items=%d failed_sections=%d", batch_id, outcome.audit.total, len(outcome.audit.failed_jobs))
    return outcome
