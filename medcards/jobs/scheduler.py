"""Lane-based batch scheduler.

The scheduler owns the job list and the lane pool of the current batch. It is
level-triggered: every state change (a job finishing, a lane cooldown
elapsing, a retry becoming due) re-runs the whole matching pass in
``evaluate``. ``run_until_complete`` drives those passes on the event loop,
sleeping until either a dispatched call finishes or the nearest timer is due.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from medcards.ai.backoff import job_backoff_seconds, retry_reason
from medcards.ai.errors import is_rate_limit_error
from medcards.jobs.audit import DEFAULT_MIN_QUOTE_CHARS, AuditResult, audit_batch
from medcards.jobs.lanes import LanePool, LaneStateError
from medcards.jobs.models import BatchStage, Job, JobSection, Lane
from medcards.jobs.progress import ProgressBroadcaster, ProgressEvent
from medcards.utils.ids import generate_batch_id, generate_job_id

if TYPE_CHECKING:
  from medcards.config import Settings

logger = logging.getLogger(__name__)

JobRunner = Callable[[Job], Awaitable[list[Any]]]
Clock = Callable[[], float]


@dataclass(frozen=True)
class SchedulerConfig:
  """Tunables of the scheduler; times are in seconds of the scheduler clock."""

  max_lanes: int = 5
  lane_cooldown_seconds: float = 5.0
  retry_base_seconds: float = 2.0
  max_retries: int = 3
  min_quote_chars: int = DEFAULT_MIN_QUOTE_CHARS

  @classmethod
  def from_settings(cls, settings: Settings) -> SchedulerConfig:
    return cls(
      max_lanes=settings.max_lanes,
      lane_cooldown_seconds=settings.lane_cooldown_seconds,
      retry_base_seconds=settings.retry_base_seconds,
      max_retries=settings.max_job_retries,
      min_quote_chars=settings.min_quote_chars,
    )


@dataclass(frozen=True)
class BatchOutcome:
  """Final, audited result of one batch."""

  batch_id: str
  generation: int
  audit: AuditResult


class BatchScheduler:
  """Assign jobs to lanes, apply retry and cooldown policy, and finalize each batch once."""

  def __init__(self, config: SchedulerConfig | None = None, *, runner: JobRunner | None = None, clock: Clock = time.monotonic, broadcaster: ProgressBroadcaster | None = None) -> None:
    self.config = config or SchedulerConfig()
    self.lanes = LanePool(self.config.max_lanes)
    self.jobs: list[Job] = []
    self.stage: BatchStage = "setup"
    self.broadcaster = broadcaster or ProgressBroadcaster()
    self._default_runner = runner
    self._runner: JobRunner | None = runner
    self._clock = clock
    self._generation = 0
    self._batch_id: str | None = None
    self._outcome: BatchOutcome | None = None
    self._finalized_generation: int | None = None
    self._tasks: set[asyncio.Task[None]] = set()
    self._wake = asyncio.Event()

  @property
  def batch_id(self) -> str | None:
    return self._batch_id

  @property
  def generation(self) -> int:
    return self._generation

  @property
  def outcome(self) -> BatchOutcome | None:
    return self._outcome

  @property
  def in_flight(self) -> int:
    return len(self._tasks)

  def submit_batch(self, sections: Sequence[JobSection], *, runner: JobRunner | None = None) -> str:
    """Create one queued job per section and start a new batch generation.

    An active batch is reset first; results of its in-flight calls are discarded when they arrive.
    """
    if not sections:
      raise ValueError("A batch needs at least one section.")
    batch_runner = runner or self._default_runner
    if batch_runner is None:
      raise ValueError("No job runner configured for this batch.")

    if self.stage in ("generation", "audit"):
      logger.info("Batch %s replaced by a new submission", self._batch_id)

    self._generation += 1
    self._batch_id = generate_batch_id()
    self._runner = batch_runner
    self._outcome = None
    now_ms = int(time.time() * 1000)
    self.jobs = [Job(id=generate_job_id(index, now_ms=now_ms), section_title=section.title, section_content=section.content) for index, section in enumerate(sections)]
    self.lanes.reset()
    logger.info("Batch %s submitted generation=%d jobs=%d lanes=%d", self._batch_id, self._generation, len(self.jobs), self.lanes.size)
    self._set_stage("generation")
    self._wake.set()
    return self._batch_id

  def reset(self) -> None:
    """Discard every job and return all lanes to idle."""
    self._generation += 1
    logger.info("Batch %s reset generation=%d in_flight=%d", self._batch_id, self._generation, len(self._tasks))
    self.jobs = []
    self.lanes.reset()
    self._batch_id = None
    self._outcome = None
    self._runner = self._default_runner
    self._set_stage("setup")
    self._wake.set()

  def evaluate(self) -> bool:
    """Run one matching pass; return True when state changed and another pass is due."""
    if self.stage != "generation":
      return False
    now = self._clock()

    # Let cooldown expiry trigger a fresh pass instead of acting on it here.
    expired = self.lanes.expire_cooldowns(now)
    if expired:
      for lane in expired:
        self._emit_lane(lane)
      return True

    idle = self.lanes.idle_lanes()
    if not idle:
      return False

    job = self._next_pending(now)
    if job is None:
      if self.jobs and all(job.is_terminal for job in self.jobs):
        self._finalize()
      return False

    self._assign(idle[0], job)
    return True

  async def run_until_complete(self) -> BatchOutcome | None:
    """Drive the current batch to its audited outcome; return None if it is reset or replaced first."""
    generation = self._generation
    while True:
      if generation != self._generation:
        return None
      self._wake.clear()
      while self.evaluate():
        pass
      if self._outcome is not None and self._outcome.generation == generation:
        return self._outcome
      if self.stage != "generation":
        return None

      timeout = self._seconds_until_next_deadline()
      try:
        await asyncio.wait_for(self._wake.wait(), timeout)
      except TimeoutError:
        pass

  async def drain(self) -> None:
    """Wait for every dispatched call, including stale ones, to settle."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)

  def check_invariants(self) -> None:
    """Raise LaneStateError when the lane/job pairing is inconsistent."""
    busy = [lane for lane in self.lanes.lanes if lane.status == "busy"]
    if len(busy) > self.lanes.size:
      raise LaneStateError("More busy lanes than the concurrency limit.")
    job_ids = [lane.current_job_id for lane in busy]
    if len(set(job_ids)) != len(job_ids):
      raise LaneStateError("Two busy lanes share a job.")
    jobs_by_id = {job.id: job for job in self.jobs}
    for lane in busy:
      job = jobs_by_id.get(lane.current_job_id or "")
      if job is None or job.status != "running" or job.lane_id != lane.id:
        raise LaneStateError(f"Busy lane {lane.id} does not hold a matching running job.")
    for lane in self.lanes.lanes:
      if lane.status != "busy" and lane.current_job_id is not None:
        raise LaneStateError(f"Lane {lane.id} is {lane.status} but still references a job.")

  def snapshot(self) -> dict[str, Any]:
    """Return the observable batch state as JSON-ready builtins."""
    outcome = None
    if self._outcome is not None:
      audit = self._outcome.audit
      outcome = {
        "items": [item.model_dump(by_alias=True) for item in audit.items],
        "total": audit.total,
        "passed": audit.passed,
        "failed": audit.failed,
        "warnings": audit.warnings,
        "failedJobs": [job.id for job in audit.failed_jobs],
        "salvagedJobs": [job.id for job in audit.salvaged_jobs],
        "report": audit.report,
      }
    return {
      "batchId": self._batch_id,
      "generation": self._generation,
      "stage": self.stage,
      "now": self._clock(),
      "jobs": [job.as_dict() for job in self.jobs],
      "lanes": [lane.as_dict() for lane in self.lanes.lanes],
      "outcome": outcome,
    }

  def _next_pending(self, now: float) -> Job | None:
    # Queued jobs are serviced before elapsed retries.
    for job in self.jobs:
      if job.status == "queued":
        return job
    for job in self.jobs:
      if job.status == "retrying" and job.is_eligible(now):
        return job
    return None

  def _assign(self, lane: Lane, job: Job) -> None:
    runner = self._runner
    if runner is None:
      raise ValueError("No job runner configured for this batch.")
    self.lanes.occupy(lane.id, job.id)
    job.start(lane.id)
    job.step = "decompose"
    logger.info("Job %s assigned to lane %s attempt=%d", job.id, lane.id, job.retry_count + 1)
    self._emit_lane(lane)
    self._emit_job(job)

    task = asyncio.get_running_loop().create_task(self._run_job(job, lane.id, self._generation, runner))
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)

  async def _run_job(self, job: Job, lane_id: int, generation: int, runner: JobRunner) -> None:
    try:
      if generation == self._generation:
        job.step = "generate"
        self._emit_job(job)
      result = await runner(job)
    except Exception as exc:  # noqa: BLE001
      if generation != self._generation:
        logger.info("Discarding stale failure of job %s from generation %d: %s", job.id, generation, exc)
        return
      self._handle_failure(job, lane_id, exc)
    else:
      if generation != self._generation:
        logger.info("Discarding stale result of job %s from generation %d", job.id, generation)
        return
      self._handle_success(job, lane_id, result)
    finally:
      self._wake.set()

  def _handle_success(self, job: Job, lane_id: int, result: list[Any]) -> None:
    job.step = "evaluate"
    self._emit_job(job)
    job.step = "decide"
    self._emit_job(job)
    job.complete(result)
    lane = self.lanes.release(lane_id, success=True)
    logger.info("Job %s completed on lane %s items=%d", job.id, lane_id, len(job.result))
    self._emit_job(job)
    self._emit_lane(lane)

  def _handle_failure(self, job: Job, lane_id: int, exc: Exception) -> None:
    now = self._clock()
    rate_limited = is_rate_limit_error(exc)
    job.retry_count += 1

    if job.retry_count <= self.config.max_retries:
      delay = job_backoff_seconds(job.retry_count, self.config.retry_base_seconds)
      job.schedule_retry(now + delay, retry_reason(job.retry_count, rate_limited=rate_limited, error=exc))
      logger.warning("Job %s retry #%d scheduled in %.1fs rate_limited=%s: %s", job.id, job.retry_count, delay, rate_limited, exc)
    else:
      job.fail(str(exc) or type(exc).__name__)
      logger.error("Job %s failed after %d attempts: %s", job.id, job.retry_count, exc)

    # Rate limits punish the lane; other errors leave it blameless.
    if rate_limited:
      lane = self.lanes.quarantine(lane_id, now + self.config.lane_cooldown_seconds)
    else:
      lane = self.lanes.release(lane_id, success=False)
    self._emit_job(job)
    self._emit_lane(lane)

  def _finalize(self) -> None:
    if self._finalized_generation == self._generation:
      return
    self._finalized_generation = self._generation
    self._set_stage("audit")
    audit = audit_batch(self.jobs, min_quote_chars=self.config.min_quote_chars)
    self._outcome = BatchOutcome(batch_id=self._batch_id or "", generation=self._generation, audit=audit)
    completed = sum(1 for job in self.jobs if job.status == "completed")
    logger.info("Batch %s finalized completed=%d failed=%d items=%d", self._batch_id, completed, len(audit.failed_jobs), audit.total)
    self._set_stage("finished", detail=audit.report)

  def _seconds_until_next_deadline(self) -> float | None:
    now = self._clock()
    deadlines = [job.next_retry_at for job in self.jobs if job.status == "retrying" and job.next_retry_at is not None]
    cooldown = self.lanes.next_cooldown_deadline()
    if cooldown is not None:
      deadlines.append(cooldown)
    # Elapsed deadlines are waiting for a lane; the next completion wakes the loop.
    upcoming = [deadline for deadline in deadlines if deadline > now]
    if not upcoming:
      return None
    return min(upcoming) - now

  def _set_stage(self, stage: BatchStage, *, detail: str | None = None) -> None:
    self.stage = stage
    self.broadcaster.publish(ProgressEvent(kind="batch", batch_id=self._batch_id, generation=self._generation, entity_id=self._batch_id or "", status=stage, detail=detail))

  def _emit_job(self, job: Job) -> None:
    self.broadcaster.publish(ProgressEvent(kind="job", batch_id=self._batch_id, generation=self._generation, entity_id=job.id, status=job.status, step=job.step, detail=job.error))

  def _emit_lane(self, lane: Lane) -> None:
    self.broadcaster.publish(ProgressEvent(kind="lane", batch_id=self._batch_id, generation=self._generation, entity_id=str(lane.id), status=lane.status, detail=lane.current_job_id))
