from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from medcards.ai.errors import GatewayError, RateLimitError
from medcards.jobs.lanes import LaneStateError
from medcards.jobs.models import Job, JobSection
from medcards.jobs.progress import ProgressEvent
from medcards.jobs.scheduler import BatchScheduler, SchedulerConfig
from medcards.schema.mcq import MCQItem


def _sections(count: int) -> list[JobSection]:
  return [JobSection(title=f"Section {index}", content=f"Section {index} states that marker number {index} is documented here.") for index in range(count)]


def _item_for(job: Job) -> MCQItem:
  return MCQItem(front=f"Question on {job.section_title}? A. a B. b C. c D. d", correct_option="A", explanation="From the notes.", original_quote=job.section_content[:30], source_heading=job.section_title)


async def _succeed(job: Job) -> list[MCQItem]:
  return [_item_for(job)]


def _scripted(*outcomes: Any) -> Callable[[Job], Any]:
  """Runner that replays outcomes in call order; exceptions are raised."""
  remaining = list(outcomes)

  async def _run(job: Job) -> list[MCQItem]:
    outcome = remaining.pop(0)
    if isinstance(outcome, BaseException):
      raise outcome
    return [_item_for(job)]

  return _run


def _pump(scheduler: BatchScheduler) -> None:
  while scheduler.evaluate():
    scheduler.check_invariants()
  scheduler.check_invariants()


def _dedupe(values: list[str]) -> list[str]:
  collapsed: list[str] = []
  for value in values:
    if not collapsed or collapsed[-1] != value:
      collapsed.append(value)
  return collapsed


def _record(scheduler: BatchScheduler, kind: str) -> list[str]:
  seen: list[str] = []

  def _listener(event: ProgressEvent) -> None:
    if event.kind == kind:
      seen.append(event.status)

  scheduler.broadcaster.add_listener(_listener)
  return seen


@pytest.mark.anyio
async def test_five_jobs_on_five_lanes_complete_in_one_wave(clock) -> None:
  scheduler = BatchScheduler(SchedulerConfig(max_lanes=5), runner=_succeed, clock=clock)
  scheduler.submit_batch(_sections(5))

  _pump(scheduler)
  assert scheduler.lanes.busy_count() == 5
  assert scheduler.in_flight == 5
  assert all(job.status == "running" for job in scheduler.jobs)

  await scheduler.drain()
  _pump(scheduler)

  assert all(job.status == "completed" for job in scheduler.jobs)
  assert scheduler.stage == "finished"
  outcome = scheduler.outcome
  assert outcome is not None
  assert {item.source_heading for item in outcome.audit.items} == {f"Section {index}" for index in range(5)}
  assert outcome.audit.total == 5
  assert outcome.audit.passed == 5


@pytest.mark.anyio
async def test_busy_lanes_never_exceed_limit_or_share_a_job(clock) -> None:
  gate = asyncio.Event()

  async def _gated(job: Job) -> list[MCQItem]:
    await gate.wait()
    return [_item_for(job)]

  scheduler = BatchScheduler(SchedulerConfig(max_lanes=5), runner=_gated, clock=clock)
  violations: list[str] = []

  def _observe(_event: ProgressEvent) -> None:
    try:
      scheduler.check_invariants()
    except LaneStateError as exc:
      violations.append(str(exc))

  scheduler.broadcaster.add_listener(_observe)
  scheduler.submit_batch(_sections(7))

  _pump(scheduler)
  assert scheduler.lanes.busy_count() == 5
  assert [job.status for job in scheduler.jobs].count("queued") == 2

  gate.set()
  await scheduler.drain()
  _pump(scheduler)
  assert scheduler.lanes.busy_count() == 2
  await scheduler.drain()
  _pump(scheduler)

  assert all(job.status == "completed" for job in scheduler.jobs)
  assert scheduler.outcome is not None
  assert violations == []


@pytest.mark.anyio
async def test_rate_limited_job_cools_its_lane_down_twice_then_completes(clock) -> None:
  scheduler = BatchScheduler(SchedulerConfig(max_lanes=1), runner=_scripted(RateLimitError("429 RESOURCE_EXHAUSTED"), RateLimitError("quota exceeded"), "ok"), clock=clock)
  lane_states = _record(scheduler, "lane")
  job_states = _record(scheduler, "job")
  scheduler.submit_batch(_sections(1))
  job = scheduler.jobs[0]

  _pump(scheduler)
  await scheduler.drain()
  lane = scheduler.lanes.get(1)
  assert job.status == "retrying"
  assert job.retry_count == 1
  assert job.next_retry_at == 1004.0
  assert job.error == "Rate limit. Retry #1"
  assert lane.status == "cooldown"
  assert lane.cooldown_ends_at == 1005.0

  # The job's backoff has elapsed but its only lane is still cooling down.
  clock.advance(4)
  _pump(scheduler)
  assert job.status == "retrying"

  clock.advance(1)
  _pump(scheduler)
  assert job.status == "running"
  await scheduler.drain()
  assert job.retry_count == 2
  assert job.next_retry_at == 1013.0
  assert lane.cooldown_ends_at == 1010.0

  clock.advance(5)
  _pump(scheduler)
  assert lane.status == "idle"
  assert job.status == "retrying"

  clock.advance(3)
  _pump(scheduler)
  await scheduler.drain()
  _pump(scheduler)

  assert job.status == "completed"
  assert lane_states == ["busy", "cooldown", "idle", "busy", "cooldown", "idle", "busy", "idle"]
  assert _dedupe(job_states) == ["running", "retrying", "running", "retrying", "running", "completed"]
  assert scheduler.stage == "finished"


@pytest.mark.anyio
async def test_other_errors_back_off_4_8_16_then_fail_without_cooldown(clock) -> None:
  async def _always_fails(job: Job) -> list[MCQItem]:
    raise GatewayError("upstream returned 500")

  scheduler = BatchScheduler(SchedulerConfig(max_lanes=1), runner=_always_fails, clock=clock)
  lane_states = _record(scheduler, "lane")
  scheduler.submit_batch(_sections(1))
  job = scheduler.jobs[0]

  _pump(scheduler)
  await scheduler.drain()

  deltas: list[float] = []
  while job.status == "retrying":
    # The lane is blameless and freed at once.
    assert scheduler.lanes.get(1).status == "idle"
    delay = job.next_retry_at - clock()
    deltas.append(delay)
    clock.advance(delay)
    _pump(scheduler)
    await scheduler.drain()

  assert deltas == [4.0, 8.0, 16.0]
  assert job.status == "failed"
  assert job.retry_count == 4
  assert job.error == "upstream returned 500"
  assert "cooldown" not in lane_states
  assert scheduler.lanes.get(1).error_count == 4

  _pump(scheduler)
  outcome = scheduler.outcome
  assert outcome is not None
  assert outcome.audit.total == 0
  assert outcome.audit.failed_jobs == [job]
  assert "- Failed sections: 1" in outcome.audit.report


@pytest.mark.anyio
async def test_queued_jobs_run_before_elapsed_retries(clock) -> None:
  scheduler = BatchScheduler(SchedulerConfig(max_lanes=1), runner=_scripted(GatewayError("boom"), "ok", "ok"), clock=clock)
  scheduler.submit_batch(_sections(2))
  first, second = scheduler.jobs

  _pump(scheduler)
  assert scheduler.lanes.get(1).current_job_id == first.id
  await scheduler.drain()
  assert first.status == "retrying"

  clock.advance(10)
  _pump(scheduler)
  assert scheduler.lanes.get(1).current_job_id == second.id
  assert first.status == "retrying"

  await scheduler.drain()
  _pump(scheduler)
  assert scheduler.lanes.get(1).current_job_id == first.id
  await scheduler.drain()
  _pump(scheduler)
  assert [job.status for job in scheduler.jobs] == ["completed", "completed"]


@pytest.mark.anyio
async def test_batch_is_finalized_exactly_once(clock) -> None:
  scheduler = BatchScheduler(SchedulerConfig(max_lanes=2), runner=_scripted("ok", GatewayError("boom"), GatewayError("boom"), GatewayError("boom"), GatewayError("boom")), clock=clock)
  stages = _record(scheduler, "batch")
  scheduler.submit_batch(_sections(2))

  for _ in range(20):
    _pump(scheduler)
    await scheduler.drain()
    clock.advance(20)

  assert stages.count("finished") == 1
  assert stages.count("audit") == 1
  assert scheduler.evaluate() is False
  assert sorted(job.status for job in scheduler.jobs) == ["completed", "failed"]


@pytest.mark.anyio
async def test_run_until_complete_drives_retries_to_an_outcome() -> None:
  calls: dict[str, int] = {}

  async def _flaky(job: Job) -> list[MCQItem]:
    calls[job.id] = calls.get(job.id, 0) + 1
    if calls[job.id] == 1:
      raise RateLimitError("429 Too Many Requests")
    return [_item_for(job)]

  scheduler = BatchScheduler(SchedulerConfig(max_lanes=2, lane_cooldown_seconds=0.0, retry_base_seconds=0.0), runner=_flaky)
  batch_id = scheduler.submit_batch(_sections(3))

  outcome = await asyncio.wait_for(scheduler.run_until_complete(), timeout=5)

  assert outcome is not None
  assert outcome.batch_id == batch_id
  assert outcome.audit.total == 3
  assert all(job.status == "completed" and job.retry_count == 1 for job in scheduler.jobs)


@pytest.mark.anyio
async def test_reset_discards_results_of_calls_still_in_flight(clock) -> None:
  gate = asyncio.Event()

  async def _gated(job: Job) -> list[MCQItem]:
    await gate.wait()
    return [_item_for(job)]

  scheduler = BatchScheduler(SchedulerConfig(max_lanes=2), runner=_gated, clock=clock)
  scheduler.submit_batch(_sections(2))
  _pump(scheduler)
  stale_jobs = list(scheduler.jobs)

  scheduler.reset()
  assert scheduler.jobs == []
  assert scheduler.stage == "setup"
  assert scheduler.batch_id is None
  assert all(lane.status == "idle" for lane in scheduler.lanes.lanes)

  gate.set()
  await scheduler.drain()

  assert all(job.status == "running" for job in stale_jobs)
  assert all(lane.status == "idle" for lane in scheduler.lanes.lanes)
  assert scheduler.outcome is None
  assert scheduler.evaluate() is False


@pytest.mark.anyio
async def test_new_submission_replaces_active_batch(clock) -> None:
  gate = asyncio.Event()

  async def _gated(job: Job) -> list[MCQItem]:
    await gate.wait()
    return [_item_for(job)]

  scheduler = BatchScheduler(SchedulerConfig(max_lanes=2), runner=_gated, clock=clock)
  first_id = scheduler.submit_batch(_sections(2))
  _pump(scheduler)

  second_id = scheduler.submit_batch([JobSection(title="Fresh", content="Fresh content that is long enough to quote.")], runner=_succeed)
  assert second_id != first_id
  _pump(scheduler)
  gate.set()
  await scheduler.drain()
  _pump(scheduler)

  outcome = scheduler.outcome
  assert outcome is not None
  assert outcome.batch_id == second_id
  assert [item.source_heading for item in outcome.audit.items] == ["Fresh"]


@pytest.mark.anyio
async def test_run_until_complete_returns_none_after_reset(clock) -> None:
  gate = asyncio.Event()

  async def _gated(job: Job) -> list[MCQItem]:
    await gate.wait()
    return [_item_for(job)]

  scheduler = BatchScheduler(SchedulerConfig(max_lanes=1), runner=_gated, clock=clock)
  scheduler.submit_batch(_sections(1))
  driver = asyncio.create_task(scheduler.run_until_complete())
  await asyncio.sleep(0)

  scheduler.reset()
  assert await asyncio.wait_for(driver, timeout=1) is None

  gate.set()
  await scheduler.drain()


def test_submit_batch_rejects_empty_sections_and_missing_runner() -> None:
  with pytest.raises(ValueError):
    BatchScheduler(runner=_succeed).submit_batch([])
  with pytest.raises(ValueError):
    BatchScheduler().submit_batch(_sections(1))


@pytest.mark.anyio
async def test_snapshot_reports_jobs_lanes_and_outcome(clock) -> None:
  scheduler = BatchScheduler(SchedulerConfig(max_lanes=3), runner=_succeed, clock=clock)
  batch_id = scheduler.submit_batch(_sections(2))
  _pump(scheduler)
  await scheduler.drain()
  _pump(scheduler)

  snapshot = scheduler.snapshot()

  assert snapshot["batchId"] == batch_id
  assert snapshot["stage"] == "finished"
  assert len(snapshot["jobs"]) == 2
  assert len(snapshot["lanes"]) == 3
  assert snapshot["outcome"]["total"] == 2
  assert snapshot["outcome"]["items"][0]["auditStatus"] == "pass"


def test_config_from_settings_maps_scheduler_fields() -> None:
  from medcards.config import get_settings

  settings = get_settings()
  config = SchedulerConfig.from_settings(settings)
  assert config.max_lanes == settings.max_lanes
  assert config.lane_cooldown_seconds == settings.lane_cooldown_seconds
  assert config.max_retries == settings.max_job_retries


@pytest.mark.anyio
async def test_successful_job_reports_every_step(clock) -> None:
  scheduler = BatchScheduler(SchedulerConfig(max_lanes=1), runner=_succeed, clock=clock)
  steps: list[str | None] = []
  scheduler.broadcaster.add_listener(lambda event: steps.append(event.step) if event.kind == "job" else None)
  scheduler.submit_batch(_sections(1))

  _pump(scheduler)
  await scheduler.drain()
  _pump(scheduler)

  assert steps == ["decompose", "generate", "evaluate", "decide", "done"]
  assert scheduler.jobs[0].step == "done"
