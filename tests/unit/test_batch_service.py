from __future__ import annotations

import json

import pytest

from medcards.ai.mcq import SALVAGE_WARNING
from medcards.jobs.models import Job, JobSection
from medcards.jobs.scheduler import BatchScheduler, SchedulerConfig
from medcards.schema.mcq import GenerationParams
from medcards.services.batches import BatchService, build_job_runner

SECTION = JobSection(title="Renal", content="Metformin is contraindicated when eGFR < 30 mL/min.")
CARDS = json.dumps(
  {
    "cards": [
      {
        "front": "When is metformin contraindicated? A. eGFR @@CMP_LT_0001@@ 30 B. eGFR 45 C. eGFR 60 D. never",
        "correctOption": "A",
        "explanation": "Lactic acidosis risk.",
        "originalQuote": "contraindicated when eGFR @@CMP_LT_0001@@ 30 mL/min",
        "sourceHeading": "Renal",
      }
    ]
  }
)


@pytest.mark.anyio
async def test_job_runner_generates_items_for_the_job_section(fake_model_factory) -> None:
  model = fake_model_factory([CARDS])
  runner = build_job_runner(model, GenerationParams())

  items = await runner(Job(id="job-1", section_title=SECTION.title, section_content=SECTION.content))

  assert [item.correct_option for item in items] == ["A"]
  assert items[0].original_quote == "contraindicated when eGFR < 30 mL/min"


@pytest.mark.anyio
async def test_start_drives_the_batch_to_an_audited_outcome(fake_model_factory, fake_provider_factory) -> None:
  provider = fake_provider_factory(fake_model_factory([CARDS]))
  service = BatchService(BatchScheduler(SchedulerConfig(max_lanes=2)), provider)

  batch_id = service.start([SECTION], GenerationParams(model="gemini-3-pro-preview", think_more=False))
  outcome = await service.wait()

  assert provider.requested == [("gemini-3-pro-preview", False)]
  assert outcome is not None
  assert outcome.batch_id == batch_id
  assert outcome.audit.passed == 1
  assert service.scheduler.stage == "finished"
  assert service.scheduler.outcome is outcome
  await service.shutdown()


@pytest.mark.anyio
async def test_unsupported_model_is_rejected_before_submission(fake_provider_factory) -> None:
  service = BatchService(BatchScheduler(), fake_provider_factory())

  with pytest.raises(ValueError):
    service.start([SECTION], GenerationParams(model="unsupported-model"))

  assert service.scheduler.stage == "setup"
  assert await service.wait() is None


@pytest.mark.anyio
async def test_shutdown_resets_a_running_batch(fake_model_factory, fake_provider_factory) -> None:
  service = BatchService(BatchScheduler(), fake_provider_factory(fake_model_factory([CARDS])))
  service.start([SECTION], GenerationParams())

  await service.shutdown()

  assert service.scheduler.stage == "setup"
  assert service.scheduler.outcome is None
  assert await service.wait() is None


@pytest.mark.anyio
async def test_job_runner_keeps_report_and_salvage_count_on_the_job(fake_model_factory) -> None:
  corrupted = json.loads(CARDS)
  corrupted["cards"][0]["originalQuote"] = "contraindicated when eGFR @@CMP_LT_01@@ 30 mL/min"
  corrupted["cards"][0]["front"] = "Which eGFR rules metformin out? A. 30 B. 45 C. 60 D. 90"
  corrupted["report"] = "One threshold covered."
  runner = build_job_runner(fake_model_factory([json.dumps(corrupted)]), GenerationParams())
  job = Job(id="job-1", section_title=SECTION.title, section_content=SECTION.content)

  items = await runner(job)

  assert items[0].original_quote == "contraindicated when eGFR < 30 mL/min"
  assert job.salvaged == 1
  assert job.report.startswith("One threshold covered.")
  assert job.report.endswith(SALVAGE_WARNING)


@pytest.mark.anyio
async def test_salvaged_sections_appear_in_the_batch_outcome(fake_model_factory, fake_provider_factory) -> None:
  corrupted = json.loads(CARDS)
  corrupted["cards"][0]["originalQuote"] = "contraindicated when eGFR @@CMP_LT_01@@ 30 mL/min"
  corrupted["cards"][0]["front"] = "Which eGFR rules metformin out? A. 30 B. 45 C. 60 D. 90"
  service = BatchService(BatchScheduler(SchedulerConfig(max_lanes=1)), fake_provider_factory(fake_model_factory([json.dumps(corrupted)])))

  service.start([SECTION], GenerationParams())
  outcome = await service.wait()

  assert outcome is not None
  assert [job.section_title for job in outcome.audit.salvaged_jobs] == ["Renal"]
  assert "Comparator salvage: 1 section(s)" in outcome.audit.report
  assert service.scheduler.snapshot()["outcome"]["salvagedJobs"] == [service.scheduler.jobs[0].id]
  await service.shutdown()
