"""Domain models for batch generation jobs and execution lanes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

JobStatus = Literal["queued", "running", "retrying", "completed", "failed"]
JobStep = Literal["decompose", "generate", "evaluate", "decide", "done"]
LaneStatus = Literal["idle", "busy", "cooldown"]
BatchStage = Literal["setup", "generation", "audit", "finished"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class InvalidTransitionError(RuntimeError):
  """Raised when a job is moved through an edge its state machine does not allow."""


@dataclass(frozen=True)
class JobSection:
  """Input payload of one job: a section title and the text to generate from."""

  title: str
  content: str


@dataclass
class Job:
  """One unit of batch work: a document section and its retry state."""

  id: str
  section_title: str
  section_content: str
  status: JobStatus = "queued"
  step: JobStep | None = None
  lane_id: int | None = None
  retry_count: int = 0
  next_retry_at: float | None = None
  result: list[Any] = field(default_factory=list)
  error: str | None = None
  report: str = ""
  salvaged: int = 0

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  def is_eligible(self, now: float) -> bool:
    """Return True when the scheduler may assign this job at ``now``."""
    if self.status == "queued":
      return True
    return self.status == "retrying" and self.next_retry_at is not None and now >= self.next_retry_at

  def _require(self, *allowed: JobStatus, action: str) -> None:
    if self.status not in allowed:
      raise InvalidTransitionError(f"Cannot {action} job {self.id} in status '{self.status}'.")

  def start(self, lane_id: int) -> None:
    """Move a queued or retrying job onto a lane."""
    self._require("queued", "retrying", action="start")
    self.status = "running"
    self.lane_id = lane_id
    self.error = None

  def complete(self, result: list[Any]) -> None:
    self._require("running", action="complete")
    self.status = "completed"
    self.result = list(result)
    self.step = "done"
    self.lane_id = None

  def schedule_retry(self, next_retry_at: float, reason: str) -> None:
    """Park a running job until ``next_retry_at``; retry_count must already be incremented."""
    self._require("running", action="retry")
    self.status = "retrying"
    self.next_retry_at = next_retry_at
    self.error = reason
    self.lane_id = None

  def fail(self, reason: str) -> None:
    self._require("running", "retrying", action="fail")
    self.status = "failed"
    self.error = reason
    self.lane_id = None

  def as_dict(self) -> dict[str, Any]:
    """Serialize the observable job state."""
    return {
      "id": self.id,
      "sectionTitle": self.section_title,
      "status": self.status,
      "step": self.step,
      "laneId": self.lane_id,
      "retryCount": self.retry_count,
      "nextRetryAt": self.next_retry_at,
      "resultCount": len(self.result),
      "error": self.error,
      "salvaged": self.salvaged,
      "report": self.report,
    }


@dataclass
class Lane:
  """One concurrent execution slot."""

  id: int
  status: LaneStatus = "idle"
  current_job_id: str | None = None
  cooldown_ends_at: float | None = None
  # Consecutive failures; informational only, never disables a lane.
  error_count: int = 0

  def as_dict(self) -> dict[str, Any]:
    return {"id": self.id, "status": self.status, "currentJobId": self.current_job_id, "cooldownEndsAt": self.cooldown_ends_at, "errorCount": self.error_count}
