"""Fixed-size pool of execution lanes."""

from __future__ import annotations

import logging

from medcards.jobs.models import Lane

logger = logging.getLogger(__name__)


class LaneStateError(RuntimeError):
  """Raised when a lane is moved through an edge its state machine does not allow."""


class LanePool:
  """Own the lanes of one scheduler and enforce their transitions."""

  def __init__(self, size: int) -> None:
    if size < 1:
      raise ValueError("Lane pool size must be at least 1.")
    self._size = size
    self.lanes: list[Lane] = [Lane(id=index + 1) for index in range(size)]

  @property
  def size(self) -> int:
    return self._size

  def get(self, lane_id: int) -> Lane:
    if not 1 <= lane_id <= self._size:
      raise LaneStateError(f"Unknown lane {lane_id}.")
    return self.lanes[lane_id - 1]

  def idle_lanes(self) -> list[Lane]:
    return [lane for lane in self.lanes if lane.status == "idle"]

  def busy_count(self) -> int:
    return sum(1 for lane in self.lanes if lane.status == "busy")

  def expire_cooldowns(self, now: float) -> list[Lane]:
    """Return lanes whose cooldown elapsed at ``now``, after moving them to idle."""
    expired: list[Lane] = []
    for lane in self.lanes:
      if lane.status == "cooldown" and lane.cooldown_ends_at is not None and now >= lane.cooldown_ends_at:
        lane.status = "idle"
        lane.cooldown_ends_at = None
        expired.append(lane)
        logger.info("Lane %s cooldown expired", lane.id)
    return expired

  def next_cooldown_deadline(self) -> float | None:
    deadlines = [lane.cooldown_ends_at for lane in self.lanes if lane.status == "cooldown" and lane.cooldown_ends_at is not None]
    return min(deadlines, default=None)

  def occupy(self, lane_id: int, job_id: str) -> Lane:
    lane = self.get(lane_id)
    if lane.status != "idle":
      raise LaneStateError(f"Lane {lane_id} is {lane.status}, cannot take job {job_id}.")
    lane.status = "busy"
    lane.current_job_id = job_id
    return lane

  def release(self, lane_id: int, *, success: bool) -> Lane:
    """Free a busy lane without penalty."""
    lane = self._require_busy(lane_id)
    lane.status = "idle"
    lane.current_job_id = None
    lane.error_count = 0 if success else lane.error_count + 1
    return lane

  def quarantine(self, lane_id: int, until: float) -> Lane:
    """Put a busy lane into cooldown after a rate-limit failure."""
    lane = self._require_busy(lane_id)
    lane.status = "cooldown"
    lane.current_job_id = None
    lane.cooldown_ends_at = until
    lane.error_count += 1
    logger.info("Lane %s entered cooldown until %.3f", lane.id, until)
    return lane

  def reset(self) -> None:
    self.lanes = [Lane(id=index + 1) for index in range(self._size)]

  def _require_busy(self, lane_id: int) -> Lane:
    lane = self.get(lane_id)
    if lane.status != "busy":
      raise LaneStateError(f"Lane {lane_id} is {lane.status}, expected busy.")
    return lane
