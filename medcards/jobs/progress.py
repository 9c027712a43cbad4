"""Progress events emitted by the batch scheduler."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Literal

import msgspec

logger = logging.getLogger(__name__)

EventKind = Literal["job", "lane", "batch"]
ProgressListener = Callable[["ProgressEvent"], None]
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 256


class ProgressEvent(msgspec.Struct, frozen=True, rename="camel"):
  """One observable state change of a job, a lane or the batch."""

  kind: EventKind
  batch_id: str | None
  generation: int
  entity_id: str
  status: str
  step: str | None = None
  detail: str | None = None
  timestamp: float = msgspec.field(default_factory=time.time)

  def to_json(self) -> bytes:
    return msgspec.json.encode(self)


class ProgressBroadcaster:
  """Fan progress events out to synchronous listeners and async subscribers."""

  def __init__(self, *, queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE) -> None:
    self._listeners: list[ProgressListener] = []
    self._queues: set[asyncio.Queue[ProgressEvent]] = set()
    self._queue_size = queue_size

  def add_listener(self, listener: ProgressListener) -> Callable[[], None]:
    """Register a listener and return a callable that removes it."""
    self._listeners.append(listener)

    def _remove() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return _remove

  @property
  def subscriber_count(self) -> int:
    return len(self._queues)

  def publish(self, event: ProgressEvent) -> None:
    for listener in list(self._listeners):
      try:
        listener(event)
      except Exception:
        # A broken observer must not stall scheduling.
        logger.exception("Progress listener failed for %s event %s", event.kind, event.entity_id)

    for queue in self._queues:
      # Slow subscribers lose their oldest events rather than blocking the scheduler.
      if queue.full():
        queue.get_nowait()
      queue.put_nowait(event)

  @asynccontextmanager
  async def subscribe(self) -> AsyncIterator[AsyncIterator[ProgressEvent]]:
    """Yield an async iterator of events for the lifetime of the context."""
    queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self._queue_size)
    self._queues.add(queue)

    async def _iterate() -> AsyncIterator[ProgressEvent]:
      while True:
        yield await queue.get()

    try:
      yield _iterate()
    finally:
      self._queues.discard(queue)
