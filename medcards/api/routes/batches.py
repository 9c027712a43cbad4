import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from starlette.responses import Response

from medcards.api.deps import get_batch_service, get_scheduler
from medcards.api.models import BatchCreateRequest, BatchCreateResponse, BatchResetResponse
from medcards.api.msgspec_utils import encode_msgspec_response, encode_sse
from medcards.config import Settings, get_settings
from medcards.jobs.models import JobSection
from medcards.jobs.scheduler import BatchScheduler
from medcards.services.batches import BatchService

router = APIRouter()
logger = logging.getLogger(__name__)

# Stages after which no further events arrive for the streamed generation.
_CLOSING_STAGES = frozenset({"setup", "finished"})


@router.post("", response_model=BatchCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_batch(
  request: BatchCreateRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  service: BatchService = Depends(get_batch_service),  # noqa: B008
) -> BatchCreateResponse:
  """Submit one job per section and start driving the batch in the background."""
  sections = [JobSection(title=section.title, content=section.content) for section in request.sections]
  params = request.params
  params = params.model_copy(update={"model": params.model or settings.generation_model, "think_more": settings.generation_think_more if params.think_more is None else params.think_more})
  try:
    batch_id = service.start(sections, params)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  return BatchCreateResponse(batch_id=batch_id, generation=service.scheduler.generation, job_count=len(sections))


@router.get("/current")
async def get_current_batch(scheduler: BatchScheduler = Depends(get_scheduler)) -> Response:  # noqa: B008
  """Return jobs, lanes and, once finished, the audited items of the current batch."""
  return encode_msgspec_response(scheduler.snapshot())


@router.post("/reset", response_model=BatchResetResponse)
async def reset_batch(service: BatchService = Depends(get_batch_service)) -> BatchResetResponse:  # noqa: B008
  """Drop the current batch; results of calls still in flight are discarded."""
  service.reset()
  return BatchResetResponse(stage=service.scheduler.stage, generation=service.scheduler.generation)


@router.get("/current/events")
async def stream_batch_events(scheduler: BatchScheduler = Depends(get_scheduler), follow: bool = Query(default=True)) -> StreamingResponse:  # noqa: B008
  """Stream a snapshot followed by progress events until the batch finishes or is reset."""

  async def _events() -> AsyncIterator[bytes]:
    async with scheduler.broadcaster.subscribe() as events:
      generation = scheduler.generation
      yield encode_sse("snapshot", scheduler.snapshot())
      if not follow or scheduler.stage in _CLOSING_STAGES:
        return
      async for event in events:
        if event.generation != generation:
          # A new submission or a reset ends the stream of the previous batch.
          yield encode_sse("batch", {"kind": "batch", "status": "replaced", "generation": event.generation})
          return
        yield encode_sse(event.kind, event)
        if event.kind == "batch" and event.status in _CLOSING_STAGES:
          return

  logger.info("Progress stream opened batch=%s follow=%s", scheduler.batch_id, follow)
  return StreamingResponse(_events(), media_type="text/event-stream", headers={"cache-control": "no-cache"})
