from fastapi import APIRouter, Depends, HTTPException, status

from medcards.ai.essay import respond_to_essay
from medcards.ai.providers.base import Provider
from medcards.api.deps import get_provider
from medcards.api.models import EssayRequest, EssayResponse
from medcards.config import Settings, get_settings
from medcards.schema.mcq import EssayGradeResult

router = APIRouter()


@router.post("", response_model=EssayResponse)
async def answer_essay(
  request: EssayRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  provider: Provider = Depends(get_provider),  # noqa: B008
) -> EssayResponse:
  """Check, hint or grade a written answer against the reference document."""
  try:
    model = provider.get_model(request.model or settings.grader_model, think_more=settings.grader_think_more if request.think_more is None else request.think_more)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

  result = await respond_to_essay(model, mode=request.mode, document_text=request.document_text, section=request.section, user_answer=request.user_answer, history=request.history)
  if isinstance(result, EssayGradeResult):
    return EssayResponse(mode=request.mode, grading_report=result.grading_report, srs_rating=result.srs_rating)
  return EssayResponse(mode=request.mode, text=result)
