from fastapi import APIRouter, Depends, HTTPException, status

from medcards.ai.cloze import generate_cloze_flashcards, recommend_cloze_types
from medcards.ai.providers.base import AIModel, Provider
from medcards.api.deps import get_provider
from medcards.api.models import ClozeRecommendationRequest, ClozeRecommendationResponse, ClozeRequest, ClozeResponse
from medcards.config import Settings, get_settings

router = APIRouter()


def _model(provider: Provider, settings: Settings, name: str | None, think_more: bool | None) -> AIModel:
  try:
    return provider.get_model(name or settings.generation_model, think_more=settings.generation_think_more if think_more is None else think_more)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/recommendations", response_model=ClozeRecommendationResponse)
async def recommend_types(
  request: ClozeRecommendationRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  provider: Provider = Depends(get_provider),  # noqa: B008
) -> ClozeRecommendationResponse:
  """Advise which cloze card types fit a cleaned lesson."""
  model = _model(provider, settings, request.model, request.think_more)
  text = await recommend_cloze_types(model, cleaned_text=request.cleaned_text, focus_section=request.focus_section, specialty=request.specialty, custom_instructions=request.custom_instructions)
  return ClozeRecommendationResponse(text=text)


@router.post("", response_model=ClozeResponse)
async def create_cloze_cards(
  request: ClozeRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  provider: Provider = Depends(get_provider),  # noqa: B008
) -> ClozeResponse:
  """Generate cloze flashcards for one lesson section."""
  model = _model(provider, settings, request.model, request.think_more)
  result = await generate_cloze_flashcards(
    model,
    lesson_text=request.lesson_text,
    focus_section=request.focus_section,
    lesson_source=request.lesson_source,
    specialty=request.specialty,
    custom_instructions=request.custom_instructions,
    preferred_types=request.preferred_types,
    extra_context=request.extra_context,
  )
  return ClozeResponse(flashcards=result.cards, report=result.report, mode=result.mode, types=result.types, ignored_types=result.ignored_types, salvaged=result.salvaged)
