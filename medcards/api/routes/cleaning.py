import logging

from fastapi import APIRouter, Depends, HTTPException, status

from medcards.ai.cleaning import clean_and_restructure_text
from medcards.ai.comparator_guard import comparator_audit_line, normalize_comparators, repair_pdf_extraction_artifacts
from medcards.ai.providers.base import Provider
from medcards.api.deps import get_provider
from medcards.api.models import CleaningRequest, CleaningResponse, GlyphRepairModel, UnknownGlyphModel
from medcards.config import Settings, get_settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=CleaningResponse)
async def clean_text(
  request: CleaningRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  provider: Provider = Depends(get_provider),  # noqa: B008
) -> CleaningResponse:
  """Restructure raw extracted text into Markdown with every comparator preserved."""
  text = request.text
  repairs: list[GlyphRepairModel] = []
  unknown: list[UnknownGlyphModel] = []
  if request.repair_pdf_artifacts:
    report = repair_pdf_extraction_artifacts(text)
    text = report.repaired_text
    repairs = [GlyphRepairModel(label=repair.label, count=repair.count) for repair in report.repairs]
    unknown = [UnknownGlyphModel(char=glyph.char, code=glyph.code, count=glyph.count, samples=glyph.samples) for glyph in report.unknown_glyphs]
    if unknown:
      logger.warning("PDF text still has %d unknown private-use glyph(s): %s", len(unknown), ", ".join(glyph.code for glyph in unknown))

  try:
    model = provider.get_model(request.model or settings.cleaning_model, think_more=settings.cleaning_think_more if request.think_more is None else request.think_more)
    result = await clean_and_restructure_text(model, text, max_attempts=settings.integrity_max_attempts)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

  audit_lines = [comparator_audit_line("CLEAN_IN", normalize_comparators(text)), comparator_audit_line("CLEAN_OUT", result.cleaned_text)]
  return CleaningResponse(cleaned_text=result.cleaned_text, table_of_contents=result.table_of_contents, audit_lines=audit_lines, repairs=repairs, unknown_glyphs=unknown)
