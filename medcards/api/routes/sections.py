from fastapi import APIRouter, Depends

from medcards.api.models import SectionOutlineItem, SectionPayload, SectionsRequest, SectionsResponse
from medcards.config import Settings, get_settings
from medcards.services.sections import build_job_sections, parse_sections

router = APIRouter()


@router.post("", response_model=SectionsResponse)
async def split_sections(request: SectionsRequest, settings: Settings = Depends(get_settings)) -> SectionsResponse:  # noqa: B008
  """Return the heading outline and the job payloads of the selected headings."""
  outline = [SectionOutlineItem(id=item.id, title=item.title, level=item.level, path=item.path, parent_id=item.parent_id) for item in parse_sections(request.cleaned_markdown)]
  selected = set(request.selected_ids) if request.selected_ids is not None else None
  jobs = build_job_sections(request.cleaned_markdown, selected_ids=selected, allow_cross_section_context=request.allow_cross_section_context, max_context_chars=settings.cross_section_max_chars)
  return SectionsResponse(outline=outline, sections=[SectionPayload(title=job.title, content=job.content) for job in jobs])
