from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr
from pydantic.alias_generators import to_camel

from medcards.schema.cloze import ClozeCard, ClozeMode
from medcards.schema.mcq import DEFAULT_SPECIALTY, EssayMode, EssayTurn, GenerationParams


class _ApiModel(BaseModel):
  """HTTP payloads use camelCase on the wire and accept snake_case too."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CleaningRequest(_ApiModel):
  """Raw extracted text to restructure into Markdown."""

  text: StrictStr = Field(min_length=1, description="Raw text as extracted from PDF or Word.")
  repair_pdf_artifacts: bool = Field(default=False, description="Repair Private-Use-Area comparator glyphs before cleaning.")
  model: StrictStr | None = Field(default=None, description="Override the configured cleaning model.")
  think_more: bool | None = None

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", protected_namespaces=())


class GlyphRepairModel(_ApiModel):
  label: StrictStr
  count: int


class UnknownGlyphModel(_ApiModel):
  char: StrictStr
  code: StrictStr
  count: int
  samples: list[str]


class CleaningResponse(_ApiModel):
  cleaned_text: StrictStr
  table_of_contents: StrictStr
  audit_lines: list[str] = Field(default_factory=list, description="Comparator counts before and after cleaning.")
  repairs: list[GlyphRepairModel] = Field(default_factory=list)
  unknown_glyphs: list[UnknownGlyphModel] = Field(default_factory=list)


class SectionsRequest(_ApiModel):
  cleaned_markdown: StrictStr = Field(min_length=1)
  selected_ids: list[int] | None = Field(default=None, description="Heading ids to keep; all headings when omitted.")
  allow_cross_section_context: bool = False


class SectionPayload(_ApiModel):
  """One job input: a heading path and the text to generate from."""

  title: StrictStr = Field(min_length=1)
  content: StrictStr = Field(min_length=1)


class SectionOutlineItem(_ApiModel):
  id: int
  title: StrictStr
  level: int
  path: StrictStr
  parent_id: int | None = None


class SectionsResponse(_ApiModel):
  outline: list[SectionOutlineItem]
  sections: list[SectionPayload]


class BatchCreateRequest(_ApiModel):
  """Sections to turn into jobs plus the generation params shared by all of them."""

  sections: list[SectionPayload] = Field(min_length=1)
  params: GenerationParams = Field(default_factory=GenerationParams)


class BatchCreateResponse(_ApiModel):
  batch_id: StrictStr
  generation: int
  job_count: int


class BatchResetResponse(_ApiModel):
  stage: StrictStr
  generation: int


class EssayRequest(_ApiModel):
  mode: EssayMode
  document_text: StrictStr = Field(min_length=1)
  section: StrictStr = ""
  user_answer: StrictStr = ""
  history: list[EssayTurn] = Field(default_factory=list, max_length=50)
  model: StrictStr | None = None
  think_more: bool | None = None

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", protected_namespaces=())


class EssayResponse(_ApiModel):
  """Tutor text for check and hint modes; report and rating for grade mode."""

  mode: EssayMode
  text: StrictStr | None = None
  grading_report: StrictStr | None = None
  srs_rating: int | None = None


class ClozeRecommendationRequest(_ApiModel):
  """A cleaned lesson to get cloze type advice for."""

  cleaned_text: StrictStr = Field(min_length=1)
  focus_section: StrictStr = ""
  specialty: StrictStr = DEFAULT_SPECIALTY
  custom_instructions: StrictStr = ""
  model: StrictStr | None = None
  think_more: bool | None = None

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", protected_namespaces=())


class ClozeRecommendationResponse(_ApiModel):
  text: StrictStr


class ClozeRequest(_ApiModel):
  """Lesson text plus the options of one cloze generation call."""

  lesson_text: StrictStr = Field(min_length=1)
  focus_section: StrictStr = ""
  lesson_source: StrictStr = ""
  specialty: StrictStr = DEFAULT_SPECIALTY
  custom_instructions: StrictStr = ""
  preferred_types: list[StrictStr] = Field(default_factory=list, description="Cloze type ids; empty lets the model choose.")
  extra_context: StrictStr = Field(default="", description="Related text used only to contrast look-alike entities.")
  model: StrictStr | None = None
  think_more: bool | None = None

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", protected_namespaces=())


class ClozeResponse(_ApiModel):
  flashcards: list[ClozeCard]
  report: StrictStr
  mode: ClozeMode
  types: list[str]
  ignored_types: list[str]
  salvaged: int
