"""Pydantic models for generated study items and generation parameters."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator
from pydantic.alias_generators import to_camel

AuditStatus = Literal["pass", "warning", "fail"]
QuestionMode = Literal["theory", "clinical"]
EssayMode = Literal["check", "hint", "hint++", "grade"]
DEFAULT_SPECIALTY = "Nội khoa"


class _CamelModel(BaseModel):
  """Accept both camelCase (model output) and snake_case (Python) field names."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MCQItem(_CamelModel):
  """One generated multiple-choice question."""

  front: StrictStr = Field(min_length=1, description="Question stem including the lettered options.")
  correct_option: StrictStr = Field(description="Answer letter; validated by the auditor, not here.")
  explanation: StrictStr = ""
  original_quote: StrictStr = Field(default="", description="Verbatim evidence copied from the source section.")
  source_heading: StrictStr = ""
  question_category: StrictStr | None = None
  difficulty_tag: StrictStr | None = None
  hint: StrictStr | None = None


class MCQBatchPayload(_CamelModel):
  """Top-level JSON object returned by a generation call."""

  cards: list[MCQItem] = Field(default_factory=list)
  report: StrictStr = ""


class AuditedMCQ(MCQItem):
  """A generated item annotated by the deterministic audit pass."""

  audit_status: AuditStatus = "pass"
  audit_notes: list[str] = Field(default_factory=list)


class DifficultyWeights(_CamelModel):
  """Percentage split of question difficulty; must total 100."""

  easy: int = Field(default=10, ge=0, le=100)
  medium: int = Field(default=40, ge=0, le=100)
  hard: int = Field(default=35, ge=0, le=100)
  very_hard: int = Field(default=15, ge=0, le=100)

  @model_validator(mode="after")
  def _check_total(self) -> DifficultyWeights:
    total = self.easy + self.medium + self.hard + self.very_hard
    if total != 100:
      raise ValueError(f"Difficulty weights must sum to 100 (got {total}).")
    return self


class MCQOptions(_CamelModel):
  allow_cross_section_context: bool = False
  allow_external_sources: bool = False


class GenerationParams(_CamelModel):
  """Generation settings passed through unchanged to every job of a batch.

  ``model`` and ``think_more`` left unset fall back to the configured generation
  defaults when the batch is submitted.
  """

  model: StrictStr | None = None
  think_more: bool | None = None
  specialty: StrictStr = DEFAULT_SPECIALTY
  mode: QuestionMode = "theory"
  difficulty: DifficultyWeights = Field(default_factory=DifficultyWeights)
  custom_instructions: StrictStr = ""
  options: MCQOptions = Field(default_factory=MCQOptions)

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True, protected_namespaces=())


class CleaningResult(_CamelModel):
  cleaned_text: StrictStr
  table_of_contents: StrictStr


class EssayGradeResult(_CamelModel):
  """Structured output of the essay grader in grade mode."""

  grading_report: StrictStr
  srs_rating: int = Field(ge=0, le=3, description="Spaced-repetition rating: 0 again, 1 hard, 2 good, 3 easy.")


class EssayTurn(_CamelModel):
  role: Literal["user", "assistant"]
  text: StrictStr


MCQ_RESPONSE_SCHEMA: dict[str, Any] = {
  "type": "OBJECT",
  "properties": {
    "cards": {
      "type": "ARRAY",
      "items": {
        "type": "OBJECT",
        "properties": {
          "front": {"type": "STRING"},
          "correctOption": {"type": "STRING"},
          "explanation": {"type": "STRING"},
          "originalQuote": {"type": "STRING"},
          "sourceHeading": {"type": "STRING"},
          "questionCategory": {"type": "STRING"},
          "difficultyTag": {"type": "STRING"},
          "hint": {"type": "STRING"},
        },
        "required": ["front", "correctOption", "explanation", "originalQuote", "sourceHeading"],
      },
    },
    "report": {"type": "STRING"},
  },
  "required": ["cards"],
}

CLEANING_RESPONSE_SCHEMA: dict[str, Any] = {
  "type": "OBJECT",
  "properties": {"cleanedText": {"type": "STRING"}, "tableOfContents": {"type": "STRING"}},
  "required": ["cleanedText", "tableOfContents"],
}

ESSAY_GRADE_RESPONSE_SCHEMA: dict[str, Any] = {
  "type": "OBJECT",
  "properties": {"gradingReport": {"type": "STRING"}, "srsRating": {"type": "INTEGER"}},
  "required": ["gradingReport", "srsRating"],
}
