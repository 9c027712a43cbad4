"""Pydantic models for cloze flashcards and the cloze type catalog."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, StrictStr

from medcards.schema.mcq import _CamelModel

ClozeType = Literal["basic", "cluster", "overlapping", "hierarchical", "bidirectional", "disambiguation", "pedi_mindmap"]
ClozeMode = Literal["auto", "exclusive"]

CLOZE_TYPES: tuple[str, ...] = ("basic", "cluster", "overlapping", "hierarchical", "bidirectional", "disambiguation", "pedi_mindmap")
PEDIATRICS_SPECIALTY = "Nhi khoa"
PEDIATRICS_ONLY_TYPES: frozenset[str] = frozenset({"pedi_mindmap"})


class RelatedContext(_CamelModel):
  """A supporting quote shown next to a card, typed by its role."""

  quote: StrictStr
  category: StrictStr = ""


class ClozeCard(_CamelModel):
  """One cloze card; ``cloze_text`` uses ``{{c1::answer::hint}}`` deletions."""

  card_id: StrictStr | None = None
  parent_id: StrictStr | None = None
  cloze_text: StrictStr = Field(min_length=1)
  original_quote: StrictStr = ""
  related_context: list[RelatedContext] = Field(default_factory=list)
  source_heading: StrictStr = ""
  source_lesson: StrictStr = ""
  question_category: StrictStr = ""
  extra_info: StrictStr | None = None


class ClozeBatchPayload(_CamelModel):
  flashcards: list[ClozeCard] = Field(default_factory=list)
  report: StrictStr = ""


CLOZE_RESPONSE_SCHEMA: dict[str, Any] = {
  "type": "OBJECT",
  "properties": {
    "flashcards": {
      "type": "ARRAY",
      "items": {
        "type": "OBJECT",
        "properties": {
          "cardId": {"type": "STRING"},
          "parentId": {"type": "STRING"},
          "clozeText": {"type": "STRING"},
          "originalQuote": {"type": "STRING"},
          "relatedContext": {
            "type": "ARRAY",
            "items": {"type": "OBJECT", "properties": {"quote": {"type": "STRING"}, "category": {"type": "STRING"}}, "required": ["quote", "category"]},
          },
          "sourceHeading": {"type": "STRING"},
          "sourceLesson": {"type": "STRING"},
          "questionCategory": {"type": "STRING"},
          "extraInfo": {"type": "STRING"},
        },
        "required": ["clozeText", "originalQuote", "sourceHeading", "sourceLesson", "questionCategory"],
      },
    },
    "report": {"type": "STRING"},
  },
  "required": ["flashcards", "report"],
}
