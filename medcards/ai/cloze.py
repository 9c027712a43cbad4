"""Cloze flashcards: type recommendations and card generation through the comparator guard."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from pydantic import ValidationError

from medcards.ai.comparator_guard import ComparatorLock, canonicalize_comparator_tokens, comparator_audit_line, lock_comparators, normalize_comparators, salvage_comparator_token_like, unlock_all, verify_comparator_tokens_subset
from medcards.ai.errors import GatewayError
from medcards.ai.json_parser import parse_json_with_fallback
from medcards.ai.mcq import SALVAGE_WARNING
from medcards.ai.prompts import cloze_prompt, cloze_recommendation_prompt
from medcards.ai.providers.base import AIModel
from medcards.schema.cloze import CLOZE_RESPONSE_SCHEMA, CLOZE_TYPES, PEDIATRICS_ONLY_TYPES, PEDIATRICS_SPECIALTY, ClozeBatchPayload, ClozeCard, ClozeMode
from medcards.schema.mcq import DEFAULT_SPECIALTY

logger = logging.getLogger(__name__)

RECOMMENDATION_TEMPERATURE = 0.1
GENERATION_TEMPERATURE = 0.2


@dataclass(frozen=True)
class ClozeGenerationResult:
  cards: list[ClozeCard]
  report: str
  mode: ClozeMode
  types: list[str] = field(default_factory=list)
  ignored_types: list[str] = field(default_factory=list)
  salvaged: int = 0


def available_cloze_types(specialty: str) -> list[str]:
  """Catalog ids offered for ``specialty``; the mind-map type is pediatrics only."""
  if specialty == PEDIATRICS_SPECIALTY:
    return list(CLOZE_TYPES)
  return [cloze_type for cloze_type in CLOZE_TYPES if cloze_type not in PEDIATRICS_ONLY_TYPES]


def resolve_preferred_types(preferred: Sequence[str], specialty: str) -> tuple[list[str], list[str]]:
  """Split requested ids into usable ones (deduplicated, request order kept) and ignored ones."""
  available = available_cloze_types(specialty)
  usable: list[str] = []
  ignored: list[str] = []
  for raw in preferred:
    cloze_type = raw.strip().lower()
    if cloze_type in available:
      if cloze_type not in usable:
        usable.append(cloze_type)
    elif raw not in ignored:
      ignored.append(raw)
  return usable, ignored


def _locks(*texts: str) -> list[ComparatorLock]:
  locks: list[ComparatorLock] = []
  issued = 0
  for text in texts:
    lock = lock_comparators(normalize_comparators(text), start=issued)
    issued += len(lock.tokens)
    locks.append(lock)
  return locks


def _expected(locks: Sequence[ComparatorLock]) -> frozenset[str]:
  return frozenset(token for lock in locks for token in lock.tokens)


def _guard_output(raw: str, locks: Sequence[ComparatorLock], *, label: str) -> tuple[str, int]:
  """Canonicalize the response and salvage invented or corrupted tokens."""
  text = canonicalize_comparator_tokens(raw).text
  check = verify_comparator_tokens_subset(text, _expected(locks))
  if check.ok:
    return text, 0
  salvage = salvage_comparator_token_like(text)
  logger.warning("%s output had unknown=%s suspicious=%s comparator tokens; salvaged %d", label, check.unknown_tokens, check.suspicious_fragments, salvage.replaced)
  return salvage.text, salvage.replaced


def _restore(text: str | None, locks: Sequence[ComparatorLock]) -> str | None:
  if text is None:
    return None
  return normalize_comparators(unlock_all(text, locks))


async def recommend_cloze_types(model: AIModel, *, cleaned_text: str, focus_section: str = "", specialty: str = DEFAULT_SPECIALTY, custom_instructions: str = "") -> str:
  """Return Markdown advice on which cloze types suit ``cleaned_text``; no cards are written."""
  locks = _locks(cleaned_text, custom_instructions)
  text_lock, instructions_lock = locks
  prompt = cloze_recommendation_prompt(
    specialty=specialty,
    focus_section=focus_section,
    locked_text=text_lock.locked_text,
    locked_instructions=instructions_lock.locked_text,
    types=available_cloze_types(specialty),
  )
  response = await model.generate(prompt, temperature=RECOMMENDATION_TEMPERATURE)
  raw, salvaged = _guard_output(response.content, locks, label="Cloze advisor")
  advice = _restore(raw, locks) or ""
  if salvaged:
    advice = f"{advice}\n\n{SALVAGE_WARNING}".strip()
  return advice


async def generate_cloze_flashcards(
  model: AIModel,
  *,
  lesson_text: str,
  focus_section: str = "",
  lesson_source: str = "",
  specialty: str = DEFAULT_SPECIALTY,
  custom_instructions: str = "",
  preferred_types: Sequence[str] = (),
  extra_context: str = "",
) -> ClozeGenerationResult:
  """Generate cloze cards for a lesson and return them with comparators restored.

  With ``preferred_types`` the model is restricted to those ids; otherwise it
  picks freely from the catalog. Unknown ids, and the pediatrics-only type
  outside pediatrics, are ignored and reported back.
  """
  types, ignored = resolve_preferred_types(preferred_types, specialty)
  if ignored:
    logger.info("Ignoring cloze types %s for specialty %r", ignored, specialty)
  mode: ClozeMode = "exclusive" if types else "auto"

  locks = _locks(lesson_text, custom_instructions, extra_context)
  lesson_lock, instructions_lock, extra_lock = locks
  prompt = cloze_prompt(
    specialty=specialty,
    focus_section=focus_section,
    lesson_source=lesson_source,
    locked_lesson=lesson_lock.locked_text,
    locked_instructions=instructions_lock.locked_text,
    locked_extra_context=extra_lock.locked_text,
    preferred_types=types,
    types=available_cloze_types(specialty),
  )
  response = await model.generate(prompt, response_schema=CLOZE_RESPONSE_SCHEMA, temperature=GENERATION_TEMPERATURE)
  raw, salvaged = _guard_output(response.content, locks, label=f"Cloze section {focus_section!r}")
  logger.debug("%s", comparator_audit_line("CLOZE_RAW_RESPONSE", raw))

  try:
    payload = ClozeBatchPayload.model_validate(parse_json_with_fallback(raw))
  except (json.JSONDecodeError, ValidationError) as exc:
    raise GatewayError(f"Cloze response for section '{focus_section}' is invalid: {exc}") from exc

  cards = [
    card.model_copy(
      update={
        "cloze_text": _restore(card.cloze_text, locks),
        "original_quote": _restore(card.original_quote, locks),
        "extra_info": _restore(card.extra_info, locks),
        "related_context": [item.model_copy(update={"quote": _restore(item.quote, locks)}) for item in card.related_context],
        "source_heading": card.source_heading.strip() or focus_section,
        "source_lesson": card.source_lesson.strip() or lesson_source,
      }
    )
    for card in payload.flashcards
  ]

  report = _restore(payload.report, locks) or ""
  if salvaged:
    report = f"{report}\n{SALVAGE_WARNING}".strip()
  logger.info("Cloze section %r produced %d cards mode=%s", focus_section, len(cards), mode)
  return ClozeGenerationResult(cards=cards, report=report, mode=mode, types=types, ignored_types=ignored, salvaged=salvaged)
