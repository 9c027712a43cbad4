"""Per-section MCQ generation through the comparator-guarded gateway."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from medcards.ai.comparator_guard import ComparatorLock, canonicalize_comparator_tokens, comparator_audit_line, lock_comparators, normalize_comparators, salvage_comparator_token_like, unlock_all, verify_comparator_tokens_subset
from medcards.ai.errors import GatewayError
from medcards.ai.json_parser import parse_json_with_fallback
from medcards.ai.prompts import mcq_prompt
from medcards.ai.providers.base import AIModel
from medcards.schema.mcq import MCQ_RESPONSE_SCHEMA, GenerationParams, MCQBatchPayload, MCQItem

logger = logging.getLogger(__name__)

GENERATION_TEMPERATURE = 0.2
SALVAGE_WARNING = "[ComparatorGuard Warning] Output contained corrupted/unknown comparator tokens; salvaged to ASCII comparators before post-processing."


@dataclass(frozen=True)
class MCQGenerationResult:
  """Items generated for one section plus the model's coverage report."""

  items: list[MCQItem]
  report: str
  salvaged: int = 0


def _restore(text: str | None, locks: list[ComparatorLock]) -> str | None:
  if text is None:
    return None
  return normalize_comparators(unlock_all(text, locks))


async def generate_mcq_batch(model: AIModel, *, section_title: str, section_content: str, params: GenerationParams) -> MCQGenerationResult:
  """Generate MCQs for one section and return them with comparators restored.

  Unlike cleaning, the model may legitimately omit tokens here, so only invented
  or corrupted tokens are treated as a problem, and they are salvaged rather
  than retried.
  """
  content_lock = lock_comparators(normalize_comparators(section_content))
  instructions_lock = lock_comparators(normalize_comparators(params.custom_instructions), start=len(content_lock.tokens))
  locks = [content_lock, instructions_lock]
  expected = frozenset(content_lock.tokens) | frozenset(instructions_lock.tokens)

  prompt = mcq_prompt(section_title=section_title, locked_content=content_lock.locked_text, locked_instructions=instructions_lock.locked_text, params=params)
  response = await model.generate(prompt, response_schema=MCQ_RESPONSE_SCHEMA, temperature=GENERATION_TEMPERATURE)

  raw = canonicalize_comparator_tokens(response.content).text
  salvaged = 0
  check = verify_comparator_tokens_subset(raw, expected)
  if not check.ok:
    salvage = salvage_comparator_token_like(raw)
    raw = salvage.text
    salvaged = salvage.replaced
    logger.warning("Section %r output had unknown=%s suspicious=%s comparator tokens; salvaged %d", section_title, check.unknown_tokens, check.suspicious_fragments, salvaged)
  logger.debug("%s", comparator_audit_line("GEN_RAW_RESPONSE", raw))

  try:
    payload = MCQBatchPayload.model_validate(parse_json_with_fallback(raw))
  except (json.JSONDecodeError, ValidationError) as exc:
    raise GatewayError(f"MCQ response for section '{section_title}' is invalid: {exc}") from exc

  items: list[MCQItem] = []
  for card in payload.cards:
    restored = card.model_copy(
      update={
        "front": _restore(card.front, locks),
        "explanation": _restore(card.explanation, locks),
        "original_quote": _restore(card.original_quote, locks),
        "hint": _restore(card.hint, locks),
        "source_heading": card.source_heading.strip() or section_title,
      }
    )
    items.append(restored)

  report = _restore(payload.report, locks) or ""
  if salvaged:
    report = f"{report}\n{SALVAGE_WARNING}".strip()
  logger.info("Section %r produced %d items", section_title, len(items))
  return MCQGenerationResult(items=items, report=report, salvaged=salvaged)
