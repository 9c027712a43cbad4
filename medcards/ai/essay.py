"""Essay tutor: check, hint and grade written answers against a reference section."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence

from pydantic import ValidationError

from medcards.ai.comparator_guard import TOKEN_PATTERN, extract_comparator_tokens, lock_comparators, normalize_comparators, unlock_all
from medcards.ai.errors import ComparatorIntegrityError, GatewayError
from medcards.ai.json_parser import parse_json_with_fallback
from medcards.ai.prompts import essay_prompt
from medcards.ai.providers.base import AIModel
from medcards.schema.mcq import ESSAY_GRADE_RESPONSE_SCHEMA, EssayGradeResult, EssayMode, EssayTurn

logger = logging.getLogger(__name__)

# Wider than the suspicious-fragment check: also catches over-long sequence numbers.
_FRAGMENT_RE = re.compile(r"@{1,3}CMP_(?:GE|LE|GT|LT)_[0-9]{1,6}@{0,3}")
_EXACT_TOKEN_RE = re.compile(f"^{TOKEN_PATTERN}$")


async def respond_to_essay(model: AIModel, *, mode: EssayMode, document_text: str, section: str, user_answer: str, history: Sequence[EssayTurn] = ()) -> str | EssayGradeResult:
  """Return tutor text for check/hint modes, or a structured grade for ``grade`` mode."""
  document_lock = lock_comparators(normalize_comparators(document_text))
  answer_lock = lock_comparators(normalize_comparators(user_answer), start=len(document_lock.tokens))
  locks = [document_lock, answer_lock]
  expected = set(document_lock.tokens) | set(answer_lock.tokens)

  grading = mode == "grade"
  prompt = essay_prompt(mode=mode, locked_document=document_lock.locked_text, section=section, locked_answer=answer_lock.locked_text, history=history)
  response = await model.generate(prompt, response_schema=ESSAY_GRADE_RESPONSE_SCHEMA if grading else None, temperature=0.3 if grading else 0.1)
  raw = response.content

  # Output-only check: the tutor need not echo tokens, but must not invent or mangle them.
  unknown = [token for token in extract_comparator_tokens(raw) if token not in expected]
  corrupted = [fragment for fragment in _FRAGMENT_RE.findall(raw) if not _EXACT_TOKEN_RE.match(fragment)]
  if unknown or corrupted:
    logger.warning("Essay %s response failed comparator check unknown=%s corrupted=%s", mode, unknown, corrupted)
    raise ComparatorIntegrityError(
      f"Comparator Integrity Error (essay grader): unknown tokens: {', '.join(unknown) or '(none)'}; corrupted fragments: {', '.join(corrupted) or '(none)'}",
      unknown=unknown,
      suspicious=corrupted,
    )

  if not grading:
    return normalize_comparators(unlock_all(raw, locks))

  try:
    result = EssayGradeResult.model_validate(parse_json_with_fallback(raw))
  except (json.JSONDecodeError, ValidationError) as exc:
    raise GatewayError(f"Essay grading response is invalid: {exc}") from exc
  return result.model_copy(update={"grading_report": normalize_comparators(unlock_all(result.grading_report, locks))})
