"""Restructure raw extracted text into Markdown with comparator integrity checks."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from medcards.ai.comparator_guard import canonicalize_comparator_tokens, comparator_audit_line, lock_comparators, normalize_comparators, verify_all_tokens_present, verify_comparator_tokens_subset
from medcards.ai.errors import ComparatorIntegrityError, GatewayError, RateLimitError
from medcards.ai.json_parser import parse_json_with_fallback
from medcards.ai.prompts import cleaning_failsafe_preamble, cleaning_prompt
from medcards.ai.providers.base import AIModel
from medcards.schema.mcq import CLEANING_RESPONSE_SCHEMA, CleaningResult

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.1
FAILSAFE_TEMPERATURE = 0.0


class _TokenLoss(Exception):
  """Verification failure of one attempt, carried to the retry."""

  def __init__(self, missing: list[str], unknown: list[str], suspicious: list[str]) -> None:
    super().__init__("comparator tokens lost")
    self.missing = missing
    self.unknown = unknown
    self.suspicious = suspicious


def _parse_cleaning(raw: str) -> CleaningResult:
  try:
    payload = parse_json_with_fallback(raw)
  except json.JSONDecodeError as exc:
    raise GatewayError(f"Cleaning response is not valid JSON: {exc}") from exc
  if not isinstance(payload, dict):
    raise GatewayError("Cleaning response is not a JSON object.")
  try:
    return CleaningResult.model_validate(payload)
  except ValidationError as exc:
    raise GatewayError(f"Cleaning response has an invalid shape: {exc.error_count()} error(s)") from exc


async def clean_and_restructure_text(model: AIModel, raw_text: str, *, max_attempts: int = 2) -> CleaningResult:
  """
  Ask the model to restructure ``raw_text`` and return text plus outline.

  Every comparator is locked before the call. An attempt whose output drops or
  corrupts a token is retried with a failsafe instruction at temperature 0;
  after ``max_attempts`` the call fails with ComparatorIntegrityError.
  """
  if not raw_text or not raw_text.strip():
    raise ValueError("Input text is empty.")
  if max_attempts < 1:
    raise ValueError("max_attempts must be at least 1.")

  normalized = normalize_comparators(raw_text)
  lock = lock_comparators(normalized)
  expected = frozenset(lock.tokens)
  base_prompt = cleaning_prompt(lock.locked_text)
  logger.info("%s", comparator_audit_line("CLEAN_IN", normalized))

  last_loss: _TokenLoss | None = None
  for attempt in range(1, max_attempts + 1):
    prompt = base_prompt
    temperature = DEFAULT_TEMPERATURE
    if attempt > 1 and last_loss is not None:
      prompt = cleaning_failsafe_preamble(last_loss.missing) + base_prompt
      temperature = FAILSAFE_TEMPERATURE

    try:
      response = await model.generate(prompt, response_schema=CLEANING_RESPONSE_SCHEMA, temperature=temperature)
      result = _parse_cleaning(response.content)

      cleaned = canonicalize_comparator_tokens(result.cleaned_text)
      outline = canonicalize_comparator_tokens(result.table_of_contents)
      if cleaned.changed or outline.changed:
        logger.info("Canonicalized drifted comparator tokens attempt=%d changes=%d", attempt, cleaned.changed + outline.changed)

      combined = cleaned.text + "\n" + outline.text
      presence = verify_all_tokens_present(combined, lock.tokens)
      subset = verify_comparator_tokens_subset(combined, expected)
      if not presence.ok or not subset.ok:
        raise _TokenLoss(presence.missing, subset.unknown_tokens, subset.suspicious_fragments)
    except _TokenLoss as loss:
      last_loss = loss
      logger.warning("Cleaning attempt %d/%d lost comparator tokens missing=%d unknown=%d suspicious=%d", attempt, max_attempts, len(loss.missing), len(loss.unknown), len(loss.suspicious))
      if attempt == max_attempts:
        corrupt = loss.unknown + loss.suspicious
        raise ComparatorIntegrityError(
          f"Comparator Integrity Error after {max_attempts} attempts. Missing: {', '.join(loss.missing) or 'none'}. Unknown/Corrupt: {', '.join(corrupt) or 'none'}.",
          missing=loss.missing,
          unknown=loss.unknown,
          suspicious=loss.suspicious,
        ) from None
      continue
    except Exception as exc:  # noqa: BLE001
      logger.warning("Cleaning attempt %d/%d failed: %s", attempt, max_attempts, exc)
      if attempt == max_attempts:
        if isinstance(exc, RateLimitError):
          raise
        raise GatewayError(f"Text cleaning failed after {max_attempts} attempts: {exc}") from exc
      # Without verification detail, assume every token is at risk on the retry.
      if last_loss is None:
        last_loss = _TokenLoss(list(lock.tokens), [], [])
      continue

    text = normalize_comparators(lock.unlock(cleaned.text))
    toc = normalize_comparators(lock.unlock(outline.text))
    logger.info("%s", comparator_audit_line("CLEAN_OUT", text))
    return CleaningResult(cleaned_text=text, table_of_contents=toc)

  # Unreachable: the loop either returns or raises on the last attempt.
  raise GatewayError("Text cleaning failed without a result.")
