"""Lenient JSON parsing helpers for LLM outputs."""

from __future__ import annotations

import json
import re
from typing import Any

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


def strip_json_fences(raw: str) -> str:
  """Remove Markdown code fences wrapped around a JSON payload."""
  return _FENCE_RE.sub("", raw or "").strip()


def parse_json_with_fallback(raw: str) -> Any:
  """Parse JSON with minimal recovery to keep model retries low."""
  # Prefer strict parsing so valid JSON is preserved without mutation.
  try:
    return json.loads(raw)
  except json.JSONDecodeError as exc:
    last_error = exc

  unfenced = strip_json_fences(raw)
  candidates = [unfenced, _extract_outer_object(unfenced), _extract_json_block(unfenced)]

  for candidate in dict.fromkeys(item for item in candidates if item):
    try:
      return json.loads(candidate)
    except json.JSONDecodeError:
      pass

    # Strip trailing commas that commonly appear in model output.
    try:
      return json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate))
    except json.JSONDecodeError:
      continue

  raise last_error


def _extract_outer_object(raw: str) -> str | None:
  """Return the text between the first '{' and the last '}'."""
  start = raw.find("{")
  end = raw.rfind("}")
  if start == -1 or end <= start:
    return None
  return raw[start : end + 1]


def _extract_json_block(raw: str) -> str | None:
  """Locate the first balanced JSON object/array for recovery parsing."""
  start_index: int | None = None
  depth = 0
  in_string = False
  escape = False

  # Scan for a balanced payload while honoring string escapes.
  for index, char in enumerate(raw):
    if start_index is None:
      if char in "{[":
        start_index = index
        depth = 1
      continue

    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue

    if char == '"':
      in_string = True
    elif char in "{[":
      depth += 1
    elif char in "}]":
      depth -= 1
      if depth == 0:
        return raw[start_index : index + 1]

  return None
