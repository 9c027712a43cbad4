"""Comparator locking and verification for text that passes through an LLM.

Numeric thresholds such as ``HbA1c >= 6.5`` are easy for a model to rewrite
silently (dropping the ``=`` or flipping the sign). Before a prompt is sent,
every comparator is swapped for an opaque ``@@CMP_<KIND>_####@@`` token; the
response is then canonicalized, verified and unlocked back to ASCII operators.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

TOKEN_PATTERN = r"@@CMP_(?:GE|LE|GT|LT)_[0-9]{4}@@"
_TOKEN_RE = re.compile(TOKEN_PATTERN)
_SUSPICIOUS_FRAGMENT_RE = re.compile(r"@?@CMP_[A-Z0-9_]{1,10}@?@")
_SALVAGE_RE = re.compile(r"@?@CMP_(GE|LE|GT|LT)[A-Z0-9_]*@?@")
_DRIFTED_TOKEN_RE = re.compile(r"@+\s*CMP[\s_]*?(GE|LE|GT|LT)[\s_]*?([0-9]{4})\s*@+")

_SPACED_GE_RE = re.compile(r">\s*=")
_SPACED_LE_RE = re.compile(r"<\s*=")
_CORRUPT_GE_RE = re.compile(r">\s*[/∕／]\s*(?=[0-9])")
_CORRUPT_LE_RE = re.compile(r"<\s*[/∕／]\s*(?=[0-9])")

_COMPOUND_RE = re.compile(r">=|<=")
# Bare operators only count when a number follows and the operator is not glued to a word, a token or a decimal.
_BARE_RE = re.compile(r"(^|[^A-Za-z0-9@.%])(\s*)([<>])(\s*)(?=[0-9])", re.MULTILINE)
_HTML_TAG_RE = re.compile(r"</?[A-Za-z][^>]*>")
_ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")
_PUA_RE = re.compile(r"[\uE000-\uF8FF]")
_SPACING_RE = re.compile(r"\s*(>=|<=|>|<)\s*")

_KIND_BY_OPERATOR = {">=": "GE", "<=": "LE", ">": "GT", "<": "LT"}
_OPERATOR_BY_KIND = {kind: operator for operator, kind in _KIND_BY_OPERATOR.items()}

# PUA glyphs emitted by some PDF fonts, repaired only in front of a number.
_PDF_GLYPH_REPAIRS: tuple[tuple[str, str, str], ...] = (
  ("\ue098", ">", ">"),
  ("\ue09a", ">=", ">="),
  ("\ue081\\s*\ue099", "<=", "<="),
)
MAX_GLYPH_SAMPLES = 5


@dataclass(frozen=True)
class ComparatorLock:
  """Result of locking comparators in one piece of text."""

  locked_text: str
  tokens: list[str] = field(default_factory=list)
  replacements: dict[str, str] = field(default_factory=dict)

  def unlock(self, text: str) -> str:
    """Swap every token created by this lock back to its operator."""
    if not text:
      return ""
    unlocked = text
    # Longest first so a token can never be replaced inside a longer one.
    for token in sorted(self.replacements, key=len, reverse=True):
      unlocked = unlocked.replace(token, self.replacements[token])
    return unlocked


@dataclass(frozen=True)
class TokenPresenceCheck:
  """Outcome of the strict all-tokens-present check."""

  ok: bool
  missing: list[str]


@dataclass(frozen=True)
class TokenSubsetCheck:
  """Outcome of the subset check used when the model may drop tokens."""

  ok: bool
  used_tokens: list[str]
  unknown_tokens: list[str]
  suspicious_fragments: list[str]


@dataclass(frozen=True)
class CanonicalizedText:
  text: str
  changed: int


@dataclass(frozen=True)
class SalvagedText:
  text: str
  replaced: int


@dataclass(frozen=True)
class GlyphRepair:
  label: str
  count: int


@dataclass(frozen=True)
class UnknownGlyph:
  """A Private Use Area character left in the text after repair."""

  char: str
  code: str
  count: int
  samples: list[str]


@dataclass(frozen=True)
class PdfRepairReport:
  repaired_text: str
  repairs: list[GlyphRepair]
  unknown_glyphs: list[UnknownGlyph]


def normalize_comparators(text: str) -> str:
  """Canonicalize comparator spellings to ASCII ``>``, ``<``, ``>=`` and ``<=``."""
  if not text:
    return ""
  normalized = text.replace("≥", ">=").replace("≤", "<=")
  normalized = _SPACED_GE_RE.sub(">=", normalized)
  normalized = _SPACED_LE_RE.sub("<=", normalized)
  # OCR often turns ">=" into ">/"; heal only in front of a digit so markup stays untouched.
  normalized = _CORRUPT_GE_RE.sub(">=", normalized)
  return _CORRUPT_LE_RE.sub("<=", normalized)


def lock_comparators(text: str, *, start: int = 0) -> ComparatorLock:
  """Replace comparators with unique, sequence-numbered tokens.

  Numbering begins after ``start`` so several locks of one prompt never share a
  token; pass the token count of the previous lock.

  ``>=``/``<=`` are locked everywhere first. Bare ``>``/``<`` are locked in a
  second pass over the already tokenized text, and only when a digit follows.
  The order matters: the second pass must never see the ``>`` of a ``>=``.
  """
  if not text:
    return ComparatorLock(locked_text="")

  replacements: dict[str, str] = {}
  counter = start

  def _issue(operator: str) -> str:
    nonlocal counter
    counter += 1
    token = f"@@CMP_{_KIND_BY_OPERATOR[operator]}_{counter:04d}@@"
    replacements[token] = operator
    return token

  locked = _COMPOUND_RE.sub(lambda match: _issue(match.group(0)), text)
  locked = _BARE_RE.sub(lambda match: f"{match.group(1)}{match.group(2)}{_issue(match.group(3))}{match.group(4)}", locked)
  return ComparatorLock(locked_text=locked, tokens=list(replacements), replacements=replacements)


def unlock_all(text: str, locks: Iterable[ComparatorLock]) -> str:
  """Unlock text that may contain tokens from several lock sets."""
  unlocked = text or ""
  for lock in locks:
    unlocked = lock.unlock(unlocked)
  return unlocked


def extract_comparator_tokens(text: str) -> list[str]:
  """Return the well-formed tokens found in text, first occurrence order."""
  if not text:
    return []
  return list(dict.fromkeys(_TOKEN_RE.findall(text)))


def verify_all_tokens_present(output: str, tokens: Iterable[str]) -> TokenPresenceCheck:
  """Fail closed when any token generated at lock time is missing from the output."""
  missing = [token for token in tokens if token not in (output or "")]
  return TokenPresenceCheck(ok=not missing, missing=missing)


def verify_comparator_tokens_subset(output: str, expected_tokens: set[str] | frozenset[str]) -> TokenSubsetCheck:
  """Allow omitted tokens but reject invented tokens and corrupted look-alikes."""
  used_tokens = extract_comparator_tokens(output)
  unknown_tokens = [token for token in used_tokens if token not in expected_tokens]
  fragments = _SUSPICIOUS_FRAGMENT_RE.findall(output or "")
  suspicious_fragments = [fragment for fragment in fragments if _TOKEN_RE.search(fragment) is None]
  ok = not unknown_tokens and not suspicious_fragments
  return TokenSubsetCheck(ok=ok, used_tokens=used_tokens, unknown_tokens=unknown_tokens, suspicious_fragments=suspicious_fragments)


def canonicalize_comparator_tokens(text: str) -> CanonicalizedText:
  """Repair token drift (full-width @, zero-width spaces, inner spacing) without changing token identity."""
  if not text:
    return CanonicalizedText(text="", changed=0)

  changed = 0
  canonical = text.replace("＠", "@")
  if canonical != text:
    changed += 1

  stripped = _ZERO_WIDTH_RE.sub("", canonical)
  if stripped != canonical:
    changed += 1
  canonical = stripped

  def _rebuild(match: re.Match[str]) -> str:
    nonlocal changed
    token = f"@@CMP_{match.group(1)}_{match.group(2)}@@"
    if match.group(0) != token:
      changed += 1
    return token

  canonical = _DRIFTED_TOKEN_RE.sub(_rebuild, canonical)
  return CanonicalizedText(text=canonical, changed=changed)


def salvage_comparator_token_like(text: str) -> SalvagedText:
  """Last resort: turn any token-like fragment into its best-guess ASCII operator."""
  if not text or "CMP_" not in text:
    return SalvagedText(text=text, replaced=0)

  replaced = 0

  def _to_operator(match: re.Match[str]) -> str:
    nonlocal replaced
    replaced += 1
    return _OPERATOR_BY_KIND[match.group(1)]

  salvaged = _SALVAGE_RE.sub(_to_operator, text)
  return SalvagedText(text=salvaged, replaced=replaced)


def comparator_audit_line(label: str, text: str) -> str:
  """Summarize comparator counts in one log line."""
  raw = text or ""
  ge = raw.count(">=")
  le = raw.count("<=")
  counts = [
    (">=", ge),
    ("<=", le),
    ("≥", raw.count("≥")),
    ("≤", raw.count("≤")),
    (">", raw.count(">") - ge),
    ("<", raw.count("<") - le),
    (">/", len(_CORRUPT_GE_RE.findall(raw))),
    ("</", len(_CORRUPT_LE_RE.findall(raw))),
    ("htmlTags", len(_HTML_TAG_RE.findall(raw))),
  ]
  rendered = " ".join(f"{name}:{count}" for name, count in counts)
  return f"[ComparatorAudit:{label}] {rendered}"


def repair_pdf_extraction_artifacts(text: str) -> PdfRepairReport:
  """Repair comparator glyphs mangled into the Private Use Area by PDF extraction."""
  if not text:
    return PdfRepairReport(repaired_text="", repairs=[], unknown_glyphs=[])

  repaired = text
  repairs: list[GlyphRepair] = []
  for pattern, replacement, label in _PDF_GLYPH_REPAIRS:
    repaired, count = re.subn(pattern + r"(?=\s*[-+]?[0-9])", replacement, repaired)
    if count > 0:
      repairs.append(GlyphRepair(label=label, count=count))

  # Collect whatever PUA glyphs are left so the caller can warn about them.
  counts: dict[str, int] = {}
  samples: dict[str, list[str]] = {}
  for match in _PUA_RE.finditer(repaired):
    char = match.group(0)
    counts[char] = counts.get(char, 0) + 1
    bucket = samples.setdefault(char, [])
    if len(bucket) < MAX_GLYPH_SAMPLES:
      start = max(0, match.start() - 20)
      bucket.append(repaired[start : match.start() + 21].replace("\n", " "))
  unknown = [UnknownGlyph(char=char, code=f"U+{ord(char):X}", count=count, samples=samples[char]) for char, count in counts.items()]

  repaired = _SPACING_RE.sub(r" \1 ", repaired)
  return PdfRepairReport(repaired_text=repaired.strip(), repairs=repairs, unknown_glyphs=unknown)
