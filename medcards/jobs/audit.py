"""Deterministic audit pass over the items of a finished batch."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from medcards.ai.comparator_guard import normalize_comparators
from medcards.jobs.models import Job
from medcards.schema.mcq import AuditedMCQ, AuditStatus, MCQItem

logger = logging.getLogger(__name__)

VALID_OPTIONS: frozenset[str] = frozenset({"A", "B", "C", "D"})
EXTERNAL_REFERENCE_MARKERS: tuple[str, ...] = ("external reference", "nguồn ngoài", "tài liệu ngoài")
DEFAULT_MIN_QUOTE_CHARS = 10

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_RE = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
_SEVERITY: dict[AuditStatus, int] = {"pass": 0, "warning": 1, "fail": 2}


@dataclass(frozen=True)
class AuditResult:
  """Annotated items plus summary counts for one batch."""

  items: list[AuditedMCQ]
  failed_jobs: list[Job] = field(default_factory=list)
  salvaged_jobs: list[Job] = field(default_factory=list)

  @property
  def total(self) -> int:
    return len(self.items)

  @property
  def passed(self) -> int:
    return sum(1 for item in self.items if item.audit_status == "pass")

  @property
  def failed(self) -> int:
    return sum(1 for item in self.items if item.audit_status == "fail")

  @property
  def warnings(self) -> int:
    return sum(1 for item in self.items if item.audit_status == "warning")

  @property
  def report(self) -> str:
    lines = ["AUDIT SUMMARY", f"- Total: {self.total}", f"- Passed: {self.passed}", f"- Failed/Warning: {self.failed + self.warnings} ({self.failed} failed, {self.warnings} warning)"]
    if self.failed_jobs:
      lines.append(f"- Failed sections: {len(self.failed_jobs)}")
      lines.extend(f"  - {job.section_title}: {job.error or 'unknown error'}" for job in self.failed_jobs)
    if self.salvaged_jobs:
      lines.append(f"- Comparator salvage: {len(self.salvaged_jobs)} section(s), verify thresholds manually")
      lines.extend(f"  - {job.section_title}: {job.salvaged} token(s) salvaged" for job in self.salvaged_jobs)
    lines.append("")
    lines.append("Code-based verification completed. Warnings may indicate valid external source usage.")
    return "\n".join(lines)


def normalize_for_match(text: str) -> str:
  """Fold text for lenient verbatim matching."""
  folded = _WHITESPACE_RE.sub(" ", normalize_comparators(text or "")).lower()
  return _PUNCTUATION_RE.sub("", folded)


def _worst(current: AuditStatus, candidate: AuditStatus) -> AuditStatus:
  return candidate if _SEVERITY[candidate] > _SEVERITY[current] else current


def _source_for(item: MCQItem, jobs: Sequence[Job]) -> str:
  for job in jobs:
    if job.section_title == item.source_heading:
      return job.section_content

  # No title match: search every section of the batch.
  logger.info("Audit fallback to all sections for item with heading %r", item.source_heading)
  return "\n".join(job.section_content for job in jobs)


def audit_item(item: MCQItem, jobs: Sequence[Job], *, min_quote_chars: int = DEFAULT_MIN_QUOTE_CHARS) -> AuditedMCQ:
  """Classify one item as pass, warning or fail with the notes that explain why."""
  status: AuditStatus = "pass"
  notes: list[str] = []

  quote = item.original_quote or ""
  source = normalize_for_match(_source_for(item, jobs))
  if normalize_for_match(quote) not in source:
    explanation = (item.explanation or "").lower()
    if any(marker in explanation for marker in EXTERNAL_REFERENCE_MARKERS):
      status = _worst(status, "warning")
      notes.append("External source citation detected. Manual verification recommended.")
    else:
      status = _worst(status, "fail")
      notes.append("Quote not found verbatim in source.")

  if item.correct_option.strip().upper() not in VALID_OPTIONS:
    status = _worst(status, "fail")
    notes.append("Invalid correct option format.")

  if len(quote) < min_quote_chars:
    status = _worst(status, "warning")
    notes.append("Quote too short.")

  data = item.model_dump()
  data.update(audit_status=status, audit_notes=notes)
  return AuditedMCQ.model_validate(data)


def audit_batch(jobs: Sequence[Job], *, min_quote_chars: int = DEFAULT_MIN_QUOTE_CHARS) -> AuditResult:
  """Flatten completed jobs in order and audit every item against its source."""
  failed_jobs = [job for job in jobs if job.status == "failed"]
  salvaged_jobs = [job for job in jobs if job.status == "completed" and job.salvaged]
  items: list[MCQItem] = [item for job in jobs if job.status == "completed" for item in job.result]

  if not items:
    return AuditResult(items=[], failed_jobs=failed_jobs, salvaged_jobs=salvaged_jobs)

  audited = [audit_item(item, jobs, min_quote_chars=min_quote_chars) for item in items]
  result = AuditResult(items=audited, failed_jobs=failed_jobs, salvaged_jobs=salvaged_jobs)
  logger.info("Audit finished total=%d passed=%d failed=%d warnings=%d", result.total, result.passed, result.failed, result.warnings)
  return result
