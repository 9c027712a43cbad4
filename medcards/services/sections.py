"""Split cleaned Markdown lessons into per-section job payloads."""

from __future__ import annotations

import re
from collections.abc import Collection
from dataclasses import dataclass

from medcards.jobs.models import JobSection

HEADING_RE = re.compile(r"^(#{2,4})\s+(.+)$")
DEFAULT_MAX_CONTEXT_CHARS = 35000
TRUNCATION_MARKER = "\n\n...[CONTEXT TRUNCATED FOR SAFETY]..."


@dataclass(frozen=True)
class ParsedSection:
  """A heading of the cleaned document with its position in the outline."""

  id: int
  title: str
  level: int
  start_line: int
  path: str
  parent_id: int | None


def parse_sections(cleaned_markdown: str) -> list[ParsedSection]:
  """Find level 2-4 headings and build ``Parent > Child`` paths."""
  sections: list[ParsedSection] = []
  stack: list[ParsedSection] = []

  for index, line in enumerate((cleaned_markdown or "").split("\n")):
    match = HEADING_RE.match(line)
    if match is None:
      continue
    level = len(match.group(1))
    title = match.group(2).strip()

    # Pop until the top of the stack is a strictly shallower heading.
    while stack and stack[-1].level >= level:
      stack.pop()
    parent = stack[-1] if stack else None
    path = " > ".join([*(item.title for item in stack), title])

    section = ParsedSection(id=len(sections), title=title, level=level, start_line=index, path=path, parent_id=parent.id if parent else None)
    sections.append(section)
    stack.append(section)

  return sections


def _lesson_context(cleaned_markdown: str, max_context_chars: int) -> str:
  if len(cleaned_markdown) > max_context_chars:
    return cleaned_markdown[:max_context_chars] + TRUNCATION_MARKER
  return cleaned_markdown


def _pack_with_context(primary: str, context: str) -> str:
  return f"\n## PRIMARY_SECTION (MUST FOCUS)\n{primary}\n\n---\n## RELATED_CONTEXT_FROM_SAME_LESSON (OPTIONAL, FOR COMPLEXITY/VIGNETTE)\n{context}\n"


def build_job_sections(cleaned_markdown: str, *, selected_ids: Collection[int] | None = None, allow_cross_section_context: bool = False, max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS) -> list[JobSection]:
  """Slice each selected heading into a job payload titled by its heading path.

  A section runs until the next heading of the same or a shallower level, so a
  parent section includes its children. Sections whose body is barely longer
  than the heading are skipped.
  """
  lines = (cleaned_markdown or "").split("\n")
  parsed = parse_sections(cleaned_markdown)
  context = _lesson_context(cleaned_markdown, max_context_chars) if allow_cross_section_context else ""

  jobs: list[JobSection] = []
  for position, section in enumerate(parsed):
    if selected_ids is not None and section.id not in selected_ids:
      continue

    end_line = len(lines)
    for following in parsed[position + 1 :]:
      if following.level <= section.level:
        end_line = following.start_line
        break

    primary = "\n".join(lines[section.start_line : end_line]).strip()
    if len(primary) <= len(section.title) + 5:
      continue

    content = _pack_with_context(primary, context) if allow_cross_section_context else primary
    jobs.append(JobSection(title=section.path, content=content))

  return jobs
