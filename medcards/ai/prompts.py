"""Prompt templates for cleaning, MCQ and cloze generation, and essay grading."""

from __future__ import annotations

from collections.abc import Sequence

from medcards.schema.mcq import EssayMode, EssayTurn, GenerationParams

COMPARATOR_TOKEN_INSTRUCTION = """
####<COMPARATOR TOKENS>
- The input may contain tokens shaped like `@@CMP_*_####@@`.
- They are comparison operators (>, <, >=, <=) locked on purpose.
- Copy every token exactly as written. Never change, delete, split or add spaces inside them.
####"""

EXTERNAL_SOURCES_GUIDE = """
####<EXTERNAL SOURCES>
You may add knowledge from outside the document to build distractors or vignettes.
Whenever an item relies on it, start the explanation line with "External references:" and name the source.
The originalQuote must still be copied verbatim from the document.
####"""

MAX_FAILSAFE_TOKENS = 5


def cleaning_prompt(locked_text: str) -> str:
  """Build the restructuring prompt for raw extracted text."""
  return f"""
####<ROLE>
You are a document structuring engine for medical lecture notes.
1. Restore the raw text (often broken by PDF/Word extraction) into clean Markdown.
2. Build a Markdown table of contents from the headings of the restored text.
Return ONLY a JSON object with the string fields `cleanedText` and `tableOfContents`.
{COMPARATOR_TOKEN_INSTRUCTION}

####<RULES>
- Keep the order and content of every idea. Do not summarize, drop or invent information.
- Join lines broken mid-sentence; keep breaks before headings and list items.
- Map headings to `##`, `###` and `####`. Rebuild flattened tables only when certain.
- Never change numbers, drug names, disease names or formulas. Keep LaTeX blocks intact.
- This is specialist medical material; do not censor anatomy or clinical content.
- Table of contents: one Markdown list item per heading, indented by level.
####

RAW TEXT:
```
{locked_text}
```
"""


def cleaning_failsafe_preamble(missing_tokens: Sequence[str]) -> str:
  """Stricter preamble for the retry after tokens were lost."""
  sample = ", ".join(list(missing_tokens)[:MAX_FAILSAFE_TOKENS])
  return f"""
####<FAILSAFE TOKEN INSTRUCTIONS - RETRY>
The previous attempt lost comparator tokens. This time:
1. `cleanedText` must contain 100% of the input content; change Markdown formatting only.
2. Every `@@CMP_*_####@@` token in the input must appear unchanged in `cleanedText`.
3. Check your output before returning it. Tokens missing last time: {sample or "(unknown)"}.
####
"""


def mcq_prompt(*, section_title: str, locked_content: str, locked_instructions: str, params: GenerationParams) -> str:
  """Build the per-section MCQ generation prompt."""
  weights = params.difficulty
  options = params.options
  mode_line = "clinical vignette questions (short patient scenarios)" if params.mode == "clinical" else "theory questions that test recall and understanding"
  context_line = (
    "The content may contain a RELATED_CONTEXT_FROM_SAME_LESSON block; use it only to enrich vignettes or distractors, quotes must come from PRIMARY_SECTION."
    if options.allow_cross_section_context
    else "Use only the given section."
  )
  external = EXTERNAL_SOURCES_GUIDE if options.allow_external_sources else "\nDo not use knowledge from outside the document.\n"
  instructions = f"\nADDITIONAL INSTRUCTIONS:\n{locked_instructions}\n" if locked_instructions.strip() else ""

  return f"""
####<ROLE>
You write single-best-answer multiple-choice questions for {params.specialty} exam preparation.
{COMPARATOR_TOKEN_INSTRUCTION}

####<TASK>
- Write {mode_line} from the section "{section_title}".
- Difficulty mix (percent): easy {weights.easy}, medium {weights.medium}, hard {weights.hard}, very hard {weights.very_hard}.
- Each item: `front` (stem with options A-D), `correctOption` (one of A, B, C, D), `explanation`, `originalQuote` (verbatim span from the section that proves the answer), `sourceHeading` (exactly "{section_title}"), `questionCategory`, `difficultyTag`, `hint`.
- {context_line}
{external}{instructions}
Return ONLY a JSON object with `cards` (list of items) and `report` (short summary of what was covered and skipped).
####

SECTION CONTENT:
```
{locked_content}
```
"""


_ESSAY_TASKS: dict[str, str] = {
  "check": "Review the answer written so far against the reference section. Point out errors and omissions briefly, without giving the full answer.",
  "hint": "Give one short hint toward the next missing idea, without revealing the answer text.",
  "hint++": "Give a detailed hint: the outline of the missing parts with key terms, still without copying the reference text.",
  "grade": (
    "Grade the final answer against the reference section. Put the full report (expected outline, item-by-item match, score out of 10, feedback) in `gradingReport`. "
    "Set `srsRating` from the score: 3 if >= 9, 2 if >= 7, 1 if >= 5, else 0. Return ONLY that JSON object."
  ),
}


def essay_prompt(*, mode: EssayMode, locked_document: str, section: str, locked_answer: str, history: Sequence[EssayTurn]) -> str:
  """Build the essay tutor prompt for one interaction mode."""
  transcript = "\n\n".join(f"{'Student' if turn.role == 'user' else 'Tutor'}:\n{turn.text}" for turn in history)
  return f"""
####<ROLE>
You are a medical professor coaching a student for written residency exams.
{COMPARATOR_TOKEN_INSTRUCTION}

####<GROUND TRUTH>
<DOCUMENT>
{locked_document}
</DOCUMENT>

Question section: "{section}"

####<CONVERSATION SO FAR>
{transcript or "(none)"}

####<STUDENT ANSWER>
{locked_answer}

####<TASK: {mode}>
{_ESSAY_TASKS[mode]}
"""


CLOZE_TYPE_GUIDE: dict[str, str] = {
  "basic": "one self-contained fact (a definition, a number, a drug, a term) per card.",
  "cluster": "a short list of 2-4 items that must be recalled together, such as a triad or a set of criteria.",
  "overlapping": "an ordered sequence (steps, stages); each card hides one step and shows its neighbours.",
  "hierarchical": "nested classifications; a parent card for the overview and child cards for each branch.",
  "bidirectional": "a true one-to-one pair the text calls specific or unique; one card per direction.",
  "disambiguation": "a confusion set of look-alike entities; each card hides the feature that tells them apart.",
  "pedi_mindmap": "pediatrics only: a mind-map of age-dependent milestones or values, one branch per card.",
}


def _cloze_catalog(types: Sequence[str]) -> str:
  return "\n".join(f"- {cloze_type}: {CLOZE_TYPE_GUIDE[cloze_type]}" for cloze_type in types)


def cloze_recommendation_prompt(*, specialty: str, focus_section: str, locked_text: str, locked_instructions: str, types: Sequence[str]) -> str:
  """Build the read-only advisor prompt that recommends cloze types for a text."""
  return f"""
####<ROLE>
You advise a {specialty} student which cloze card types fit a cleaned lesson. Do not write any cards.
{COMPARATOR_TOKEN_INSTRUCTION}

####<CATALOG>
Recommend only these ids:
{_cloze_catalog(types)}
####

####<RULES>
- Use only the cleaned text. When the signal is weak, recommend AUTO or basic/hierarchical.
- For disambiguation, name each confusion set and the features that separate its members.
- Answer in short Markdown: recommended ids with a one-line reason and a quote for each, then ids to avoid.
####

Focus section: "{focus_section}"
Additional instructions: {locked_instructions.strip() or "(none)"}

CLEANED TEXT:
```
{locked_text}
```
"""


def cloze_prompt(
  *,
  specialty: str,
  focus_section: str,
  lesson_source: str,
  locked_lesson: str,
  locked_instructions: str,
  locked_extra_context: str,
  preferred_types: Sequence[str],
  types: Sequence[str],
) -> str:
  """Build the cloze flashcard generation prompt."""
  if preferred_types:
    mode_line = f"EXCLUSIVE: create only these types: {', '.join(preferred_types)}."
  else:
    mode_line = "AUTO: choose the best type for each fact from the catalog."
  instructions = f"\nADDITIONAL INSTRUCTIONS:\n{locked_instructions}\n" if locked_instructions.strip() else ""
  extra = f"\nDISAMBIGUATION CONTEXT (for contrast only, never quote it):\n```\n{locked_extra_context}\n```\n" if locked_extra_context.strip() else ""

  return f"""
####<ROLE>
You write cloze flashcards for {specialty} spaced-repetition review.
{COMPARATOR_TOKEN_INSTRUCTION}

####<CATALOG>
{_cloze_catalog(types)}
####

####<TASK>
- Mode {mode_line}
- Cover the section "{focus_section}" of the lesson "{lesson_source}".
- Each card: `clozeText` with deletions written as {{{{c1::answer::hint}}}}, `originalQuote` (verbatim span that proves the card), `sourceHeading`, `sourceLesson` (exactly "{lesson_source}"), `questionCategory` (the cloze type id), optional `extraInfo`, `relatedContext` and, for hierarchical cards, `cardId`/`parentId`.
- Keep one idea per deletion. Never hide a comparator token on its own; hide the value with it.
{instructions}{extra}
Return ONLY a JSON object with `flashcards` (list of cards) and `report` (what was covered and which types were used).
####

LESSON TEXT:
```
{locked_lesson}
```
"""
