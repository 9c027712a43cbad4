from __future__ import annotations

import pytest

from medcards.ai.comparator_guard import (
  canonicalize_comparator_tokens,
  comparator_audit_line,
  extract_comparator_tokens,
  lock_comparators,
  normalize_comparators,
  repair_pdf_extraction_artifacts,
  salvage_comparator_token_like,
  unlock_all,
  verify_all_tokens_present,
  verify_comparator_tokens_subset,
)

SAMPLE = "HbA1c ≥ 6.5% or fasting glucose >= 7 mmol/L; eGFR <= 30, BP > 140/90, age < 18, and a > b stays prose."


def test_normalize_maps_unicode_spaced_and_ocr_forms() -> None:
  assert normalize_comparators("x ≥ 5 and y ≤ 3") == "x >= 5 and y <= 3"
  assert normalize_comparators("Na > = 135") == "Na >= 135"
  assert normalize_comparators("K < = 5.5") == "K <= 5.5"
  assert normalize_comparators("SpO2 >/ 92") == "SpO2 >=92"
  # Slashes not followed by a number are markup, not comparators.
  assert normalize_comparators("</div>") == "</div>"
  assert normalize_comparators("") == ""


@pytest.mark.parametrize("text", [SAMPLE, "x ≥ 5", "SpO2 >/ 92 and K < = 5", "<b>bold</b> > 3", ""])
def test_normalize_is_idempotent(text: str) -> None:
  once = normalize_comparators(text)
  assert normalize_comparators(once) == once


def test_lock_round_trip_restores_normalized_text() -> None:
  normalized = normalize_comparators(SAMPLE)
  lock = lock_comparators(normalized)
  assert ">=" not in lock.locked_text
  assert "<=" not in lock.locked_text
  assert lock.unlock(lock.locked_text) == normalized


def test_lock_tokens_are_unique_and_one_per_replacement() -> None:
  lock = lock_comparators("a >= 1, b >= 2, c <= 3, d > 4, e < 5")
  assert lock.tokens == ["@@CMP_GE_0001@@", "@@CMP_GE_0002@@", "@@CMP_LE_0003@@", "@@CMP_GT_0004@@", "@@CMP_LT_0005@@"]
  assert len(set(lock.tokens)) == len(lock.tokens)
  assert lock.locked_text == "a @@CMP_GE_0001@@ 1, b @@CMP_GE_0002@@ 2, c @@CMP_LE_0003@@ 3, d @@CMP_GT_0004@@ 4, e @@CMP_LT_0005@@ 5"


def test_lock_numbering_continues_after_start_offset() -> None:
  first = lock_comparators("eGFR < 30")
  second = lock_comparators("eGFR < 45", start=len(first.tokens))

  assert second.tokens == ["@@CMP_LT_0002@@"]
  assert set(first.tokens).isdisjoint(second.tokens)
  assert unlock_all(f"{first.locked_text} {second.locked_text}", [first, second]) == "eGFR < 30 eGFR < 45"


def test_bare_operators_only_lock_before_a_digit() -> None:
  assert lock_comparators("a > b").tokens == []
  assert lock_comparators("a > b").locked_text == "a > b"

  locked = lock_comparators("a > 5")
  assert locked.tokens == ["@@CMP_GT_0001@@"]
  assert locked.locked_text == "a @@CMP_GT_0001@@ 5"


def test_compound_operators_are_locked_before_bare_ones() -> None:
  lock = lock_comparators(">= 5 and > 6")
  assert lock.tokens == ["@@CMP_GE_0001@@", "@@CMP_GT_0002@@"]
  assert lock.replacements["@@CMP_GE_0001@@"] == ">="


def test_lock_of_empty_text_returns_no_tokens() -> None:
  lock = lock_comparators("")
  assert lock.locked_text == ""
  assert lock.tokens == []
  assert lock.unlock("") == ""


def test_unlock_ignores_unknown_content_and_missing_tokens() -> None:
  lock = lock_comparators("x >= 1 and y <= 2")
  partial = "only @@CMP_LE_0002@@ 2 kept, plus @@CMP_GT_0099@@ from elsewhere"
  assert lock.unlock(partial) == "only <= 2 kept, plus @@CMP_GT_0099@@ from elsewhere"


def test_unlock_all_applies_every_lock() -> None:
  first = lock_comparators("a >= 1")
  second = lock_comparators("b < 2")
  assert unlock_all("@@CMP_GE_0001@@ / @@CMP_LT_0001@@", [first, second]) == ">= / <"


def test_verify_all_tokens_present_reports_dropped_token() -> None:
  lock = lock_comparators("x >= 1 and y <= 2")
  output = lock.locked_text.replace("@@CMP_LE_0002@@", "<")

  check = verify_all_tokens_present(output, lock.tokens)

  assert check.ok is False
  assert check.missing == ["@@CMP_LE_0002@@"]
  assert verify_all_tokens_present(lock.locked_text, lock.tokens).ok is True


def test_verify_subset_allows_omission_but_reports_invention() -> None:
  lock = lock_comparators("x >= 1 and y <= 2")
  expected = set(lock.tokens)

  assert verify_comparator_tokens_subset("only @@CMP_GE_0001@@ 1", expected).ok is True

  check = verify_comparator_tokens_subset("@@CMP_GE_0001@@ and @@CMP_GT_0007@@", expected)
  assert check.ok is False
  assert check.used_tokens == ["@@CMP_GE_0001@@", "@@CMP_GT_0007@@"]
  assert check.unknown_tokens == ["@@CMP_GT_0007@@"]


def test_verify_subset_flags_corrupted_look_alikes() -> None:
  check = verify_comparator_tokens_subset("value @@CMP_GE_12@@ and @CMP_LE_0001@", {"@@CMP_GE_0012@@"})
  assert check.ok is False
  assert check.unknown_tokens == []
  assert "@@CMP_GE_12@@" in check.suspicious_fragments
  assert "@CMP_LE_0001@" in check.suspicious_fragments


def test_canonicalize_repairs_fullwidth_zero_width_and_spacing() -> None:
  assert canonicalize_comparator_tokens("\uff20\uff20CMP_GE_0001\uff20\uff20").text == "@@CMP_GE_0001@@"
  assert canonicalize_comparator_tokens("@@CMP_\u200bLE_0002@@").text == "@@CMP_LE_0002@@"

  spaced = canonicalize_comparator_tokens("x @@ CMP_GT_0003 @@ 5")
  assert spaced.text == "x @@CMP_GT_0003@@ 5"
  assert spaced.changed == 1


def test_canonicalize_leaves_clean_text_untouched() -> None:
  result = canonicalize_comparator_tokens("a @@CMP_GE_0001@@ 1")
  assert result.text == "a @@CMP_GE_0001@@ 1"
  assert result.changed == 0


def test_salvage_replaces_malformed_token_with_operator() -> None:
  result = salvage_comparator_token_like("value @@CMP_GE_12@@ thing")
  assert result.text == "value >= thing"
  assert result.replaced == 1
  assert "CMP_" not in result.text


def test_salvage_without_token_fragments_is_a_no_op() -> None:
  result = salvage_comparator_token_like("plain text > 3")
  assert result.text == "plain text > 3"
  assert result.replaced == 0


def test_extract_tokens_returns_unique_in_first_seen_order() -> None:
  text = "@@CMP_LT_0002@@ @@CMP_GE_0001@@ @@CMP_LT_0002@@ @@CMP_GE_12@@"
  assert extract_comparator_tokens(text) == ["@@CMP_LT_0002@@", "@@CMP_GE_0001@@"]


def test_comparator_audit_line_counts_operators() -> None:
  line = comparator_audit_line("CLEAN_IN", "a >= 1 and b < 2")
  assert line == "[ComparatorAudit:CLEAN_IN] >=:1 <=:0 ≥:0 ≤:0 >:0 <:1 >/:0 </:0 htmlTags:0"


def test_repair_pdf_artifacts_fixes_glyphs_before_numbers() -> None:
  report = repair_pdf_extraction_artifacts("HbA1c \ue09a 6.5 and K \ue098 5")

  assert report.repaired_text == "HbA1c >= 6.5 and K > 5"
  assert [(repair.label, repair.count) for repair in report.repairs] == [(">", 1), (">=", 1)]
  assert report.unknown_glyphs == []


def test_repair_pdf_artifacts_reports_unknown_glyphs() -> None:
  report = repair_pdf_extraction_artifacts("odd \ue0ff glyph and \ue098 arrow")

  codes = {glyph.code: glyph.count for glyph in report.unknown_glyphs}
  assert codes == {"U+E0FF": 1, "U+E098": 1}
  assert report.repairs == []
  assert all(glyph.samples for glyph in report.unknown_glyphs)
