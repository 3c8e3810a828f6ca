"""
Tests for text canonicalization used by label matching.
"""

import pytest
from src.services.text_normalizer import (
    build_variants,
    collapse_whitespace,
    deshift_text,
    looks_shifted,
    normalize_for_label_search,
    normalize_lines,
    normalize_standard,
    repair_shifted_glyphs,
    strip_diacritics,
)
from conftest import shift_text

SAMPLES = [
    "Fizetendő összeg:\u00a012 500 Ft",
    "  Fizetési   határidő: 2025.03.15.  ",
    "SZOLGÁLTATÓ NEVE: Példa Energia Kft.",
    "Számla\n\nsorszáma:  A-123/2025",
    "",
]


def test_strip_diacritics_removes_hungarian_accents():
    assert strip_diacritics("Fizetendő összeg, határidő, Űrhajó") == "Fizetendo osszeg, hatarido, Urhajo"


def test_collapse_whitespace_handles_non_breaking_spaces():
    assert collapse_whitespace(" a\u00a0\u00a0b \n\t c ") == "a b c"


def test_normalize_standard_lowercases_and_drops_unsafe_chars():
    assert normalize_standard("Fizetési határidő: 2025.03.15!") == "fizetesi hatarido 2025.03.15"
    assert normalize_standard("Összeg: 1.234,56 Ft") == "osszeg 1.234,56 ft"


@pytest.mark.parametrize("text", SAMPLES)
def test_normalizers_are_idempotent(text):
    """Applying a normalizer twice gives the same result as applying it once"""
    for normalize in (strip_diacritics, collapse_whitespace, normalize_standard, normalize_lines):
        once = normalize(text)
        assert normalize(once) == once


def test_normalize_lines_keeps_line_structure():
    assert normalize_lines("  Első   sor \n\n\n második\u00a0sor ") == "Első sor\nmásodik sor"


def test_deshift_recovers_billing_keyword():
    """Provider-specific transform; not a general PDF text repair"""
    assert deshift_text(")L]HW") == "Fizet"


def test_deshift_reverses_the_shift():
    assert deshift_text(shift_text("Fizetendo osszeg 12500 Ft")) == "Fizetendo osszeg 12500 Ft"


def test_deshift_maps_accented_vowels_to_shifted_glyphs():
    """The shifted font lands accented vowels on cp1250 punctuation glyphs"""
    # "pVL" -> "Ťsi", "KDWiULG" -> "hat†rid"
    deshifted = deshift_text(")L]HWpVL\x03KDWiULG")
    assert deshifted == "FizetŤsi hat†rid"
    assert repair_shifted_glyphs(deshifted) == "Fizetesi hatarid"


def test_repair_shifted_glyphs_fixes_digit_five_between_letters():
    assert repair_shifted_glyphs("sz5lg†ltat5") == "szolgaltat5"


def test_normalize_for_label_search_on_shifted_text():
    assert normalize_for_label_search(")L]HWpVL\x03KDWiULG") == "fizetesi hatarid"


def test_build_variants_order_and_shapes():
    variants = build_variants("Fizetendő összeg:\n12\u00a0500 Ft")

    assert [v.name for v in variants] == ["plain", "ascii", "deshifted"]
    for variant in variants:
        assert len(variant.original_lines) == len(variant.normalized_lines) == 2

    plain, ascii_variant, _ = variants
    assert plain.normalized_lines == ["fizetendo osszeg", "12 500 ft"]
    # Non-ASCII characters become spaces before normalization
    assert ascii_variant.original_lines[0] == "Fizetend   sszeg:"


def test_looks_shifted_needs_the_shifted_billing_marker():
    assert looks_shifted(shift_text("Fizetendo osszeg: 12 500 Ft"))
    assert not looks_shifted("Fizetendő összeg: 12 090 Ft")
    assert not looks_shifted("")
