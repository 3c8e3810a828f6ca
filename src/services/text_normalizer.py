"""
Text canonicalization for invoice label matching.

Invoices reach us with accents, non-breaking spaces, OCR noise and, for one
provider, a text layer whose glyph codes are stored shifted. Label searches
run over several normalized variants of the same text because each of these
states hides the labels from a different variant.
"""

import re
import unicodedata
from dataclasses import dataclass

SHIFT_OFFSET = 29
SHIFT_ENCODING = "cp1250"
# "Fizet" as stored in the shifted text layer
SHIFTED_BILLING_MARKER = ")L]HW"

_SAFE_CHARS = re.compile(r"[^a-z0-9 .,/\\-]")
_WHITESPACE = re.compile(r"\s+")
_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7E]")
_LETTER_FIVE_LETTER = re.compile(r"(?<=[A-Za-z])5(?=[A-Za-z])")

# Glyphs the shifted font uses in place of accented vowels
_SHIFTED_GLYPHS = str.maketrans({
    "\u2020": "a",
    "\u0164": "e",
    "\u2122": "o",
    "\u2013": "o",
    "=": "o",
})


@dataclass(frozen=True)
class TextVariant:
    name: str
    original_lines: list[str]
    normalized_lines: list[str]


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text.replace("\u00a0", " ")).strip()


def normalize_standard(text: str) -> str:
    """Diacritic-free, lower-case, safe-charset form used for label matching."""
    folded = strip_diacritics(text).replace("\u00a0", " ").lower()
    return collapse_whitespace(_SAFE_CHARS.sub(" ", folded))


def to_printable_ascii(text: str) -> str:
    return _NON_PRINTABLE_ASCII.sub(" ", text)


def deshift_text(text: str, offset: int = SHIFT_OFFSET) -> str:
    """
    Reverse the glyph-code shift seen in one provider's PDF text layer.

    The generator stores every character 29 code points below its cp1250
    value, so ")L]HW" is really "Fizet". Each code unit is taken as a byte,
    moved back by the offset modulo 256 and decoded as cp1250.

    Provider-specific: do not apply this to text from other issuers as a
    general repair.
    """
    shifted = bytes((ord(ch) + offset) & 0xFF for ch in text)
    return shifted.decode(SHIFT_ENCODING, errors="replace")


def looks_shifted(text: str) -> bool:
    return SHIFTED_BILLING_MARKER in text


def repair_shifted_glyphs(text: str) -> str:
    return _LETTER_FIVE_LETTER.sub("o", text.translate(_SHIFTED_GLYPHS))


def normalize_for_label_search(text: str) -> str:
    return normalize_standard(repair_shifted_glyphs(deshift_text(text)))


def normalize_lines(text: str) -> str:
    """Collapse whitespace inside each line but keep the line structure."""
    lines = (collapse_whitespace(line) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def build_variants(text: str) -> list[TextVariant]:
    """Variants in label-search priority order: plain, ascii, deshifted."""
    raw_lines = text.splitlines()
    ascii_lines = [to_printable_ascii(line) for line in raw_lines]
    deshifted_lines = [repair_shifted_glyphs(deshift_text(line)) for line in raw_lines]
    return [
        TextVariant("plain", raw_lines, [normalize_standard(line) for line in raw_lines]),
        TextVariant("ascii", ascii_lines, [normalize_standard(line) for line in ascii_lines]),
        TextVariant("deshifted", deshifted_lines, [normalize_standard(line) for line in deshifted_lines]),
    ]
