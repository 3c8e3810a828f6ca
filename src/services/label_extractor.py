"""
Deterministic label-based extraction for Hungarian utility invoices.

Looks for the "Fizetendő összeg" (payable amount), "Fizetési határidő"
(payment due date) and "Szolgáltató neve" (provider name) labels in every
normalized text variant and reads the value next to them.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from loguru import logger
from ..models.invoice import ChargeType, FieldSet, SourceKind
from .field_sources import FieldSource, SourceContext
from .text_normalizer import TextVariant, build_variants, collapse_whitespace, to_printable_ascii

LOCAL_CURRENCY = "HUF"
MAX_LOOKAHEAD = 2

AMOUNT_LABEL = re.compile(r"fizetend\w*\s*osszeg")
DUE_DATE_LABEL = re.compile(r"fizetes\w*\s*hatarido")
PROVIDER_LABEL = re.compile(r"szolgaltato\s+neve")
PROVIDER_LABEL_ORIGINAL = re.compile(r"szolg\S*\s+neve\s*:?\s*(.+)", re.IGNORECASE)

AMOUNT_VALUE = re.compile(r"\d[\d .,]*(?:\s*(?:ft|huf)\b)?", re.IGNORECASE)
DATE_VALUE = re.compile(
    r"\d{4}\s*[./-]\s*\d{1,2}\s*[./-]\s*\d{1,2}|\d{1,2}\s*[./-]\s*\d{1,2}\s*[./-]\s*\d{4}"
)

_CURRENCY_UNITS = re.compile(r"ft|huf", re.IGNORECASE)
_DOT_GROUPED = re.compile(r"^\d{1,3}(?:\.\d{3})+$")
_DATE_SHAPES = (
    (re.compile(r"^(\d{4})[./-](\d{1,2})[./-](\d{1,2})\.?$"), ("y", "m", "d")),
    (re.compile(r"^(\d{2})[./-](\d{2})[./-](\d{4})\.?$"), ("d", "m", "y")),
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), ("m", "d", "y")),
)

# Shifted-glyph spellings of "Fizetendő összeg" and "Fizetési határidő" as they
# appear in one provider's legacy text layer. Provider-specific.
ENCODED_AMOUNT = re.compile(r"\)L\]HW[^\n\r]{0,60}?VV\]HJ[:\s]*([0-9][0-9.\s]+)")
ENCODED_DUE_DATE = re.compile(
    r"\)L\]HWpVL[^\n\r]{0,60}?KDWiULG[:\s]*([0-9]{4}[./-][0-9]{2}[./-][0-9]{2})"
)


def parse_hungarian_amount(raw: str | None) -> Decimal | None:
    """
    Parse an amount written with Hungarian conventions.

    "1.234,56 Ft" -> 1234.56, "12 000 Ft" -> 12000, "1.234.567" -> 1234567.
    """
    if not raw:
        return None

    cleaned = re.sub(r"\s", "", _CURRENCY_UNITS.sub("", raw))
    digits = re.sub(r"[^\d,.\-]", "", cleaned)
    if "," in digits:
        normalized = digits.replace(".", "").replace(",", ".", 1)
    elif _DOT_GROUPED.match(digits):
        normalized = digits.replace(".", "")
    else:
        normalized = digits

    try:
        value = Decimal(normalized)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def currency_from_amount(raw: str | None) -> str | None:
    if raw and _CURRENCY_UNITS.search(raw):
        return LOCAL_CURRENCY
    return None


def normalize_date(raw: str | None) -> str | None:
    """Normalize a supported date shape to ISO YYYY-MM-DD; anything else is None."""
    if not raw:
        return None

    value = re.sub(r"\s", "", raw)
    for pattern, order in _DATE_SHAPES:
        match = pattern.match(value)
        if not match:
            continue
        parts = dict(zip(order, (int(g) for g in match.groups())))
        try:
            return date(parts["y"], parts["m"], parts["d"]).isoformat()
        except ValueError:
            continue
    return None


def has_amount_label(text: str) -> bool:
    return any(
        AMOUNT_LABEL.search(line)
        for variant in build_variants(text)
        for line in variant.normalized_lines
    )


def _after_colon(line: str) -> str:
    return line.split(":", 1)[1] if ":" in line else ""


def _amount_value(candidate: str) -> tuple[Decimal, str | None] | None:
    match = AMOUNT_VALUE.search(candidate)
    if not match:
        return None
    amount = parse_hungarian_amount(match.group(0))
    if amount is None or amount <= 0:
        return None
    return amount, currency_from_amount(match.group(0))


def _date_value(candidate: str) -> str | None:
    match = DATE_VALUE.search(candidate)
    return normalize_date(match.group(0)) if match else None


def _clean_provider_name(candidate: str) -> str | None:
    name = collapse_whitespace(candidate).strip(" .,;:-")[:80].strip()
    if len(name) < 3 or not re.search(r"[^\W\d_]", name):
        return None
    return name


class LabelExtractor(FieldSource):
    kind = SourceKind.LABELS

    def __init__(self, lookahead: int = MAX_LOOKAHEAD):
        self.lookahead = lookahead

    def produce(self, context: SourceContext) -> FieldSet:
        texts = [context.text]
        if context.raw_text and context.raw_text != context.text:
            texts.append(context.raw_text)
        return self.extract(texts, fallback_text=context.raw_text or context.text)

    def extract(self, texts: list[str], fallback_text: str = "") -> FieldSet:
        variants = [variant for text in texts if text for variant in build_variants(text)]

        amount_match = self._first(variants, AMOUNT_LABEL, _amount_value)
        due_date = self._first(variants, DUE_DATE_LABEL, _date_value)
        provider_name = self._first_provider_name(variants)

        amount, currency = amount_match if amount_match else (None, None)
        if amount is None or due_date is None:
            encoded_amount, encoded_due = self._encoded_fallback(fallback_text)
            if amount is None and encoded_amount is not None:
                amount, currency = encoded_amount, LOCAL_CURRENCY
            due_date = due_date or encoded_due

        logger.info(
            "Label extraction finished",
            amount=str(amount) if amount is not None else None,
            due_date=due_date,
            provider=provider_name,
        )
        return FieldSet(
            amount=amount,
            currency=currency,
            due_date=due_date,
            provider_name=provider_name,
            charge_type=ChargeType.UTILITY if provider_name else None,
        )

    def _first(self, variants: list[TextVariant], label, parse):
        """First parsable value next to the label, in variant priority order."""
        for variant in variants:
            value = self._find_near_label(variant, label, parse)
            if value is not None:
                return value
        return None

    def _find_near_label(self, variant: TextVariant, label, parse):
        lines = variant.normalized_lines
        for i, normalized in enumerate(lines):
            match = label.search(normalized)
            if not match:
                continue

            for j in range(i, min(len(lines), i + self.lookahead + 1)):
                if j == i:
                    candidates = (normalized[match.end():], _after_colon(variant.original_lines[i]))
                else:
                    candidates = (lines[j], variant.original_lines[j])
                for candidate in candidates:
                    if not candidate.strip():
                        continue
                    value = parse(candidate)
                    if value is not None:
                        return value
        return None

    def _first_provider_name(self, variants: list[TextVariant]) -> str | None:
        for variant in variants:
            for i, normalized in enumerate(variant.normalized_lines):
                match = PROVIDER_LABEL.search(normalized)
                if not match:
                    continue
                # Original line first: it keeps case and accents
                original = PROVIDER_LABEL_ORIGINAL.search(variant.original_lines[i])
                for candidate in (original.group(1) if original else "", normalized[match.end():]):
                    name = _clean_provider_name(candidate)
                    if name:
                        return name
        return None

    def _encoded_fallback(self, raw_text: str) -> tuple[Decimal | None, str | None]:
        if not raw_text:
            return None, None

        ascii_text = to_printable_ascii(raw_text)
        amount = None
        due_date = None

        amount_match = ENCODED_AMOUNT.search(ascii_text)
        if amount_match:
            parsed = parse_hungarian_amount(amount_match.group(1).strip())
            amount = parsed if parsed is not None and parsed > 0 else None

        due_match = ENCODED_DUE_DATE.search(ascii_text)
        if due_match:
            due_date = normalize_date(due_match.group(1))

        if amount is not None or due_date is not None:
            logger.info("Recovered fields from shifted text layer patterns")
        return amount, due_date
