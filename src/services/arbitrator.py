"""
Field arbitration: merges every source's FieldSet into one InvoiceRecord.

Precedence, highest first, a candidate only winning when it validates:

    amount         labels -> ai -> cloud document (gated, see merge())
    currency       cloud document -> labels -> ai -> default currency
    due date       labels -> cloud document -> ai
    provider name  cloud document -> labels -> provider hint -> ai (legal-entity check)
    charge type    provider hint -> labels -> ai

A telecom signature anywhere in the text overrides the provider name.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Callable, Mapping
from loguru import logger
from ..core.errors import ValidationError
from ..models.invoice import FieldSet, InvoiceRecord, ProviderHint, SourceKind
from .provider_detector import TELECOM_PROVIDER_NAME
from .text_normalizer import strip_diacritics

LEGAL_ENTITY_SUFFIX = re.compile(r"\b(kft|zrt|nyrt|rt|bt|kkt|szolgaltato)\b", re.IGNORECASE)
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def is_valid_amount(value: Decimal | None) -> bool:
    return value is not None and value.is_finite() and value > 0


def looks_like_legal_entity(name: str | None) -> bool:
    return bool(name) and len(name) >= 3 and LEGAL_ENTITY_SUFFIX.search(strip_diacritics(name)) is not None


def _shift_years(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        # 29 February
        return day.replace(year=day.year + years, day=28)


class FieldArbitrator:
    def __init__(self, default_currency: str = "HUF", today: Callable[[], date] = date.today):
        self.default_currency = default_currency
        self.today = today

    def due_date_in_window(self, iso_date: str | None) -> bool:
        if not iso_date:
            return False
        try:
            due = date.fromisoformat(iso_date)
        except ValueError:
            return False
        today = self.today()
        return _shift_years(today, -1) <= due <= _shift_years(today, 2)

    def merge(
        self,
        sources: Mapping[SourceKind, FieldSet],
        hint: ProviderHint | None = None,
        *,
        amount_label_present: bool = False,
        custom_model_required: bool = False,
        telecom_detected: bool = False,
    ) -> InvoiceRecord:
        """
        Merge per-source FieldSets into one record.

        Args:
            sources: FieldSet per source that ran successfully
            hint: provider signature match, if any
            amount_label_present: the text carries the payable-amount label
            custom_model_required: the flagged provider is analysed with a non-default model
            telecom_detected: the telecom signature appears in the text

        Returns:
            InvoiceRecord; mandatory fields may still be None, see validate()
        """
        labels = sources.get(SourceKind.LABELS) or FieldSet()
        ai = sources.get(SourceKind.AI) or FieldSet()
        cloud = sources.get(SourceKind.CLOUD_DOCUMENT) or FieldSet()

        amount_candidates = [labels.amount, ai.amount]
        if amount_label_present or custom_model_required:
            amount_candidates.append(cloud.amount)
        amount = next((a for a in amount_candidates if is_valid_amount(a)), None)

        currency = next(
            (c for c in (cloud.currency, labels.currency, ai.currency) if c and _CURRENCY_CODE.match(c)),
            self.default_currency,
        )

        due_date = next(
            (d for d in (labels.due_date, cloud.due_date, ai.due_date) if self.due_date_in_window(d)),
            None,
        )

        ai_name = ai.provider_name if looks_like_legal_entity(ai.provider_name) else None
        provider_name = (
            cloud.provider_name
            or labels.provider_name
            or (hint.provider_name if hint else None)
            or ai_name
        )
        if telecom_detected:
            provider_name = TELECOM_PROVIDER_NAME

        charge_type = (hint.default_charge_type if hint else None) or labels.charge_type or ai.charge_type

        record = InvoiceRecord(
            amount=amount,
            currency=currency,
            due_date=due_date,
            provider_name=provider_name,
            charge_type=charge_type,
        )
        logger.info(
            "Arbitrated invoice fields",
            amount=str(amount) if amount is not None else None,
            currency=currency,
            due_date=due_date,
            provider=provider_name,
            charge_type=charge_type.value if charge_type else None,
        )
        return record

    def validate(self, record: InvoiceRecord) -> InvoiceRecord:
        missing = [
            name
            for name, value in (
                ("amount", record.amount),
                ("due_date", record.due_date),
                ("provider_name", record.provider_name),
            )
            if value is None
        ]
        if missing:
            raise ValidationError(missing)
        return record
