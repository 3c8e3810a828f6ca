"""
Azure Document Intelligence field extraction.

The analyze call is a submit-then-poll protocol: the PDF is POSTed to the
model endpoint, the service answers with an Operation-Location handle, and
the handle is polled at a fixed interval until the analysis succeeds, fails
or the attempt budget runs out.
"""

import time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable
import httpx
from azure.ai.documentintelligence.models import AnalyzeResult
from loguru import logger
from ..core.config import Settings
from ..core.errors import (
    ConfigurationError,
    ExtractionError,
    PollingTimeoutError,
    TransportError,
)
from ..models.invoice import FieldSet, SourceKind
from .field_sources import FieldSource, SourceContext
from .label_extractor import currency_from_amount, normalize_date, parse_hungarian_amount
from .text_normalizer import normalize_standard

# Prebuilt field names first, then the labels custom-trained models use
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "vendor": ("VendorName", "szolgaltato neve", "kibocsato neve", "vendor name"),
    "amount_due": ("AmountDue", "fizetendo osszeg", "amount due"),
    "invoice_total": ("InvoiceTotal", "szamla vegosszege", "vegosszeg", "invoice total"),
    "due_date": ("DueDate", "fizetesi hatarido", "esedekesseg", "due date"),
}


class AnalysisState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


def find_field(fields: dict[str, Any], key: str):
    """Exact field name first, then a diacritic-insensitive label match."""
    aliases = FIELD_ALIASES[key]
    for name in aliases:
        if name in fields:
            return fields[name]

    folded_aliases = [normalize_standard(alias) for alias in aliases]
    for name, field in fields.items():
        folded = normalize_standard(name)
        if any(alias == folded or alias in folded for alias in folded_aliases):
            return field
    return None


def _raw_content(field) -> str | None:
    if field is None:
        return None
    content = getattr(field, "content", None)
    if content:
        return str(content)
    value = getattr(field, "value_string", None)
    return str(value) if value else None


def _to_decimal(number) -> Decimal | None:
    try:
        value = Decimal(str(number))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def _field_amount(field):
    """Numeric value first, then the raw string in Hungarian notation."""
    if field is None:
        return None, None

    currency_value = getattr(field, "value_currency", None)
    if currency_value is not None and getattr(currency_value, "amount", None) is not None:
        return _to_decimal(currency_value.amount), getattr(currency_value, "currency_code", None)

    number = getattr(field, "value_number", None)
    if number is not None:
        return _to_decimal(number), None

    raw = _raw_content(field)
    return parse_hungarian_amount(raw), None


def _field_date(field) -> str | None:
    if field is None:
        return None
    value = getattr(field, "value_date", None)
    if value is not None:
        return value.isoformat() if hasattr(value, "isoformat") else normalize_date(str(value))
    return normalize_date(_raw_content(field))


class CloudDocumentFieldService(FieldSource):
    kind = SourceKind.CLOUD_DOCUMENT

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.Client,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = (settings.az_di_endpoint or "").rstrip("/")
        self.api_key = settings.az_di_api_key
        self.model_id = settings.az_di_model_id
        self.api_version = settings.az_di_api_version
        self.poll_interval = settings.az_di_poll_interval_seconds
        self.max_polls = settings.az_di_max_polls
        self.http = http_client
        self.sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.api_key)

    def produce(self, context: SourceContext) -> FieldSet:
        return self.extract_invoice_fields(context.document_bytes)

    def extract_invoice_fields(self, file_bytes: bytes) -> FieldSet:
        if not self.configured:
            raise ConfigurationError("AZ_DI_ENDPOINT and AZ_DI_API_KEY are not set")

        logger.info(
            "Using Azure Document Intelligence for invoice extraction",
            endpoint=self.endpoint[:50] + "..." if len(self.endpoint) > 50 else self.endpoint,
            model=self.model_id,
        )
        payload = self.analyze(file_bytes)
        result = AnalyzeResult(payload.get("analyzeResult") or {})
        return self.fields_from_result(result)

    def analyze(self, file_bytes: bytes) -> dict:
        """Run the analysis state machine and return the final operation payload."""
        state = AnalysisState.SUBMITTED
        operation_url = self._submit(file_bytes)
        attempts = 0

        while True:
            if state in (AnalysisState.SUBMITTED, AnalysisState.POLLING):
                if attempts >= self.max_polls:
                    state = AnalysisState.TIMED_OUT
                    continue
                self.sleep(self.poll_interval)
                attempts += 1
                payload = self._poll(operation_url)
                status = str(payload.get("status", "")).lower()
                if status == "succeeded":
                    state = AnalysisState.SUCCEEDED
                elif status == "failed":
                    state = AnalysisState.FAILED
                else:
                    state = AnalysisState.POLLING
                logger.debug("Document analysis poll", attempt=attempts, status=status)

            elif state == AnalysisState.SUCCEEDED:
                logger.info("Document analysis succeeded", attempts=attempts)
                return payload

            elif state == AnalysisState.FAILED:
                error = payload.get("error") or {}
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise ExtractionError(f"Document analysis failed: {message or 'unknown error'}")

            else:
                logger.warning("Document analysis timed out", attempts=attempts)
                raise PollingTimeoutError(
                    f"Document analysis did not finish after {self.max_polls} polls"
                )

    def _submit(self, file_bytes: bytes) -> str:
        url = f"{self.endpoint}/documentintelligence/documentModels/{self.model_id}:analyze"
        logger.info(f"Analyzing document of size {len(file_bytes)} bytes")
        try:
            response = self.http.post(
                url,
                params={"api-version": self.api_version},
                headers={
                    "Ocp-Apim-Subscription-Key": self.api_key,
                    "Content-Type": "application/pdf",
                },
                content=file_bytes,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Document analysis submit failed: {str(e)}")

        if response.status_code >= 400:
            raise TransportError(f"Document analysis submit returned HTTP {response.status_code}")

        operation_url = response.headers.get("operation-location")
        if not operation_url:
            raise TransportError("Document analysis response has no Operation-Location header")
        return operation_url

    def _poll(self, operation_url: str) -> dict:
        try:
            response = self.http.get(
                operation_url,
                headers={"Ocp-Apim-Subscription-Key": self.api_key},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Document analysis poll failed: {str(e)}")

        if response.status_code >= 400:
            raise TransportError(f"Document analysis poll returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError:
            raise TransportError("Document analysis poll returned a non-JSON response")

    def fields_from_result(self, result: AnalyzeResult) -> FieldSet:
        if not result.documents:
            logger.warning("Document analysis found no structured invoice data")
            return FieldSet()

        doc = result.documents[0]
        fields = doc.fields or {}

        vendor_field = find_field(fields, "vendor")
        due_field = find_field(fields, "due_date")

        amount_field = find_field(fields, "amount_due")
        amount, currency_code = _field_amount(amount_field)
        if amount is None:
            amount_field = find_field(fields, "invoice_total")
            amount, currency_code = _field_amount(amount_field)
        if amount is not None and amount <= 0:
            amount = None

        currency = currency_code or currency_from_amount(_raw_content(amount_field))
        vendor = _raw_content(vendor_field)

        extracted = FieldSet(
            amount=amount,
            currency=currency.upper() if currency else None,
            due_date=_field_date(due_field),
            provider_name=vendor.strip() if vendor else None,
        )
        logger.info(
            "Successfully extracted invoice data from Azure DI",
            vendor=extracted.provider_name,
            due_date=extracted.due_date,
            confidence=getattr(doc, "confidence", None),
        )
        return extracted
