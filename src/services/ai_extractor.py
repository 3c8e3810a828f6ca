import json
import math
import re
from decimal import Decimal
from loguru import logger
from openai import OpenAI, OpenAIError
from ..core.config import Settings
from ..core.errors import ConfigurationError, ExtractionError, TransportError
from ..models.invoice import ChargeType, FieldSet, SourceKind
from .field_sources import FieldSource, SourceContext
from .label_extractor import normalize_date
from .text_normalizer import normalize_lines

INVOICE_SCHEMA = {
    "name": "invoice_extract",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "amount": {"type": ["number", "null"]},
            "currency": {"type": ["string", "null"]},
            "due_date": {"type": ["string", "null"]},
            "name": {"type": ["string", "null"]},
            "type": {"type": ["string", "null"]},
        },
        "required": ["amount", "currency", "due_date", "name", "type"],
    },
}

SYSTEM_PROMPT = (
    "You extract billing data from Hungarian utility and rent invoices. "
    "Return a value only when it appears explicitly in the text next to a keyword or an "
    "unambiguous label. If you are not sure, return null. Never infer, estimate or invent a value. "
    "type must be one of RENT, UTILITY, COMMON_COST, OTHER. "
    "due_date must be ISO formatted (YYYY-MM-DD). currency must be a 3-letter code (HUF, EUR, USD). "
    "Watch for Hungarian labels: 'fizetési határidő' or 'esedékesség' for the due date, "
    "'fizetendő összeg' or 'összeg' for the amount. Read amounts in Hungarian notation "
    "(for example 1 234,56 HUF). name is the provider or issuer of the invoice, never the "
    "customer or the billing address."
)

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def to_field_set(parsed: dict) -> FieldSet:
    """Map the model's JSON onto a FieldSet, dropping anything malformed."""
    currency = str(parsed.get("currency") or "").strip().upper() or None
    if currency and not _CURRENCY_CODE.match(currency):
        currency = None

    raw_amount = parsed.get("amount")
    amount = None
    if isinstance(raw_amount, (int, float)) and not isinstance(raw_amount, bool):
        # An amount without a currency is not explicit enough to trust
        if math.isfinite(raw_amount) and raw_amount > 0 and currency:
            amount = Decimal(str(raw_amount))

    raw_type = str(parsed.get("type") or "").strip().upper()
    charge_type = ChargeType(raw_type) if raw_type in ChargeType.__members__ else None

    name = str(parsed.get("name") or "").strip() or None
    due_date = parsed.get("due_date")

    return FieldSet(
        amount=amount,
        currency=currency,
        due_date=normalize_date(str(due_date)) if due_date else None,
        provider_name=name,
        charge_type=charge_type,
    )


class AiFieldExtractor(FieldSource):
    kind = SourceKind.AI

    def __init__(self, settings: Settings, client: OpenAI | None = None):
        self.api_key = settings.openai_api_key
        self.base_url = settings.llm_base_url
        self.model = settings.llm_model
        self.max_chars = settings.llm_max_chars
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._client or self.api_key)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url or None)
        return self._client

    def produce(self, context: SourceContext) -> FieldSet:
        return self.extract_fields(context.text)

    def extract_fields(self, text: str) -> FieldSet:
        if not self.configured:
            raise ConfigurationError("OPENAI_API_KEY is not set")

        trimmed = normalize_lines(text)[: self.max_chars]
        logger.info("Requesting AI field extraction", model=self.model, chars=len(trimmed))

        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_schema", "json_schema": INVOICE_SCHEMA},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"Invoice text:\n{trimmed}"},
                ],
            )
        except OpenAIError as e:
            logger.error(f"AI extraction request failed: {str(e)}")
            raise TransportError(f"AI extraction request failed: {str(e)}")

        raw = (completion.choices[0].message.content if completion.choices else None) or "{}"
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            raise ExtractionError("Could not parse the AI response")
        if not isinstance(parsed, dict):
            raise ExtractionError("AI response is not a JSON object")

        fields = to_field_set(parsed)
        logger.info(
            "AI extraction finished",
            amount=str(fields.amount) if fields.amount is not None else None,
            due_date=fields.due_date,
            provider=fields.provider_name,
        )
        return fields
