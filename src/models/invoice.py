from decimal import Decimal
from enum import Enum
from typing import Annotated
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Decimals travel as JSON numbers so API clients can pre-fill forms directly
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ChargeType(str, Enum):
    RENT = "RENT"
    UTILITY = "UTILITY"
    COMMON_COST = "COMMON_COST"
    OTHER = "OTHER"


class Provenance(str, Enum):
    TEXT_LAYER = "text-layer"
    OCR_LOCAL = "ocr-local"
    OCR_CLOUD_ENGINE_A = "ocr-cloud-engine-A"
    OCR_CLOUD_ENGINE_B = "ocr-cloud-engine-B"


class SourceKind(str, Enum):
    LABELS = "labels"
    AI = "ai"
    CLOUD_DOCUMENT = "cloud_document"


class RawDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: bytes
    mime_type: str
    filename: str | None = None


class ExtractedText(BaseModel):
    content: str = ""
    provenance: Provenance = Provenance.TEXT_LAYER
    page_count: int | None = None
    passes: list[Provenance] = Field(default_factory=list)  # OCR passes joined into content

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()


class OcrOutcome(BaseModel):
    text: ExtractedText
    errors: list[str] = Field(default_factory=list)


class ProviderHint(BaseModel):
    provider_name: str
    default_charge_type: ChargeType = ChargeType.UTILITY
    requires_fallback: bool = False  # PDFs from this provider need OCR + document analysis


class FieldSet(BaseModel):
    amount: Amount | None = None
    currency: str | None = None
    due_date: str | None = None  # ISO YYYY-MM-DD
    provider_name: str | None = None
    charge_type: ChargeType | None = None


class InvoiceRecord(FieldSet):
    """Arbitrated result handed to the charge-creation flow"""


class DiagnosticsBundle(BaseModel):
    text_sample: str = ""
    text_provenance: Provenance | None = None
    ocr_passes: list[Provenance] = Field(default_factory=list)
    page_count: int | None = None
    provider_hint: ProviderHint | None = None
    sources: dict[str, FieldSet] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
    merged: FieldSet | None = None


class ExtractionResult(BaseModel):
    ok: bool
    data: InvoiceRecord | None = None
    error: str | None = None
    error_type: str | None = None  # type_mismatch | extraction | validation
    debug: DiagnosticsBundle | None = None
