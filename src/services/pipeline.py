"""
Invoice field extraction pipeline.

RawDocument -> text layer -> (OCR when the layer is empty or the provider is
flagged) -> field sources -> arbitration -> ExtractionResult.

Every outbound call runs sequentially inside one invocation; the pipeline
keeps no state between invocations.
"""

import time
from datetime import date
from typing import Callable
import httpx
from loguru import logger
from openai import OpenAI
from ..core.config import Settings
from ..core.errors import ConfigurationError, ExtractionError, InvoicePipelineError, ValidationError
from ..models.invoice import (
    DiagnosticsBundle,
    ExtractedText,
    ExtractionResult,
    FieldSet,
    RawDocument,
    SourceKind,
)
from .ai_extractor import AiFieldExtractor
from .arbitrator import FieldArbitrator
from .field_sources import FieldSource, SourceContext
from .form_recognizer import CloudDocumentFieldService
from .label_extractor import LabelExtractor, has_amount_label
from .ocr import CloudOcrClient, LocalOcrEngine, OcrEngineChain
from .pdf_text import PdfTextLayerReader
from .provider_detector import ProviderDetector
from .rasterizer import PageRasterizer

PDF_MIME_TYPE = "application/pdf"
TEXT_SAMPLE_CHARS = 2000


class InvoicePipeline:
    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.Client | None = None,
        llm_client: OpenAI | None = None,
        reader: PdfTextLayerReader | None = None,
        ocr_chain: OcrEngineChain | None = None,
        detector: ProviderDetector | None = None,
        sources: list[FieldSource] | None = None,
        arbitrator: FieldArbitrator | None = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.settings = settings
        self._owns_http = http_client is None
        self.http = http_client or httpx.Client(timeout=settings.ocr_timeout_seconds)

        self.reader = reader or PdfTextLayerReader()
        self.ocr_chain = ocr_chain or OcrEngineChain(
            settings,
            rasterizer=PageRasterizer(settings),
            local_engine=LocalOcrEngine(settings),
            cloud_client=CloudOcrClient(settings, self.http),
        )
        self.detector = detector or ProviderDetector()
        self.sources = sources if sources is not None else [
            LabelExtractor(),
            AiFieldExtractor(settings, client=llm_client),
            CloudDocumentFieldService(settings, self.http, sleep=sleep),
        ]
        self.arbitrator = arbitrator or FieldArbitrator(settings.default_currency, today=today)

    def close(self):
        """Close the HTTP client if this pipeline created it."""
        if self._owns_http:
            self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def extract(self, document_bytes: bytes, mime_type: str, filename: str | None = None) -> ExtractionResult:
        document = RawDocument(content=document_bytes, mime_type=mime_type, filename=filename)
        return self.run(document)

    def run(self, document: RawDocument) -> ExtractionResult:
        diagnostics = DiagnosticsBundle()

        if document.mime_type.split(";")[0].strip().lower() != PDF_MIME_TYPE:
            logger.warning("Rejected non-PDF document", mime_type=document.mime_type)
            return self._failure(
                f"Unsupported document type '{document.mime_type}', only PDF is accepted",
                "type_mismatch",
                diagnostics,
            )

        logger.info("Extracting invoice fields", filename=document.filename, size=len(document.content))

        try:
            layer = self.reader.read(document.content)
        except ExtractionError as e:
            return self._failure(str(e), "extraction", diagnostics)

        raw_text = layer.content
        hint = self.detector.detect(raw_text)
        flagged = hint is not None and hint.requires_fallback
        text = self._working_text(document.content, layer, flagged, diagnostics)

        diagnostics.text_sample = text.content[:TEXT_SAMPLE_CHARS]
        diagnostics.text_provenance = text.provenance
        diagnostics.ocr_passes = list(text.passes)
        diagnostics.page_count = layer.page_count

        if text.is_empty:
            logger.warning("No readable text in document", errors=diagnostics.errors)
            return self._failure("No readable text found in the document", "extraction", diagnostics)

        if hint is None and text.content != raw_text:
            hint = self.detector.detect(text.content)
            flagged = hint is not None and hint.requires_fallback
        diagnostics.provider_hint = hint

        context = SourceContext(
            text=text.content,
            raw_text=raw_text,
            document_bytes=document.content,
            hint=hint,
        )
        results = self._run_sources(context, flagged, diagnostics)

        record = self.arbitrator.merge(
            results,
            hint,
            amount_label_present=has_amount_label(text.content) or has_amount_label(raw_text),
            custom_model_required=flagged and self.settings.uses_custom_document_model,
            telecom_detected=self.detector.is_telecom(raw_text) or self.detector.is_telecom(text.content),
        )
        diagnostics.merged = FieldSet(**record.model_dump())

        try:
            record = self.arbitrator.validate(record)
        except ValidationError as e:
            logger.warning(f"Invoice validation failed: {str(e)}")
            return self._failure(str(e), "validation", diagnostics)

        return ExtractionResult(ok=True, data=record, debug=self._debug(diagnostics))

    def _working_text(
        self,
        pdf_bytes: bytes,
        layer: ExtractedText,
        flagged: bool,
        diagnostics: DiagnosticsBundle,
    ) -> ExtractedText:
        """Text layer, or OCR text when the layer is missing or known to be unusable."""
        if len(layer.content.strip()) < self.settings.min_text_chars:
            logger.info("Text layer insufficient, falling back to OCR", chars=len(layer.content))
            outcome = self.ocr_chain.recognize_missing_text(pdf_bytes)
        elif flagged:
            logger.info("Provider text layer flagged, running OCR")
            outcome = self.ocr_chain.recognize_flagged(pdf_bytes)
        else:
            return layer

        for i, error in enumerate(outcome.errors):
            diagnostics.errors[f"ocr.{i}"] = error

        if outcome.text.is_empty:
            # A short or shifted layer still feeds the label patterns
            return layer
        return outcome.text.model_copy(update={"page_count": layer.page_count})

    def _run_sources(
        self,
        context: SourceContext,
        flagged: bool,
        diagnostics: DiagnosticsBundle,
    ) -> dict[SourceKind, FieldSet]:
        results: dict[SourceKind, FieldSet] = {}
        for source in self.sources:
            if source.kind == SourceKind.CLOUD_DOCUMENT and not flagged:
                continue
            try:
                results[source.kind] = source.produce(context)
            except ConfigurationError as e:
                logger.info("Field source skipped: {}", str(e), source=source.kind.value)
                diagnostics.errors[source.kind.value] = str(e)
            except InvoicePipelineError as e:
                logger.warning("Field source failed: {}", str(e), source=source.kind.value)
                diagnostics.errors[source.kind.value] = str(e)

        diagnostics.sources = {kind.value: fields for kind, fields in results.items()}
        return results

    def _debug(self, diagnostics: DiagnosticsBundle) -> DiagnosticsBundle | None:
        return diagnostics if self.settings.extraction_debug else None

    def _failure(self, error: str, error_type: str, diagnostics: DiagnosticsBundle) -> ExtractionResult:
        return ExtractionResult(ok=False, error=error, error_type=error_type, debug=self._debug(diagnostics))
