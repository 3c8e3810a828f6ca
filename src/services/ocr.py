"""
OCR fallback chain.

Two engines are available:
- a local Tesseract engine that renders page 1 of the PDF in memory, used
  when the PDF has no text layer at all
- the OCR.space image service, fed with the rasterized first page, used for
  providers whose text layer is known to be unusable

Engine failures never escape the chain; they are collected as error strings
and the chain degrades to "no OCR text".
"""

import io
import fitz  # PyMuPDF
import httpx
import pytesseract
from PIL import Image
from loguru import logger
from ..core.config import Settings
from ..core.errors import ConfigurationError, ExtractionError, InvoicePipelineError, TransportError
from ..models.invoice import ExtractedText, OcrOutcome, Provenance
from .rasterizer import PageRasterizer
from .text_normalizer import normalize_standard

# A first cloud pass without this token gets a second pass with the other engine
BILLING_LABEL_TOKEN = "fizet"


def has_billing_label(text: str) -> bool:
    return BILLING_LABEL_TOKEN in normalize_standard(text)


class LocalOcrEngine:
    """Tesseract over the first page, rendered straight from the PDF bytes"""

    def __init__(self, settings: Settings):
        self.language = settings.local_ocr_language
        self.dpi = settings.rasterizer_dpi

    def recognize(self, pdf_bytes: bytes) -> str:
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
            try:
                if doc.page_count == 0:
                    return ""
                pixmap = doc[0].get_pixmap(dpi=self.dpi, colorspace=fitz.csGRAY)
                image = Image.open(io.BytesIO(pixmap.tobytes("png")))
            finally:
                doc.close()

            text = pytesseract.image_to_string(image, lang=self.language)
        except Exception as e:
            raise ExtractionError(f"Local OCR failed: {str(e)}")

        return text.strip()


class CloudOcrClient:
    """OCR.space image OCR with a selectable recognition engine"""

    def __init__(self, settings: Settings, http_client: httpx.Client):
        self.api_key = settings.ocr_space_api_key
        self.url = settings.ocr_space_url
        self.language = settings.ocr_space_language
        self.timeout = settings.ocr_timeout_seconds
        self.http = http_client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def recognize(self, image: bytes, engine: int) -> str:
        if not self.api_key:
            raise ConfigurationError("OCR_SPACE_API_KEY is not set")

        try:
            response = self.http.post(
                self.url,
                headers={"apikey": self.api_key},
                data={
                    "language": self.language,
                    "OCREngine": str(engine),
                    "scale": "true",
                    "isTable": "false",
                    "isOverlayRequired": "false",
                },
                files={"file": ("page.png", image, "image/png")},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Cloud OCR request failed: {str(e)}")

        if response.status_code >= 400:
            raise TransportError(f"Cloud OCR returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise TransportError("Cloud OCR returned a non-JSON response")

        if payload.get("IsErroredOnProcessing"):
            message = payload.get("ErrorMessage") or "unknown error"
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            raise TransportError(f"Cloud OCR processing error: {message}")

        parsed = payload.get("ParsedResults") or []
        return "\n".join((r.get("ParsedText") or "") for r in parsed).strip()


class OcrEngineChain:
    def __init__(
        self,
        settings: Settings,
        rasterizer: PageRasterizer,
        local_engine: LocalOcrEngine,
        cloud_client: CloudOcrClient,
    ):
        self.primary_engine = settings.ocr_space_primary_engine
        self.secondary_engine = settings.ocr_space_secondary_engine
        self.rasterizer = rasterizer
        self.local_engine = local_engine
        self.cloud_client = cloud_client

    def recognize_missing_text(self, pdf_bytes: bytes) -> OcrOutcome:
        """PDF without a text layer: local engine, then the cloud passes."""
        errors: list[str] = []
        outcome = self._run_local(pdf_bytes, errors)
        if not outcome.text.is_empty:
            return outcome

        if not self.cloud_client.configured:
            errors.append(f"{Provenance.OCR_CLOUD_ENGINE_A.value}: OCR_SPACE_API_KEY is not set")
            return OcrOutcome(text=outcome.text, errors=errors)
        return self._run_cloud(pdf_bytes, errors)

    def recognize_flagged(self, pdf_bytes: bytes) -> OcrOutcome:
        """Provider with a known-bad text layer: cloud passes, then the local engine."""
        errors: list[str] = []
        outcome = self._run_cloud(pdf_bytes, errors)
        if not outcome.text.is_empty:
            return outcome
        return self._run_local(pdf_bytes, errors)

    def _run_local(self, pdf_bytes: bytes, errors: list[str]) -> OcrOutcome:
        text = ""
        try:
            text = self.local_engine.recognize(pdf_bytes)
        except InvoicePipelineError as e:
            logger.warning(f"Local OCR unavailable: {str(e)}")
            errors.append(f"{Provenance.OCR_LOCAL.value}: {str(e)}")

        logger.info("Local OCR finished", chars=len(text))
        passes = [Provenance.OCR_LOCAL] if text else []
        return OcrOutcome(
            text=ExtractedText(content=text, provenance=Provenance.OCR_LOCAL, passes=passes),
            errors=errors,
        )

    def _run_cloud(self, pdf_bytes: bytes, errors: list[str]) -> OcrOutcome:
        if not self.cloud_client.configured:
            errors.append(f"{Provenance.OCR_CLOUD_ENGINE_A.value}: OCR_SPACE_API_KEY is not set")
            return self._empty_cloud_outcome(errors)

        image = self.rasterizer.rasterize_first_page(pdf_bytes)
        if image is None:
            errors.append(f"{Provenance.OCR_CLOUD_ENGINE_A.value}: page rasterization failed")
            return self._empty_cloud_outcome(errors)

        parts: list[str] = []
        passes: list[Provenance] = []

        first = self._cloud_pass(image, self.primary_engine, Provenance.OCR_CLOUD_ENGINE_A, errors)
        if first:
            parts.append(first)
            passes.append(Provenance.OCR_CLOUD_ENGINE_A)

        if not has_billing_label(first):
            # Both passes are kept, newline-joined
            second = self._cloud_pass(image, self.secondary_engine, Provenance.OCR_CLOUD_ENGINE_B, errors)
            if second:
                parts.append(second)
                passes.append(Provenance.OCR_CLOUD_ENGINE_B)

        if not parts:
            return self._empty_cloud_outcome(errors)

        return OcrOutcome(
            text=ExtractedText(content="\n".join(parts), provenance=passes[-1], passes=passes),
            errors=errors,
        )

    def _empty_cloud_outcome(self, errors: list[str]) -> OcrOutcome:
        return OcrOutcome(
            text=ExtractedText(content="", provenance=Provenance.OCR_CLOUD_ENGINE_A),
            errors=errors,
        )

    def _cloud_pass(self, image: bytes, engine: int, provenance: Provenance, errors: list[str]) -> str:
        try:
            text = self.cloud_client.recognize(image, engine)
        except InvoicePipelineError as e:
            logger.warning("Cloud OCR pass failed: {}", str(e), engine=engine)
            errors.append(f"{provenance.value}: {str(e)}")
            return ""

        logger.info("Cloud OCR pass finished", engine=engine, chars=len(text))
        return text
