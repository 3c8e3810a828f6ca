import fitz  # PyMuPDF
from loguru import logger
from ..core.errors import ExtractionError
from ..models.invoice import ExtractedText, Provenance


class PdfTextLayerReader:
    """Reads the embedded text layer of a PDF held in memory"""

    def read(self, pdf_bytes: bytes) -> ExtractedText:
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as e:
            logger.error(f"Could not parse PDF structure: {str(e)}")
            raise ExtractionError(f"Could not parse PDF: {str(e)}")

        try:
            pages = [page.get_text() for page in doc]
            page_count = doc.page_count
        finally:
            doc.close()

        content = "\n".join(pages).strip()
        logger.info(
            "Read PDF text layer",
            pages=page_count,
            chars=len(content),
        )
        return ExtractedText(content=content, provenance=Provenance.TEXT_LAYER, page_count=page_count)
