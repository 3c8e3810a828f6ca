"""
Common capability shared by every field extraction source.

The pipeline iterates the configured sources uniformly; each one produces a
FieldSet or raises an InvoicePipelineError that disables only that source.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from ..models.invoice import FieldSet, ProviderHint, SourceKind


@dataclass(frozen=True)
class SourceContext:
    """Everything a source may read for one invocation"""

    text: str  # working text: text layer, or OCR text when it replaced the layer
    raw_text: str  # text layer exactly as embedded in the PDF
    document_bytes: bytes
    hint: ProviderHint | None = None


class FieldSource(ABC):
    kind: SourceKind

    @abstractmethod
    def produce(self, context: SourceContext) -> FieldSet:
        """
        Produce candidate invoice fields.

        Raises:
            ConfigurationError: the source is not configured
            ExtractionError / TransportError / PollingTimeoutError: the source failed
        """
        pass
