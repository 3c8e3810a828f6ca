"""
Error taxonomy for the invoice extraction pipeline.

Components raise these at their boundary; the pipeline decides which ones
end an invocation and which ones only disable a single field source.
"""


class InvoicePipelineError(Exception):
    """Base class for every error raised by pipeline components"""


class ConfigurationError(InvoicePipelineError):
    """A downstream component has no credentials or endpoint configured"""


class ExtractionError(InvoicePipelineError):
    """No usable text or structured result could be obtained"""


class ValidationError(InvoicePipelineError):
    """Mandatory invoice fields are still missing after arbitration"""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


class PollingTimeoutError(InvoicePipelineError, TimeoutError):
    """The document analysis poll loop exhausted its attempt budget"""


class TransportError(InvoicePipelineError):
    """An outbound call failed or returned a non-success status"""
