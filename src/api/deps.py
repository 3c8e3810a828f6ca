from functools import lru_cache
from ..core.config import settings
from ..services.pipeline import InvoicePipeline


@lru_cache
def get_pipeline() -> InvoicePipeline:
    """Process-wide pipeline built from environment settings (override in tests)"""
    return InvoicePipeline(settings)
