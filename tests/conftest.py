"""
Pytest configuration and shared fixtures.

This file registers custom pytest markers and command-line options, and
provides settings and PDF builders that keep tests independent of the
process environment.
"""

from datetime import date
import fitz  # PyMuPDF
import pytest
from src.core.config import Settings
from src.models.invoice import FieldSet
from src.services.field_sources import FieldSource, SourceContext

TODAY = date(2025, 1, 10)


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real cloud services"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring real cloud services"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def make_settings(**overrides) -> Settings:
    """Settings with every external service disabled unless overridden (alias names)"""
    values = {
        "OPENAI_API_KEY": None,
        "OCR_SPACE_API_KEY": None,
        "AZ_DI_ENDPOINT": None,
        "AZ_DI_API_KEY": None,
        "AZ_DI_MODEL_ID": "prebuilt-invoice",
        "EXTRACTION_DEBUG": False,
        "RASTERIZER_COMMAND": "pdftoppm",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_pdf(lines: list[str] | None = None) -> bytes:
    """Single-page PDF whose text layer holds the given lines (ASCII only)"""
    doc = fitz.open()
    page = doc.new_page()
    if lines:
        page.insert_text((72, 72), "\n".join(lines), fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


def shift_text(text: str, offset: int = 29) -> str:
    """Produce the shifted glyph encoding seen in one provider's text layer"""
    return "".join(chr(ord(ch) - offset) for ch in text)


class StaticSource(FieldSource):
    """Field source returning a fixed FieldSet, or raising a fixed error"""

    def __init__(self, kind, fields: FieldSet | None = None, error: Exception | None = None):
        self.kind = kind
        self.fields = fields or FieldSet()
        self.error = error
        self.contexts: list[SourceContext] = []

    def produce(self, context: SourceContext) -> FieldSet:
        self.contexts.append(context)
        if self.error:
            raise self.error
        return self.fields


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def today():
    return lambda: TODAY
