"""
Tests for Azure Document Intelligence field extraction.

The REST submit-then-poll protocol is mocked with respx; polling sleeps are
recorded instead of slept.
"""

from decimal import Decimal
import httpx
import pytest
import respx
from src.core.errors import ConfigurationError, ExtractionError, PollingTimeoutError, TransportError
from src.models.invoice import SourceKind
from src.services.field_sources import SourceContext
from src.services.form_recognizer import CloudDocumentFieldService, find_field
from conftest import make_settings

ENDPOINT = "https://di.example.com"
ANALYZE_URL = f"{ENDPOINT}/documentintelligence/documentModels/prebuilt-invoice:analyze"
OPERATION_URL = f"{ENDPOINT}/documentintelligence/documentModels/prebuilt-invoice/analyzeResults/op-1"

PREBUILT_FIELDS = {
    "VendorName": {"type": "string", "valueString": "Példa Energia Zrt.", "content": "Példa Energia Zrt."},
    "AmountDue": {
        "type": "currency",
        "valueCurrency": {"amount": 12500.0, "currencyCode": "HUF", "currencySymbol": "Ft"},
        "content": "12 500 Ft",
    },
    "InvoiceTotal": {
        "type": "currency",
        "valueCurrency": {"amount": 99999.0, "currencyCode": "HUF"},
        "content": "99 999 Ft",
    },
    "DueDate": {"type": "date", "valueDate": "2025-03-15", "content": "2025.03.15"},
}


def succeeded(fields: dict) -> dict:
    return {
        "status": "succeeded",
        "analyzeResult": {
            "apiVersion": "2024-11-30",
            "modelId": "prebuilt-invoice",
            "content": "",
            "documents": [{"docType": "invoice", "confidence": 0.93, "fields": fields}],
        },
    }


def running() -> httpx.Response:
    return httpx.Response(200, json={"status": "running"})


def build_service(sleeps: list, **overrides) -> CloudDocumentFieldService:
    values = {"AZ_DI_ENDPOINT": ENDPOINT, "AZ_DI_API_KEY": "di-key"}
    values.update(overrides)
    return CloudDocumentFieldService(make_settings(**values), httpx.Client(), sleep=sleeps.append)


def mock_submit():
    return respx.post(ANALYZE_URL).mock(
        return_value=httpx.Response(202, headers={"Operation-Location": OPERATION_URL})
    )


@respx.mock
def test_submit_then_poll_until_succeeded():
    submit = mock_submit()
    poll = respx.get(OPERATION_URL).mock(
        side_effect=[running(), running(), httpx.Response(200, json=succeeded(PREBUILT_FIELDS))]
    )
    sleeps = []

    fields = build_service(sleeps).extract_invoice_fields(b"%PDF-1.7")

    request = submit.calls[0].request
    assert request.url.params["api-version"] == "2024-11-30"
    assert request.headers["Ocp-Apim-Subscription-Key"] == "di-key"
    assert request.headers["Content-Type"] == "application/pdf"
    assert request.read() == b"%PDF-1.7"
    assert poll.call_count == 3
    assert sleeps == [1.0, 1.0, 1.0]

    assert fields.amount == Decimal("12500")
    assert fields.currency == "HUF"
    assert fields.due_date == "2025-03-15"
    assert fields.provider_name == "Példa Energia Zrt."


@respx.mock
def test_poll_budget_exhausted_raises_timeout():
    mock_submit()
    poll = respx.get(OPERATION_URL).mock(return_value=running())
    sleeps = []

    with pytest.raises(PollingTimeoutError) as excinfo:
        build_service(sleeps).analyze(b"%PDF")

    assert isinstance(excinfo.value, TimeoutError)
    assert poll.call_count == 12
    assert len(sleeps) == 12


@respx.mock
def test_failed_analysis_raises_extraction_error():
    mock_submit()
    respx.get(OPERATION_URL).mock(
        return_value=httpx.Response(200, json={"status": "failed", "error": {"message": "Corrupt file"}})
    )

    with pytest.raises(ExtractionError, match="Corrupt file"):
        build_service([]).analyze(b"%PDF")


@respx.mock
def test_submit_without_operation_location_raises_transport_error():
    respx.post(ANALYZE_URL).mock(return_value=httpx.Response(202))

    with pytest.raises(TransportError, match="Operation-Location"):
        build_service([]).analyze(b"%PDF")


@respx.mock
def test_submit_http_error_raises_transport_error():
    respx.post(ANALYZE_URL).mock(return_value=httpx.Response(401, json={"error": {"code": "401"}}))

    with pytest.raises(TransportError, match="401"):
        build_service([]).analyze(b"%PDF")


def test_unconfigured_service_raises_configuration_error():
    service = CloudDocumentFieldService(make_settings(), httpx.Client(), sleep=lambda _: None)

    assert service.configured is False
    with pytest.raises(ConfigurationError):
        service.produce(SourceContext(text="", raw_text="", document_bytes=b"%PDF"))


@respx.mock
def test_custom_model_labels_are_matched_and_parsed():
    url = f"{ENDPOINT}/documentintelligence/documentModels/miho-custom:analyze"
    respx.post(url).mock(return_value=httpx.Response(202, headers={"Operation-Location": OPERATION_URL}))
    respx.get(OPERATION_URL).mock(
        return_value=httpx.Response(
            200,
            json=succeeded({
                "Szolgáltató neve": {"type": "string", "valueString": "MIHŐ Kft.", "content": "MIHŐ Kft."},
                "Fizetendő összeg": {"type": "string", "valueString": "23.456 Ft", "content": "23.456 Ft"},
                "Fizetési határidő": {"type": "string", "valueString": "2025.04.10", "content": "2025.04.10"},
            }),
        )
    )

    service = build_service([], AZ_DI_MODEL_ID="miho-custom")
    fields = service.produce(SourceContext(text="", raw_text="", document_bytes=b"%PDF"))

    assert service.kind == SourceKind.CLOUD_DOCUMENT
    assert fields.amount == Decimal("23456")
    assert fields.currency == "HUF"
    assert fields.due_date == "2025-04-10"
    assert fields.provider_name == "MIHŐ Kft."


@respx.mock
def test_invoice_total_used_when_amount_due_missing():
    mock_submit()
    fields = {k: v for k, v in PREBUILT_FIELDS.items() if k != "AmountDue"}
    respx.get(OPERATION_URL).mock(return_value=httpx.Response(200, json=succeeded(fields)))

    result = build_service([]).extract_invoice_fields(b"%PDF")

    assert result.amount == Decimal("99999")


@respx.mock
def test_no_documents_yields_empty_fields():
    mock_submit()
    payload = succeeded({})
    payload["analyzeResult"]["documents"] = []
    respx.get(OPERATION_URL).mock(return_value=httpx.Response(200, json=payload))

    result = build_service([]).extract_invoice_fields(b"%PDF")

    assert result.amount is None
    assert result.provider_name is None


def test_find_field_prefers_exact_name():
    fields = {"AmountDue": "exact", "Fizetendő összeg (bruttó)": "label"}

    assert find_field(fields, "amount_due") == "exact"
    assert find_field({"Fizetendő összeg (bruttó)": "label"}, "amount_due") == "label"
    assert find_field({"Egyéb": "x"}, "amount_due") is None

