from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from loguru import logger
from ..deps import get_pipeline
from ...models.invoice import ExtractionResult
from ...services.pipeline import InvoicePipeline

router = APIRouter(prefix="/invoices", tags=["invoices"])

FAILURE_STATUS = {"type_mismatch": 415}


@router.post("/extract", response_model=ExtractionResult)
async def extract(
    request: Request,
    file: UploadFile = File(None),
    pipeline: InvoicePipeline = Depends(get_pipeline),
):
    """
    Extract amount, currency, due date, provider and charge type from an invoice PDF.

    Accepts either:
    - multipart/form-data (file upload via form)
    - application/pdf (raw binary body, e.g. from an automated import)

    Returns 200 with the arbitrated record, 415 for non-PDF documents and
    422 when no readable text or no complete record could be extracted.
    """
    if file:
        content = await file.read()
        mime_type = file.content_type or ""
        filename = file.filename
    else:
        content = await request.body()
        mime_type = request.headers.get("content-type", "")
        filename = None
        if not content:
            raise HTTPException(status_code=422, detail="No file provided (either multipart or raw body)")

    # The pipeline blocks on OCR and cloud calls
    result = await run_in_threadpool(pipeline.extract, content, mime_type, filename)
    if result.ok:
        return result

    logger.info("Invoice extraction failed", error=result.error, error_type=result.error_type)
    return JSONResponse(
        status_code=FAILURE_STATUS.get(result.error_type, 422),
        content=result.model_dump(mode="json"),
    )
