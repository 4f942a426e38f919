"""
Processing API routes.

Provides the relay endpoints that forward a statement image to table
extraction and calculation generation, and the reconciliation endpoint
that cross-checks already-fetched results.
"""
import base64
import time
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, File, Form, Request, UploadFile

from statementcalc.config import get_settings
from statementcalc.exceptions import FileTooLargeError, NoInputError
from statementcalc.middleware.rate_limit import process_rate_limit
from statementcalc.schemas.process import (
    ErrorResponse,
    ForwardRequest,
    ForwardResponse,
    ProcessResponse,
    ReconcileRequest,
    ReconciliationReportResponse,
)
from statementcalc.services.calculation_grouper import CalculationRecord, SkippedRecord
from statementcalc.services.overlay_renderer import get_overlay_renderer
from statementcalc.services.reconciliation import ReconciliationReport, get_reconciliation_matcher
from statementcalc.services.sample_processor import decode_data_url, get_sample_processor

logger = structlog.get_logger(__name__)

router = APIRouter()


def _calculations_to_wire(records: List[CalculationRecord]) -> List[Dict[str, Any]]:
    return [record.to_dict() for record in records]


def _skipped_to_wire(skipped: List[SkippedRecord]) -> List[Dict[str, Any]]:
    return [{"index": s.index, "reason": s.reason, "field": s.field} for s in skipped]


def _report_to_response(report: ReconciliationReport) -> ReconciliationReportResponse:
    return ReconciliationReportResponse.model_validate(report.to_dict())


@router.post(
    "/api/forward",
    response_model=ForwardResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid image"},
        413: {"model": ErrorResponse, "description": "Image too large"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        502: {"model": ErrorResponse, "description": "OCR and calculation generation both failed"},
    },
    summary="Forward a statement image",
    description="Send a base64 data-URL image to table extraction and calculation generation concurrently.",
)
@process_rate_limit()
async def forward(request: Request, payload: ForwardRequest) -> ForwardResponse:
    """
    Relay one image to both providers.

    Args:
        payload: Data-URL image, statement type and entity flag.

    Returns:
        ForwardResponse with OCR blocks and parsed calculations. A failed
        step is reported in `errors` while the other step's data is kept.
    """
    image_bytes, media_type = decode_data_url(payload.base64_image)

    logger.info(
        "Forward request received",
        size=len(image_bytes),
        media_type=media_type,
        statement_type=payload.selected_option,
        is_multi_entity=payload.is_multi_entity,
    )

    result = await get_sample_processor().process(
        image_bytes,
        media_type,
        statement_type=payload.selected_option,
        is_multi_entity=payload.is_multi_entity,
        model=payload.model,
    )

    return ForwardResponse(
        text_blocks=result.text_blocks,
        calculations=_calculations_to_wire(result.calculations),
        raw_calculations=result.raw_calculations,
        skipped=_skipped_to_wire(result.skipped),
        errors=result.errors,
    )


@router.post(
    "/api/v1/process",
    response_model=ProcessResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid image"},
        413: {"model": ErrorResponse, "description": "Image too large"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        502: {"model": ErrorResponse, "description": "OCR and calculation generation both failed"},
    },
    summary="Process and reconcile a statement image",
    description="Upload a statement image, extract its table and calculations, and reconcile them.",
)
@process_rate_limit()
async def process_statement(
    request: Request,
    file: UploadFile = File(..., description="Statement image (PNG, JPEG, GIF, WebP or TIFF)"),
    statement_type: Optional[str] = Form(None, description="Statement type, e.g. Balance Sheet"),
    is_multi_entity: bool = Form(False, description="Whether the statement mixes Group and Company figures"),
    model: Optional[str] = Form(None, description="Model override"),
    selected_period: Optional[str] = Form(None, description="Period to overlay, defaults to the most recent"),
    include_overlay: bool = Form(False, description="Return a PNG overlay of the reconciled cells"),
) -> ProcessResponse:
    """
    Upload, relay and reconcile one statement image.

    Returns:
        ProcessResponse with the relay output, the reconciliation report
        and optionally the rendered overlay.
    """
    start_time = time.time()
    settings = get_settings()

    image_bytes = await file.read()
    if len(image_bytes) > settings.max_upload_size_bytes:
        raise FileTooLargeError(len(image_bytes), settings.max_upload_size_bytes)

    logger.info(
        "Statement uploaded",
        filename=file.filename,
        size=len(image_bytes),
        content_type=file.content_type,
        statement_type=statement_type,
    )

    result = await get_sample_processor().process(
        image_bytes,
        file.content_type or "application/octet-stream",
        statement_type=statement_type,
        is_multi_entity=is_multi_entity,
        model=model,
    )

    report = get_reconciliation_matcher().reconcile(
        result.text_blocks,
        result.calculations,
        selected_period=selected_period,
    )

    overlay = None
    if include_overlay:
        png = get_overlay_renderer().render(image_bytes, report)
        overlay = "data:image/png;base64," + base64.b64encode(png).decode("ascii")

    processing_time_ms = (time.time() - start_time) * 1000

    logger.info(
        "Statement processed",
        filename=file.filename,
        periods=len(report.periods),
        errors=list(result.errors),
        processing_time_ms=round(processing_time_ms, 2),
    )

    return ProcessResponse(
        filename=file.filename,
        statement_type=statement_type,
        text_blocks=result.text_blocks,
        calculations=_calculations_to_wire(result.calculations),
        raw_calculations=result.raw_calculations,
        skipped=_skipped_to_wire(result.skipped),
        errors=result.errors,
        report=_report_to_response(report),
        overlay=overlay,
        processing_time_ms=processing_time_ms,
    )


@router.post(
    "/api/v1/reconcile",
    response_model=ReconciliationReportResponse,
    responses={
        422: {"model": ErrorResponse, "description": "No OCR blocks or calculations supplied"},
    },
    summary="Reconcile OCR blocks against calculations",
    description="Cross-check calculations against OCR table cells. Makes no external calls.",
)
async def reconcile_statement(payload: ReconcileRequest) -> ReconciliationReportResponse:
    """
    Reconcile already-fetched inputs.

    Args:
        payload: OCR blocks, calculations, and the caller's period
            selection and hovered calculation.

    Returns:
        ReconciliationReportResponse for the selected period.

    Raises:
        NoInputError: If both inputs are empty.
    """
    if not payload.text_blocks and not payload.calculations:
        raise NoInputError()

    report = get_reconciliation_matcher().reconcile(
        payload.text_blocks,
        payload.calculations,
        selected_period=payload.selected_period,
        hovered=payload.hovered,
    )

    return _report_to_response(report)
