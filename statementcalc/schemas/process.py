"""
Pydantic schemas for the processing and reconciliation endpoints.

Wire fields are camelCase to match the calculation records the model
produces; Python attribute names stay snake_case.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class CamelModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""

    class Config:
        populate_by_name = True


class CalculationSchema(CamelModel):
    """A calculation record proposed for a statement row."""

    formula_name: str = Field("", alias="formulaName", description="Descriptive name of the calculation")
    row_name: str = Field("", alias="rowName", description="Statement row label, empty for unlabeled totals")
    year: str = Field(..., description="Fiscal period label")
    result_in_statement: Union[int, float, str] = Field(
        ..., alias="resultInStatement", description="Figure printed on the statement"
    )
    formula: str = Field(..., description="Arithmetic formula in accounting notation")
    entity_type: Optional[str] = Field(None, alias="entityType", description="Reporting entity, e.g. Group")


class VerdictResponse(CalculationSchema):
    """A calculation with its reconciliation outcome."""

    processed_calculation: Union[float, str] = Field(
        ..., alias="processedCalculation", description="Recomputed value, or \"Error\""
    )
    error: Optional[str] = Field(None, description="Evaluation error message")
    matched: bool = Field(..., description="Whether an OCR cell was found for the calculation")
    is_valid: bool = Field(..., alias="isValid", description="Whether the formula recomputes to the stated result")
    cell_id: Optional[str] = Field(None, alias="cellId", description="Matched OCR cell id")
    status: str = Field(..., description="verified, mismatched or unverified")


class BoundingBoxSchema(BaseModel):
    """Normalized bounding box."""

    top: float
    left: float
    width: float
    height: float


class CellVerdictResponse(CamelModel):
    """Overlay state of one OCR cell."""

    cell_id: str = Field(..., alias="cellId")
    row_index: Optional[int] = Field(None, alias="rowIndex")
    column_index: Optional[int] = Field(None, alias="columnIndex")
    word_text: str = Field("", alias="wordText", description="Text of the cell's own words")
    line_text: str = Field("", alias="lineText", description="Text of every word on the cell's line")
    bbox: BoundingBoxSchema = Field(..., description="Box in table-local coordinates")
    calculation: Optional[CalculationSchema] = Field(None, description="Matched calculation")
    is_valid: Optional[bool] = Field(None, alias="isValid")
    is_hovered: bool = Field(False, alias="isHovered")
    status: str = Field(..., description="unmatched, verified or mismatched")


class SkippedRecordResponse(BaseModel):
    """A calculation record rejected during parsing."""

    index: int = Field(..., description="Position in the payload, -1 when the payload itself is invalid")
    reason: str
    field: Optional[str] = None


class ReconciliationReportResponse(CamelModel):
    """Grouped calculation table and cell overlay."""

    periods: List[str] = Field(default_factory=list, description="Period keys, most recent first")
    active_period: Optional[str] = Field(None, alias="activePeriod")
    rows: Dict[str, List[VerdictResponse]] = Field(default_factory=dict)
    cells: List[CellVerdictResponse] = Field(default_factory=list)
    table_bounds: BoundingBoxSchema = Field(..., alias="tableBounds")
    skipped: List[SkippedRecordResponse] = Field(default_factory=list)
    degraded: List[str] = Field(default_factory=list, description="Inputs that were missing")
    summary: Dict[str, int] = Field(default_factory=dict)


class ForwardRequest(CamelModel):
    """Relay request carrying a statement image as a data URL."""

    base64_image: str = Field(..., alias="base64Image", description="data:<mime>;base64,<payload>")
    selected_option: Optional[str] = Field(None, alias="selectedOption", description="Statement type")
    is_multi_entity: bool = Field(False, alias="isMultiEntity")
    model: Optional[str] = Field(None, description="Model override")


class ForwardResponse(CamelModel):
    """Raw relay output: OCR blocks and parsed calculations."""

    text_blocks: List[Dict[str, Any]] = Field(default_factory=list, alias="textBlocks")
    calculations: List[CalculationSchema] = Field(default_factory=list)
    raw_calculations: Optional[str] = Field(None, alias="rawCalculations")
    skipped: List[SkippedRecordResponse] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict, description="Failed steps, keyed ocr or llm")


class ProcessResponse(ForwardResponse):
    """Relay output with its reconciliation report."""

    filename: Optional[str] = None
    statement_type: Optional[str] = Field(None, alias="statementType")
    report: ReconciliationReportResponse
    overlay: Optional[str] = Field(None, description="PNG overlay as a data URL")
    processing_time_ms: float = Field(..., alias="processingTimeMs")


class ReconcileRequest(CamelModel):
    """Reconciliation request over already-fetched inputs."""

    text_blocks: List[Dict[str, Any]] = Field(default_factory=list, alias="textBlocks")
    calculations: Union[List[Any], str, None] = Field(
        None, description="Calculation records, or raw model text holding a JSON array"
    )
    selected_period: Optional[str] = Field(None, alias="selectedPeriod")
    hovered: Optional[str] = Field(None, description="formulaName of the hovered calculation")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: bool = True
    error_code: str = Field(..., description="Error code, e.g. SC-903")
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
