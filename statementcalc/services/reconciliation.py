"""
Reconciliation matcher.

Cross-validates model-proposed calculations against OCR table cells:
- Numeric gate: the cell's number equals the calculation's stated result
- Label gate: the cell's line contains the row name, or carries no
  label at all when the row name is empty
- Validity: the formula recomputes to the stated result

Every operation is a pure function of its arguments. Selection and
hover state belong to the caller and are passed in on each call.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import structlog

from statementcalc.services.calculation_grouper import (
    CalculationGrouper,
    CalculationRecord,
    SkippedRecord,
    get_calculation_grouper,
)
from statementcalc.services.cell_index import BlockInput, BoundingBox, CellIndex, OCRBlock
from statementcalc.services.expression_evaluator import (
    EvaluationError,
    EvaluationResult,
    ExpressionEvaluator,
    get_expression_evaluator,
)
from statementcalc.services.numeric_parser import NumericParser, get_numeric_parser

logger = structlog.get_logger(__name__)


class VerdictStatus(str, Enum):
    """Display state of a calculation or cell."""
    VERIFIED = "verified"        # Found on the statement and recomputes
    MISMATCHED = "mismatched"    # Formula does not recompute (or errors)
    UNVERIFIED = "unverified"    # Recomputes, but no OCR cell was found
    UNMATCHED = "unmatched"      # OCR cell with no calculation


@dataclass(frozen=True)
class Verdict:
    """Outcome of checking one calculation, optionally paired with a cell."""

    calculation: CalculationRecord
    matched: bool
    calculated_value: EvaluationResult
    is_valid: bool
    cell_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return isinstance(self.calculated_value, EvaluationError)

    @property
    def status(self) -> VerdictStatus:
        if not self.is_valid:
            return VerdictStatus.MISMATCHED
        if self.matched:
            return VerdictStatus.VERIFIED
        return VerdictStatus.UNVERIFIED

    def to_dict(self) -> Dict[str, Any]:
        calculated: Any = self.calculated_value
        if isinstance(calculated, EvaluationError):
            calculated = str(calculated)
        return {
            **self.calculation.to_dict(),
            "processedCalculation": calculated,
            "error": self.calculated_value.message if self.is_error else None,
            "matched": self.matched,
            "isValid": self.is_valid,
            "cellId": self.cell_id,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class CellVerdict:
    """Overlay state of one OCR cell."""

    cell_id: str
    row_index: Optional[int]
    column_index: Optional[int]
    word_text: str
    line_text: str
    bbox: BoundingBox
    calculation: Optional[CalculationRecord] = None
    is_valid: Optional[bool] = None
    is_hovered: bool = False

    @property
    def status(self) -> VerdictStatus:
        if self.calculation is None:
            return VerdictStatus.UNMATCHED
        return VerdictStatus.VERIFIED if self.is_valid else VerdictStatus.MISMATCHED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cellId": self.cell_id,
            "rowIndex": self.row_index,
            "columnIndex": self.column_index,
            "wordText": self.word_text,
            "lineText": self.line_text,
            "bbox": self.bbox.to_dict(),
            "calculation": self.calculation.to_dict() if self.calculation else None,
            "isValid": self.is_valid,
            "isHovered": self.is_hovered,
            "status": self.status.value,
        }


@dataclass
class ReconciliationReport:
    """Everything needed to render the grouped table and the image overlay."""

    periods: List[str]
    active_period: Optional[str]
    rows: Dict[str, List[Verdict]]
    cells: List[CellVerdict]
    table_bounds: BoundingBox
    skipped: List[SkippedRecord] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)

    @property
    def active_rows(self) -> List[Verdict]:
        if self.active_period is None:
            return []
        return self.rows.get(self.active_period, [])

    @property
    def is_empty(self) -> bool:
        return not self.rows and not self.cells

    def summary(self) -> Dict[str, int]:
        """Count verdicts by status across all periods."""
        counts = {status.value: 0 for status in VerdictStatus if status != VerdictStatus.UNMATCHED}
        for verdicts in self.rows.values():
            for verdict in verdicts:
                counts[verdict.status.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "periods": self.periods,
            "activePeriod": self.active_period,
            "rows": {
                period: [verdict.to_dict() for verdict in verdicts]
                for period, verdicts in self.rows.items()
            },
            "cells": [cell.to_dict() for cell in self.cells],
            "tableBounds": self.table_bounds.to_dict(),
            "skipped": [
                {"index": s.index, "reason": s.reason, "field": s.field} for s in self.skipped
            ],
            "degraded": self.degraded,
            "summary": self.summary(),
        }


Hovered = Union[CalculationRecord, str, None]


class ReconciliationMatcher:
    """
    Pairs OCR cells with calculation records and grades each pair.

    When several records pass both gates for one cell, the first record
    in list order wins; no further tie-break is applied.
    """

    def __init__(
        self,
        evaluator: Optional[ExpressionEvaluator] = None,
        numeric_parser: Optional[NumericParser] = None,
        grouper: Optional[CalculationGrouper] = None,
    ):
        """Initialize matcher with its collaborators."""
        self._evaluator = evaluator or get_expression_evaluator()
        self._parser = numeric_parser or get_numeric_parser()
        self._grouper = grouper or get_calculation_grouper()

    def match(
        self,
        cell: OCRBlock,
        calculations: Sequence[CalculationRecord],
        index: CellIndex,
    ) -> Optional[CalculationRecord]:
        """
        Find the calculation a cell corresponds to.

        Args:
            cell: CELL block to match.
            calculations: Candidate records, in priority order.
            index: Index the cell belongs to.

        Returns:
            The first record passing both gates, or None.
        """
        position = self._match_position(index.word_text(cell), index.line_text(cell), calculations)
        return calculations[position] if position is not None else None

    def match_text(
        self,
        cell_text: str,
        line_text: str,
        calculations: Sequence[CalculationRecord],
    ) -> Optional[CalculationRecord]:
        """Match using already-resolved cell and line text."""
        position = self._match_position(cell_text, line_text, calculations)
        return calculations[position] if position is not None else None

    def verify(self, calculation: CalculationRecord, cell_id: Optional[str] = None) -> Verdict:
        """
        Recompute a calculation's formula and compare it to its result.

        Validity does not depend on whether a cell was found.

        Args:
            calculation: Record to check.
            cell_id: Id of the matched OCR cell, if any.

        Returns:
            Verdict for the record.
        """
        calculated = self._evaluator.evaluate(calculation.formula)

        if isinstance(calculated, EvaluationError):
            is_valid = False
        else:
            is_valid = self._parser.numbers_equal(calculated, calculation.result_in_statement)

        return Verdict(
            calculation=calculation,
            matched=cell_id is not None,
            calculated_value=calculated,
            is_valid=is_valid,
            cell_id=cell_id,
        )

    def reconcile(
        self,
        text_blocks: Optional[Iterable[BlockInput]],
        calculations: Union[str, Iterable[Any], None],
        selected_period: Optional[str] = None,
        hovered: Hovered = None,
    ) -> ReconciliationReport:
        """
        Reconcile a full OCR result against a calculation list.

        Either input may be missing; the report then carries whatever
        can be computed and names the absent input in `degraded`.

        Args:
            text_blocks: OCR blocks (provider dicts or OCRBlock).
            calculations: Calculation records, dicts, or raw model text.
            selected_period: Caller-owned period selection.
            hovered: Caller-owned hovered calculation (record or formula name).

        Returns:
            ReconciliationReport for the active period.
        """
        index = text_blocks if isinstance(text_blocks, CellIndex) else CellIndex(text_blocks)
        records, skipped = self._grouper.parse_calculations(calculations)

        degraded: List[str] = []
        if index.is_empty:
            degraded.append("ocr")
        if not records:
            degraded.append("calculations")

        groups = self._grouper.group_by_period(records)
        active_period = self._grouper.resolve_period(groups, selected_period)

        cell_texts = [(cell, index.word_text(cell), index.line_text(cell)) for cell in index.cells]

        rows: Dict[str, List[Verdict]] = {}
        cells: List[CellVerdict] = []

        for period, period_records in groups.items():
            matched_cells: Dict[int, str] = {}
            period_cells: List[CellVerdict] = []

            for cell, word_text, line_text in cell_texts:
                position = self._match_position(word_text, line_text, period_records)
                record = period_records[position] if position is not None else None
                if position is not None:
                    matched_cells.setdefault(position, cell.id)

                if period == active_period:
                    period_cells.append(self._cell_verdict(index, cell, word_text, line_text, record, hovered))

            rows[period] = [
                self.verify(record, matched_cells.get(position))
                for position, record in enumerate(period_records)
            ]
            if period == active_period:
                cells = period_cells

        if not groups:
            cells = [
                self._cell_verdict(index, cell, word_text, line_text, None, hovered)
                for cell, word_text, line_text in cell_texts
            ]

        report = ReconciliationReport(
            periods=list(groups.keys()),
            active_period=active_period,
            rows=rows,
            cells=cells,
            table_bounds=index.table_bounds,
            skipped=skipped,
            degraded=degraded,
        )

        logger.info(
            "Reconciliation complete",
            periods=len(report.periods),
            active_period=active_period,
            cells=len(cells),
            matched_cells=sum(1 for c in cells if c.calculation is not None),
            degraded=degraded,
            **report.summary(),
        )

        return report

    def _match_position(
        self,
        cell_text: str,
        line_text: str,
        calculations: Sequence[CalculationRecord],
    ) -> Optional[int]:
        """Get the position of the first record passing both gates."""
        for position, record in enumerate(calculations):
            if not self._parser.numbers_equal(cell_text, record.result_in_statement):
                continue
            if self._passes_label_gate(record, line_text):
                return position
        return None

    def _passes_label_gate(self, record: CalculationRecord, line_text: str) -> bool:
        """Check the row label against the cell's line."""
        if record.row_name:
            return record.row_name in line_text
        # Unlabeled total rows carry nothing but numbers
        return not self._parser.has_alphabetic(line_text)

    def _cell_verdict(
        self,
        index: CellIndex,
        cell: OCRBlock,
        word_text: str,
        line_text: str,
        record: Optional[CalculationRecord],
        hovered: Hovered,
    ) -> CellVerdict:
        is_valid = self.verify(record).is_valid if record is not None else None
        return CellVerdict(
            cell_id=cell.id,
            row_index=cell.row_index,
            column_index=cell.column_index,
            word_text=word_text,
            line_text=line_text,
            bbox=index.to_table_local(cell.bbox),
            calculation=record,
            is_valid=is_valid,
            is_hovered=record is not None and _is_hovered(record, hovered),
        )


def _is_hovered(record: CalculationRecord, hovered: Hovered) -> bool:
    if hovered is None:
        return False
    if isinstance(hovered, CalculationRecord):
        return record == hovered
    return record.formula_name == hovered


# Singleton instance
_matcher_instance: Optional[ReconciliationMatcher] = None


def get_reconciliation_matcher() -> ReconciliationMatcher:
    """Get singleton ReconciliationMatcher instance."""
    global _matcher_instance
    if _matcher_instance is None:
        _matcher_instance = ReconciliationMatcher()
    return _matcher_instance


def match(
    cell: OCRBlock, calculations: Sequence[CalculationRecord], index: CellIndex
) -> Optional[CalculationRecord]:
    """Match a cell using the shared matcher."""
    return get_reconciliation_matcher().match(cell, calculations, index)


def verify(calculation: CalculationRecord) -> Verdict:
    """Verify a calculation using the shared matcher."""
    return get_reconciliation_matcher().verify(calculation)


def reconcile(
    text_blocks: Optional[Iterable[BlockInput]],
    calculations: Union[str, Iterable[Any], None],
    selected_period: Optional[str] = None,
    hovered: Hovered = None,
) -> ReconciliationReport:
    """Reconcile inputs using the shared matcher."""
    return get_reconciliation_matcher().reconcile(text_blocks, calculations, selected_period, hovered)
