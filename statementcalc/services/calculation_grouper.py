"""
Calculation grouper service.

Parses the calculation records proposed by the language model and
partitions them into fiscal periods for display and lookup.
"""
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import structlog

from statementcalc.exceptions import MalformedRecordError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CalculationRecord:
    """A formula-and-result pair claimed to reconcile a statement row."""

    formula_name: str
    row_name: str
    year: str
    result_in_statement: Union[int, float, str]
    formula: str
    entity_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalculationRecord":
        """
        Build a record from the model's camelCase JSON object.

        Raises:
            MalformedRecordError: If a required field is missing or invalid.
        """
        if not isinstance(data, Mapping):
            raise MalformedRecordError("Calculation record must be an object")

        formula = data.get("formula")
        if not isinstance(formula, str) or not formula.strip():
            raise MalformedRecordError("Missing formula", field="formula")

        year = data.get("year")
        if year is None or isinstance(year, bool) or str(year).strip() == "":
            raise MalformedRecordError("Missing year", field="year")

        result = _coerce_result(data.get("resultInStatement"))

        entity_type = data.get("entityType")
        if entity_type is not None and not isinstance(entity_type, str):
            raise MalformedRecordError("entityType must be a string", field="entityType")

        return cls(
            formula_name=str(data.get("formulaName") or ""),
            row_name=str(data.get("rowName") or ""),
            year=str(year).strip(),
            result_in_statement=result,
            formula=formula,
            entity_type=entity_type or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire shape."""
        data: Dict[str, Any] = {
            "formulaName": self.formula_name,
            "rowName": self.row_name,
            "year": self.year,
            "resultInStatement": self.result_in_statement,
            "formula": self.formula,
        }
        if self.entity_type is not None:
            data["entityType"] = self.entity_type
        return data


@dataclass(frozen=True)
class SkippedRecord:
    """A calculation record rejected during parsing."""

    index: int
    reason: str
    field: Optional[str] = None


class CalculationGrouper:
    """
    Groups calculation records by fiscal period.

    The key is the bare year when all records share one entity type,
    otherwise "<year> (<entity type>)". Groups are ordered most recent
    period first.
    """

    UNSPECIFIED_ENTITY = "Unspecified"
    FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
    YEAR_PATTERN = re.compile(r"(?<!\d)(\d{4})(?!\d)")
    LEADING_YEAR_PATTERN = re.compile(r"^\s*(\d+)")

    def parse_calculations(
        self, payload: Union[str, Iterable[Any], None]
    ) -> Tuple[List[CalculationRecord], List[SkippedRecord]]:
        """
        Parse calculation records, skipping malformed ones.

        Args:
            payload: A list of record dicts, a JSON string, or raw model
                text containing a JSON array.

        Returns:
            Tuple of (valid records, skipped records).
        """
        if payload is None:
            return [], []

        if isinstance(payload, str):
            try:
                items = self._load_json_array(payload)
            except MalformedRecordError as e:
                logger.warning("Calculation payload is not a JSON array", error=e.message)
                return [], [SkippedRecord(index=-1, reason=e.message)]
        else:
            items = list(payload)

        records: List[CalculationRecord] = []
        skipped: List[SkippedRecord] = []

        for index, item in enumerate(items):
            if isinstance(item, CalculationRecord):
                records.append(item)
                continue
            try:
                records.append(CalculationRecord.from_dict(item))
            except MalformedRecordError as e:
                skipped.append(SkippedRecord(index=index, reason=e.message, field=e.field))

        if skipped:
            logger.warning(
                "Skipped malformed calculation records",
                skipped=len(skipped),
                parsed=len(records),
            )

        return records, skipped

    def period_key(self, record: CalculationRecord, mixed_entities: bool) -> str:
        """Get the grouping key for a record."""
        if not mixed_entities:
            return record.year
        return f"{record.year} ({record.entity_type or self.UNSPECIFIED_ENTITY})"

    def has_mixed_entities(self, records: List[CalculationRecord]) -> bool:
        """Check whether records declare more than one entity type."""
        return len({record.entity_type for record in records}) > 1

    def group_by_period(
        self, records: Iterable[CalculationRecord]
    ) -> Dict[str, List[CalculationRecord]]:
        """
        Partition records by period, most recent first.

        Args:
            records: Calculation records.

        Returns:
            Ordered mapping of period key to records in input order.
        """
        records = list(records)
        mixed_entities = self.has_mixed_entities(records)

        groups: Dict[str, List[CalculationRecord]] = {}
        for record in records:
            groups.setdefault(self.period_key(record, mixed_entities), []).append(record)

        return {key: groups[key] for key in self.sort_period_keys(groups.keys())}

    def sort_period_keys(self, keys: Iterable[str]) -> List[str]:
        """
        Order period keys for display.

        Keys with a year sort first, descending by year, ties in
        ascending text order. The year is the first four-digit number in
        the key (so "31 December 2022" sorts as 2022), else its leading
        integer. Keys without one follow in text order.
        """
        def sort_key(key: str) -> Tuple[int, int, str]:
            match = self.YEAR_PATTERN.search(key) or self.LEADING_YEAR_PATTERN.match(key)
            if match:
                return (0, -int(match.group(1)), key)
            return (1, 0, key)

        return sorted(keys, key=sort_key)

    def resolve_period(
        self, groups: Mapping[str, Any], selected: Optional[str] = None
    ) -> Optional[str]:
        """
        Pick the active period.

        Returns the selection when it names a group, otherwise the first
        (most recent) group, or None when there are no groups.
        """
        if selected and selected in groups:
            return selected
        return next(iter(groups), None)

    def _load_json_array(self, text: str) -> List[Any]:
        """Extract a JSON array from raw model output."""
        cleaned = self.FENCE_PATTERN.sub("", text.strip())

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            start = cleaned.find("[")
            end = cleaned.rfind("]")
            if start == -1 or end <= start:
                raise MalformedRecordError("No JSON array found in calculation payload")
            try:
                data = json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError as e:
                raise MalformedRecordError(f"Invalid calculation JSON: {e.msg}")

        if not isinstance(data, list):
            raise MalformedRecordError("Calculation payload must be a JSON array")
        return data


def _coerce_result(value: Any) -> Union[int, float, str]:
    """Validate a resultInStatement value."""
    if isinstance(value, bool) or value is None:
        raise MalformedRecordError("Missing resultInStatement", field="resultInStatement")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise MalformedRecordError("resultInStatement must be finite", field="resultInStatement")
        return value
    if isinstance(value, str) and re.search(r"\d", value):
        # Kept as text and normalized at comparison time, e.g. "(1,200)"
        return value
    raise MalformedRecordError("resultInStatement must be numeric", field="resultInStatement")


# Singleton instance
_grouper_instance: Optional[CalculationGrouper] = None


def get_calculation_grouper() -> CalculationGrouper:
    """Get singleton CalculationGrouper instance."""
    global _grouper_instance
    if _grouper_instance is None:
        _grouper_instance = CalculationGrouper()
    return _grouper_instance


def parse_calculations(
    payload: Union[str, Iterable[Any], None]
) -> Tuple[List[CalculationRecord], List[SkippedRecord]]:
    """Parse calculation records using the shared grouper."""
    return get_calculation_grouper().parse_calculations(payload)


def group_by_period(records: Iterable[CalculationRecord]) -> Dict[str, List[CalculationRecord]]:
    """Group calculation records using the shared grouper."""
    return get_calculation_grouper().group_by_period(records)
