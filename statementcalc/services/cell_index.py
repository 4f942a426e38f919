"""
Cell index service for OCR table geometry.

Rebuilds table structure from the flat block list returned by table
extraction: CELL blocks reference their WORD blocks by id, and every
block carries a bounding box in page-normalized [0, 1] coordinates.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class BlockType:
    """OCR block type identifiers used by the index."""
    CELL = "CELL"
    WORD = "WORD"


@dataclass(frozen=True)
class BoundingBox:
    """Bounding box in page-normalized coordinates."""

    top: float = 0.0
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def center_y(self) -> float:
        return self.top + self.height / 2

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_dict(self) -> Dict[str, float]:
        return {
            "top": self.top,
            "left": self.left,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "BoundingBox":
        if not data:
            return cls()
        return cls(
            top=float(_pick(data, "Top", "top", default=0.0) or 0.0),
            left=float(_pick(data, "Left", "left", default=0.0) or 0.0),
            width=float(_pick(data, "Width", "width", default=0.0) or 0.0),
            height=float(_pick(data, "Height", "height", default=0.0) or 0.0),
        )


@dataclass
class OCRBlock:
    """A single block returned by table extraction."""

    id: str
    block_type: str
    bbox: BoundingBox = field(default_factory=BoundingBox)
    child_ids: List[str] = field(default_factory=list)
    row_index: Optional[int] = None
    column_index: Optional[int] = None
    text: Optional[str] = None

    @property
    def is_cell(self) -> bool:
        return self.block_type == BlockType.CELL

    @property
    def is_word(self) -> bool:
        return self.block_type == BlockType.WORD

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OCRBlock":
        """
        Build a block from the provider's response shape.

        Accepts both the provider's PascalCase keys (BlockType, Id,
        Geometry.BoundingBox, Relationships, RowIndex, ColumnIndex, Text)
        and snake_case equivalents.
        """
        geometry = _pick(data, "Geometry", "geometry", default={}) or {}
        bbox_data = _pick(geometry, "BoundingBox", "boundingBox", "bounding_box", default=None)
        if bbox_data is None:
            bbox_data = _pick(data, "bbox", "bounding_box", default=None)

        child_ids: List[str] = []
        for relationship in _pick(data, "Relationships", "relationships", default=[]) or []:
            if isinstance(relationship, str):
                child_ids.append(relationship)
                continue
            rel_type = _pick(relationship, "Type", "type", default=None)
            if rel_type not in (None, "CHILD"):
                continue
            child_ids.extend(_pick(relationship, "Ids", "ids", default=[]) or [])

        row_index = _pick(data, "RowIndex", "rowIndex", "row_index", default=None)
        column_index = _pick(data, "ColumnIndex", "columnIndex", "column_index", default=None)

        return cls(
            id=str(_pick(data, "Id", "id", default="") or ""),
            block_type=str(_pick(data, "BlockType", "blockType", "block_type", default="") or "").upper(),
            bbox=BoundingBox.from_dict(bbox_data),
            child_ids=[str(child_id) for child_id in child_ids],
            row_index=int(row_index) if row_index is not None else None,
            column_index=int(column_index) if column_index is not None else None,
            text=_pick(data, "Text", "text", default=None),
        )


BlockInput = Union[OCRBlock, Mapping[str, Any]]


class CellIndex:
    """
    Lookup structure over the CELL and WORD blocks of one OCR result.

    Provides:
    - cells_by_row: CELL blocks bucketed by row index
    - word_text: a cell's own words, in relationship order
    - line_text: every word on the cell's visual line, left to right
    - table_bounds: the box enclosing all cells
    """

    def __init__(self, blocks: Optional[Iterable[BlockInput]] = None):
        """
        Build the index.

        Args:
            blocks: OCR blocks as OCRBlock objects or provider dicts.
                None or an empty list yields an empty index.
        """
        self.cells: List[OCRBlock] = []
        self.words: List[OCRBlock] = []
        self._words_by_id: Dict[str, OCRBlock] = {}
        self._cells_by_id: Dict[str, OCRBlock] = {}

        for block in blocks or []:
            parsed = block if isinstance(block, OCRBlock) else OCRBlock.from_dict(block)
            if not parsed.id:
                logger.warning("Skipping OCR block without id", block_type=parsed.block_type)
                continue
            if parsed.is_cell:
                self.cells.append(parsed)
                self._cells_by_id[parsed.id] = parsed
            elif parsed.is_word:
                self.words.append(parsed)
                self._words_by_id[parsed.id] = parsed

        # Reading order for line reconstruction
        self._words_left_to_right = sorted(self.words, key=lambda word: word.bbox.left)

        self.cells_by_row = self._bucket_by_row(self.cells)
        self.table_bounds = self._compute_table_bounds(self.cells)

        logger.debug(
            "Cell index built",
            cells=len(self.cells),
            words=len(self.words),
            rows=len(self.cells_by_row),
        )

    @property
    def is_empty(self) -> bool:
        """True when no table was detected."""
        return not self.cells

    def get_cell(self, cell_id: str) -> Optional[OCRBlock]:
        """Get a cell by id."""
        return self._cells_by_id.get(cell_id)

    def word_text(self, cell: OCRBlock) -> str:
        """
        Text of the words a cell references, in relationship order.

        The provider's order is trusted as reading order, which is
        occasionally wrong for multi-line cells; prefer line_text for
        matching.
        """
        texts = []
        for word_id in cell.child_ids:
            word = self._words_by_id.get(word_id)
            if word is not None and word.text:
                texts.append(word.text)
        return " ".join(texts)

    def line_text(self, cell: OCRBlock) -> str:
        """
        Text of every word horizontally aligned with a cell.

        A word is on the line when its vertical span overlaps the band
        center +/- height/2 of the cell. Words are joined left to right,
        which recovers the row label to the left of a numeric cell even
        though it belongs to a different CELL block.
        """
        half_height = cell.bbox.height / 2
        band_top = cell.bbox.center_y - half_height
        band_bottom = cell.bbox.center_y + half_height

        return " ".join(
            word.text
            for word in self._words_left_to_right
            if word.text and word.bbox.top < band_bottom and word.bbox.bottom > band_top
        )

    def row_cells(self, row_index: int) -> List[OCRBlock]:
        """Get the cells of a table row, ordered by column."""
        return self.cells_by_row.get(row_index, [])

    def to_table_local(self, bbox: BoundingBox) -> BoundingBox:
        """
        Rescale a page-normalized box into table-local fractions.

        With degenerate bounds (no table) the box is returned unchanged.
        """
        bounds = self.table_bounds
        if bounds.is_empty:
            return bbox
        return BoundingBox(
            top=(bbox.top - bounds.top) / bounds.height,
            left=(bbox.left - bounds.left) / bounds.width,
            width=bbox.width / bounds.width,
            height=bbox.height / bounds.height,
        )

    def _bucket_by_row(self, cells: List[OCRBlock]) -> Dict[int, List[OCRBlock]]:
        """Group cells by row index, ordered by row then column."""
        rows: Dict[int, List[OCRBlock]] = {}
        for cell in cells:
            row = cell.row_index if cell.row_index is not None else 0
            rows.setdefault(row, []).append(cell)

        return {
            row: sorted(row_cells, key=lambda c: c.column_index if c.column_index is not None else 0)
            for row, row_cells in sorted(rows.items())
        }

    def _compute_table_bounds(self, cells: List[OCRBlock]) -> BoundingBox:
        """Get the minimal box enclosing every cell."""
        if not cells:
            return BoundingBox()

        min_top = min(cell.bbox.top for cell in cells)
        min_left = min(cell.bbox.left for cell in cells)
        max_right = max(cell.bbox.right for cell in cells)
        max_bottom = max(cell.bbox.bottom for cell in cells)

        return BoundingBox(
            top=min_top,
            left=min_left,
            width=max_right - min_left,
            height=max_bottom - min_top,
        )


def build_cell_index(blocks: Optional[Iterable[BlockInput]]) -> CellIndex:
    """Build a CellIndex from raw OCR blocks."""
    return CellIndex(blocks)


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Get the first present key from a mapping."""
    if not isinstance(data, Mapping):
        return default
    for key in keys:
        if key in data:
            return data[key]
    return default
