"""
Unit tests for CellIndex service.
"""
from typing import Any, Dict, List

import pytest

from statementcalc.services.cell_index import BoundingBox, CellIndex, OCRBlock, build_cell_index


class TestOCRBlock:
    """Tests for block parsing."""

    def test_from_provider_shape(self, make_cell):
        """Test PascalCase provider blocks."""
        block = OCRBlock.from_dict(make_cell("c1", 2, 3, top=0.1, left=0.2, width=0.3, word_ids=["w1"]))

        assert block.is_cell
        assert block.id == "c1"
        assert block.row_index == 2
        assert block.column_index == 3
        assert block.child_ids == ["w1"]
        assert block.bbox == BoundingBox(top=0.1, left=0.2, width=0.3, height=0.05)

    def test_from_snake_case_shape(self):
        """Test snake_case blocks."""
        block = OCRBlock.from_dict({
            "block_type": "word",
            "id": "w9",
            "text": "Cash",
            "geometry": {"bounding_box": {"top": 0.5, "left": 0.1, "width": 0.1, "height": 0.02}},
        })

        assert block.is_word
        assert block.text == "Cash"
        assert block.bbox.top == 0.5

    def test_only_child_relationships(self):
        """Test non-CHILD relationships are not word references."""
        block = OCRBlock.from_dict({
            "BlockType": "CELL",
            "Id": "c1",
            "Relationships": [
                {"Type": "CHILD", "Ids": ["w1"]},
                {"Type": "MERGED_CELL", "Ids": ["m1"]},
            ],
        })

        assert block.child_ids == ["w1"]


class TestCellIndex:
    """Tests for CellIndex class."""

    @pytest.fixture
    def index(self, statement_blocks: List[Dict[str, Any]]) -> CellIndex:
        """Build an index over the sample statement."""
        return CellIndex(statement_blocks)

    def test_ignores_other_block_types(self, index: CellIndex):
        """Test PAGE blocks are dropped."""
        assert len(index.cells) == 6
        assert len(index.words) == 6

    def test_cells_by_row(self, index: CellIndex):
        """Test cells are bucketed by row and ordered by column."""
        assert list(index.cells_by_row) == [1, 2, 3]
        assert [cell.id for cell in index.row_cells(1)] == ["c1", "c2"]
        assert index.row_cells(99) == []

    def test_word_text(self, index: CellIndex):
        """Test a cell's own words in relationship order."""
        assert index.word_text(index.get_cell("c1")) == "Total Assets"
        assert index.word_text(index.get_cell("c2")) == "1,000"

    def test_word_text_empty_cell(self, index: CellIndex):
        """Test a cell without words."""
        assert index.word_text(index.get_cell("c3")) == ""

    def test_word_text_skips_missing_words(self, make_cell):
        """Test dangling word ids are ignored."""
        index = CellIndex([make_cell("c1", 1, 1, top=0.1, left=0.1, width=0.1, word_ids=["gone"])])

        assert index.word_text(index.get_cell("c1")) == ""

    def test_line_text_recovers_row_label(self, index: CellIndex):
        """Test the label to the left of a numeric cell is on its line."""
        assert index.line_text(index.get_cell("c2")) == "Total Assets 1,000"

    def test_line_text_unlabeled_row(self, index: CellIndex):
        """Test a bare total row has no label text."""
        assert index.line_text(index.get_cell("c4")) == "(900)"

    def test_line_text_sorted_left_to_right(self, make_cell, make_word):
        """Test words are joined by left coordinate, not list order."""
        index = CellIndex([
            make_cell("c1", 1, 1, top=0.1, left=0.0, width=1.0),
            make_word("w2", "Assets", top=0.11, left=0.3),
            make_word("w1", "Total", top=0.11, left=0.1),
        ])

        assert index.line_text(index.get_cell("c1")) == "Total Assets"

    def test_line_text_touching_word_excluded(self, make_cell, make_word):
        """Test a word that only touches the band edge is not on the line."""
        index = CellIndex([
            make_cell("c1", 1, 1, top=0.25, left=0.0, width=1.0, height=0.25),
            make_word("w1", "Above", top=0.125, left=0.1, height=0.125),
            make_word("w2", "Inside", top=0.3125, left=0.2, height=0.0625),
        ])

        assert index.line_text(index.get_cell("c1")) == "Inside"

    def test_table_bounds(self, index: CellIndex):
        """Test the box enclosing all cells."""
        bounds = index.table_bounds

        assert bounds.top == pytest.approx(0.10)
        assert bounds.left == pytest.approx(0.05)
        assert bounds.width == pytest.approx(0.70)
        assert bounds.height == pytest.approx(0.25)

    def test_to_table_local(self, index: CellIndex):
        """Test rescaling into table-local fractions."""
        local = index.to_table_local(index.get_cell("c1").bbox)

        assert local.top == pytest.approx(0.0)
        assert local.left == pytest.approx(0.0)
        assert local.width == pytest.approx(0.40 / 0.70)
        assert local.height == pytest.approx(0.05 / 0.25)


class TestEmptyIndex:
    """Tests for the no-table case."""

    @pytest.mark.parametrize("blocks", [None, []])
    def test_empty_input(self, blocks):
        """Test missing OCR output builds an empty index."""
        index = build_cell_index(blocks)

        assert index.is_empty
        assert index.cells_by_row == {}
        assert index.table_bounds.is_empty

    def test_to_table_local_without_table(self):
        """Test degenerate bounds leave boxes unchanged."""
        box = BoundingBox(top=0.2, left=0.3, width=0.1, height=0.1)

        assert CellIndex([]).to_table_local(box) == box

    def test_blocks_without_id_skipped(self):
        """Test blocks with no id are dropped."""
        index = CellIndex([{"BlockType": "CELL", "RowIndex": 1}])

        assert index.is_empty
