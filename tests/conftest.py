"""
Pytest configuration and fixtures.
"""
import io
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from statementcalc.main import app
from statementcalc.middleware.rate_limit import limiter


BlockFactory = Callable[..., Dict[str, Any]]


@pytest.fixture(scope="function")
def client() -> Generator[TestClient, None, None]:
    """Create a test client with fresh rate limit counters."""
    limiter.reset()

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_word() -> BlockFactory:
    """Build a WORD block in the provider's raw shape."""

    def _make_word(
        block_id: str,
        text: str,
        top: float,
        left: float,
        width: float = 0.08,
        height: float = 0.03,
    ) -> Dict[str, Any]:
        return {
            "BlockType": "WORD",
            "Id": block_id,
            "Text": text,
            "Geometry": {
                "BoundingBox": {"Top": top, "Left": left, "Width": width, "Height": height},
            },
        }

    return _make_word


@pytest.fixture
def make_cell() -> BlockFactory:
    """Build a CELL block in the provider's raw shape."""

    def _make_cell(
        block_id: str,
        row: int,
        column: int,
        top: float,
        left: float,
        width: float,
        height: float = 0.05,
        word_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        block: Dict[str, Any] = {
            "BlockType": "CELL",
            "Id": block_id,
            "RowIndex": row,
            "ColumnIndex": column,
            "Geometry": {
                "BoundingBox": {"Top": top, "Left": left, "Width": width, "Height": height},
            },
        }
        if word_ids:
            block["Relationships"] = [{"Type": "CHILD", "Ids": list(word_ids)}]
        return block

    return _make_cell


@pytest.fixture
def statement_blocks(make_cell: BlockFactory, make_word: BlockFactory) -> List[Dict[str, Any]]:
    """
    A three-row balance sheet table.

    Row 1: "Total Assets" | 1,000
    Row 2: (no label)     | (900)
    Row 3: "Cash"         | 450
    """
    return [
        {"BlockType": "PAGE", "Id": "page-1"},
        make_cell("c1", 1, 1, top=0.10, left=0.05, width=0.40, word_ids=["w1", "w2"]),
        make_cell("c2", 1, 2, top=0.10, left=0.55, width=0.20, word_ids=["w3"]),
        make_cell("c3", 2, 1, top=0.20, left=0.05, width=0.40),
        make_cell("c4", 2, 2, top=0.20, left=0.55, width=0.20, word_ids=["w4"]),
        make_cell("c5", 3, 1, top=0.30, left=0.05, width=0.40, word_ids=["w5"]),
        make_cell("c6", 3, 2, top=0.30, left=0.55, width=0.20, word_ids=["w6"]),
        make_word("w1", "Total", top=0.11, left=0.06),
        make_word("w2", "Assets", top=0.11, left=0.16),
        make_word("w3", "1,000", top=0.11, left=0.60),
        make_word("w4", "(900)", top=0.21, left=0.60),
        make_word("w5", "Cash", top=0.31, left=0.06),
        make_word("w6", "450", top=0.31, left=0.60),
    ]


@pytest.fixture
def sample_calculations() -> List[Dict[str, Any]]:
    """Calculation records for the statement_blocks table, two periods."""
    return [
        {
            "formulaName": "Total assets",
            "rowName": "Total Assets",
            "year": "2022",
            "resultInStatement": 1000,
            "formula": "600 + 400",
        },
        {
            "formulaName": "Net movement",
            "rowName": "",
            "year": "2022",
            "resultInStatement": -900,
            "formula": "(1,000) + 100",
        },
        {
            "formulaName": "Cash",
            "rowName": "Cash",
            "year": "2022",
            "resultInStatement": 450,
            "formula": "400 + 40",
        },
        {
            "formulaName": "Total assets",
            "rowName": "Total Assets",
            "year": "2021",
            "resultInStatement": 800,
            "formula": "500 + 300",
        },
    ]


@pytest.fixture
def png_bytes() -> bytes:
    """A small white PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (200, 100), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singleton instances before each test for proper isolation."""
    import statementcalc.services.calculation_generator as generator_module
    import statementcalc.services.sample_processor as processor_module
    import statementcalc.services.textract_service as textract_module

    generator_module._generator_instance = None
    processor_module._processor_instance = None
    textract_module._textract_instance = None

    yield

    generator_module._generator_instance = None
    processor_module._processor_instance = None
    textract_module._textract_instance = None
