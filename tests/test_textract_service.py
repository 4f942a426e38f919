"""
Unit tests for TextractService.
"""
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from statementcalc.config import get_settings
from statementcalc.exceptions import OCRServiceError
from statementcalc.services.textract_service import TextractService


class TestTextractService:
    """Tests for TextractService class."""

    @pytest.fixture
    def client(self) -> MagicMock:
        """Create a mocked Textract client."""
        return MagicMock()

    def test_analyze_document_returns_blocks(self, client: MagicMock, statement_blocks):
        """Test blocks are returned from the response."""
        client.analyze_document.return_value = {"Blocks": statement_blocks}
        service = TextractService(client=client)

        blocks = service.analyze_document(b"image")

        assert blocks == statement_blocks
        client.analyze_document.assert_called_once_with(
            Document={"Bytes": b"image"},
            FeatureTypes=["TABLES"],
        )

    def test_missing_blocks(self, client: MagicMock):
        """Test a response without blocks yields an empty list."""
        client.analyze_document.return_value = {}

        assert TextractService(client=client).analyze_document(b"image") == []

    def test_client_error_wrapped(self, client: MagicMock):
        """Test provider errors become OCRServiceError."""
        client.analyze_document.side_effect = ClientError(
            {"Error": {"Code": "InvalidParameterException", "Message": "bad image"}},
            "AnalyzeDocument",
        )

        with pytest.raises(OCRServiceError) as exc_info:
            TextractService(client=client).analyze_document(b"image")

        assert exc_info.value.error_code == "SC-901"
        assert exc_info.value.details["service"] == "ocr"

    def test_client_created_from_settings(self):
        """Test the boto3 client uses the configured region."""
        with patch("statementcalc.services.textract_service.boto3") as mock_boto3:
            mock_boto3.client.return_value.analyze_document.return_value = {"Blocks": []}

            TextractService().analyze_document(b"image")

        args, kwargs = mock_boto3.client.call_args
        assert args == ("textract",)
        assert kwargs["region_name"] == get_settings().aws_region
