"""
Textract service for table extraction.

Sends a statement image to AWS Textract table analysis and returns the
raw block list consumed by the cell index.
"""
from typing import Any, Dict, List, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from statementcalc.config import get_settings
from statementcalc.exceptions import OCRServiceError
from statementcalc.middleware.logging import log_performance

logger = structlog.get_logger(__name__)


class TextractService:
    """
    Service for extracting table geometry from statement images.

    Uses Textract analyze_document with the TABLES feature, which
    returns CELL blocks linked to their WORD blocks.
    """

    FEATURE_TYPES = ["TABLES"]

    def __init__(self, client: Optional[Any] = None):
        """
        Initialize Textract service.

        Args:
            client: Preconfigured boto3 Textract client (created lazily
                from settings when omitted).
        """
        self._client = client

    def _get_client(self) -> Any:
        """Create the boto3 client on first use."""
        if self._client is None:
            settings = get_settings()
            kwargs: Dict[str, Any] = {"region_name": settings.aws_region}
            if settings.aws_access_key_id and settings.aws_secret_access_key:
                kwargs["aws_access_key_id"] = settings.aws_access_key_id
                kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            self._client = boto3.client("textract", **kwargs)
        return self._client

    @log_performance("textract_analyze_document")
    def analyze_document(self, image_bytes: bytes) -> List[Dict[str, Any]]:
        """
        Run table analysis on an image.

        Args:
            image_bytes: Raw image bytes (PNG, JPEG or TIFF).

        Returns:
            List of Textract blocks.

        Raises:
            OCRServiceError: If the Textract call fails.
        """
        logger.info("Analyzing document with Textract", size=len(image_bytes))

        try:
            response = self._get_client().analyze_document(
                Document={"Bytes": image_bytes},
                FeatureTypes=self.FEATURE_TYPES,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Textract analysis failed", error=str(e))
            raise OCRServiceError(f"Textract analysis failed: {e}") from e

        blocks = response.get("Blocks") or []

        logger.info(
            "Textract analysis complete",
            blocks=len(blocks),
            cells=sum(1 for b in blocks if b.get("BlockType") == "CELL"),
        )
        return blocks


# Singleton instance
_textract_instance: Optional[TextractService] = None


def get_textract_service() -> TextractService:
    """Get singleton TextractService instance."""
    global _textract_instance
    if _textract_instance is None:
        _textract_instance = TextractService()
    return _textract_instance
