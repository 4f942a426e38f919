"""
Sample processor service.

Forwards one statement image to table extraction and to the calculation
generator at the same time, and collects whatever each step returns.
A failed step leaves the other step's result usable; only a double
failure is fatal.
"""
import asyncio
import base64
import binascii
import io
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog
from PIL import Image, UnidentifiedImageError

from statementcalc.config import get_settings
from statementcalc.exceptions import (
    FileTooLargeError,
    InvalidFileTypeError,
    InvalidImageError,
    UpstreamFailureError,
)
from statementcalc.services.calculation_generator import (
    CalculationGenerator,
    get_calculation_generator,
)
from statementcalc.services.calculation_grouper import (
    CalculationGrouper,
    CalculationRecord,
    SkippedRecord,
    get_calculation_grouper,
)
from statementcalc.services.textract_service import TextractService, get_textract_service

logger = structlog.get_logger(__name__)

ALLOWED_MEDIA_TYPES = ["image/png", "image/jpeg", "image/gif", "image/webp", "image/tiff"]

DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]+)?(?:;[^;,]*)*?;base64,(?P<data>.*)$", re.DOTALL)


@dataclass
class ProcessResult:
    """Combined output of the OCR and LLM steps."""

    text_blocks: List[Dict[str, Any]] = field(default_factory=list)
    raw_calculations: Optional[str] = None
    calculations: List[CalculationRecord] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_degraded(self) -> bool:
        return bool(self.errors)


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """
    Decode a base64 data URL.

    Args:
        data_url: String of the form data:<mime>;base64,<payload>.

    Returns:
        Tuple of (raw bytes, media type).

    Raises:
        InvalidImageError: If the string is not a base64 data URL.
    """
    match = DATA_URL_PATTERN.match(data_url.strip()) if data_url else None
    if not match:
        raise InvalidImageError("Image must be a base64 data URL")

    try:
        payload = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"Invalid base64 image payload: {e}") from e

    return payload, (match.group("mime") or "application/octet-stream").lower()


def validate_image(image_bytes: bytes, media_type: str) -> str:
    """
    Check an image's type, size and readability.

    Args:
        image_bytes: Raw image bytes.
        media_type: Declared MIME type.

    Returns:
        The media type to forward (the detected one when the declared
        type is generic).

    Raises:
        InvalidFileTypeError: If the type is not a supported raster format.
        FileTooLargeError: If the image exceeds the upload limit.
        InvalidImageError: If the bytes are not a readable image.
    """
    settings = get_settings()

    if len(image_bytes) > settings.max_upload_size_bytes:
        raise FileTooLargeError(len(image_bytes), settings.max_upload_size_bytes)

    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            detected = Image.MIME.get(image.format or "", "")
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidImageError(f"Image could not be decoded: {e}") from e

    if media_type not in ALLOWED_MEDIA_TYPES:
        if detected in ALLOWED_MEDIA_TYPES:
            media_type = detected
        else:
            raise InvalidFileTypeError(media_type, ALLOWED_MEDIA_TYPES)

    return media_type


class SampleProcessor:
    """
    Orchestrates the OCR and calculation-generation calls for one image.
    """

    def __init__(
        self,
        textract_service: Optional[TextractService] = None,
        calculation_generator: Optional[CalculationGenerator] = None,
        grouper: Optional[CalculationGrouper] = None,
    ):
        """Initialize processor with its collaborators."""
        self._textract = textract_service or get_textract_service()
        self._generator = calculation_generator or get_calculation_generator()
        self._grouper = grouper or get_calculation_grouper()

    async def process(
        self,
        image_bytes: bytes,
        media_type: str,
        statement_type: Optional[str] = None,
        is_multi_entity: bool = False,
        model: Optional[str] = None,
    ) -> ProcessResult:
        """
        Run OCR and calculation generation concurrently.

        Args:
            image_bytes: Raw image bytes.
            media_type: Image MIME type.
            statement_type: Statement type hint for the prompt.
            is_multi_entity: Whether the statement mixes entities.
            model: Model override.

        Returns:
            ProcessResult, possibly degraded.

        Raises:
            UpstreamFailureError: If both steps fail.
        """
        media_type = validate_image(image_bytes, media_type)

        ocr_outcome, llm_outcome = await asyncio.gather(
            asyncio.to_thread(self._textract.analyze_document, image_bytes),
            asyncio.to_thread(
                self._generator.generate,
                image_bytes,
                media_type,
                statement_type,
                is_multi_entity,
                model,
            ),
            return_exceptions=True,
        )

        result = ProcessResult()

        if isinstance(ocr_outcome, Exception):
            result.errors["ocr"] = self._describe_failure("ocr", ocr_outcome)
        else:
            result.text_blocks = ocr_outcome

        if isinstance(llm_outcome, Exception):
            result.errors["llm"] = self._describe_failure("llm", llm_outcome)
        else:
            result.raw_calculations = llm_outcome.text
            result.calculations, result.skipped = self._grouper.parse_calculations(llm_outcome.text)

        if "ocr" in result.errors and "llm" in result.errors:
            raise UpstreamFailureError(result.errors)

        logger.info(
            "Sample processed",
            blocks=len(result.text_blocks),
            calculations=len(result.calculations),
            skipped=len(result.skipped),
            errors=list(result.errors),
        )

        return result

    def _describe_failure(self, step: str, error: Exception) -> str:
        logger.error(
            "Processing step failed",
            step=step,
            error=str(error),
            error_type=type(error).__name__,
        )
        return getattr(error, "message", None) or str(error) or type(error).__name__


# Singleton instance
_processor_instance: Optional[SampleProcessor] = None


def get_sample_processor() -> SampleProcessor:
    """Get singleton SampleProcessor instance."""
    global _processor_instance
    if _processor_instance is None:
        _processor_instance = SampleProcessor()
    return _processor_instance
