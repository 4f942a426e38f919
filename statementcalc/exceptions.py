"""
Custom exceptions for StatementCalc.

Provides a hierarchy of exceptions with error codes for consistent error handling.
"""
from typing import Optional, Dict, Any


class StatementCalcError(Exception):
    """
    Base exception for all StatementCalc errors.

    Attributes:
        error_code: Unique error code (e.g., SC-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "SC-000"
    http_status: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Calculation Errors (SC-1XX)
class FormulaParseError(StatementCalcError):
    """Formula is not a valid arithmetic expression."""
    error_code = "SC-100"
    http_status = 422

    def __init__(self, formula: str, reason: str = "Invalid formula", **kwargs):
        message = f"{reason}: {formula!r}"
        super().__init__(message, details={"formula": formula, "reason": reason}, **kwargs)
        self.formula = formula
        self.reason = reason


class MalformedRecordError(StatementCalcError):
    """Calculation record is missing required fields or has bad values."""
    error_code = "SC-101"
    http_status = 422

    def __init__(self, message: str = "Malformed calculation record", field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)
        self.field = field


# Input Errors (SC-2XX)
class InvalidImageError(StatementCalcError):
    """Uploaded image could not be decoded."""
    error_code = "SC-200"
    http_status = 400

    def __init__(self, message: str = "Image could not be decoded", **kwargs):
        super().__init__(message, **kwargs)


class FileTooLargeError(StatementCalcError):
    """File exceeds maximum size limit."""
    error_code = "SC-201"
    http_status = 413

    def __init__(self, size: int, max_size: int, **kwargs):
        message = f"File too large. Maximum size: {max_size // (1024*1024)}MB"
        super().__init__(message, details={"size": size, "max_size": max_size}, **kwargs)


class InvalidFileTypeError(StatementCalcError):
    """Invalid file type uploaded."""
    error_code = "SC-202"
    http_status = 400

    def __init__(self, content_type: str, expected_types: list, **kwargs):
        message = f"Invalid file type. Expected: {', '.join(expected_types)}"
        super().__init__(
            message,
            details={"content_type": content_type, "expected_types": expected_types},
            **kwargs,
        )


# Reconciliation Errors (SC-3XX)
class NoInputError(StatementCalcError):
    """Neither OCR blocks nor calculations were supplied."""
    error_code = "SC-300"
    http_status = 422

    def __init__(self, message: str = "No OCR blocks or calculations to reconcile", **kwargs):
        super().__init__(message, **kwargs)


# External Service Errors (SC-9XX)
class ExternalServiceError(StatementCalcError):
    """External service call failed."""
    error_code = "SC-900"
    http_status = 502

    def __init__(self, service_name: str, message: str = None, **kwargs):
        msg = message or f"External service '{service_name}' is unavailable"
        super().__init__(msg, details={"service": service_name}, **kwargs)
        self.service_name = service_name


class OCRServiceError(ExternalServiceError):
    """Table extraction provider failed."""
    error_code = "SC-901"

    def __init__(self, message: str = "OCR table extraction failed", **kwargs):
        super().__init__("ocr", message, **kwargs)


class LLMServiceError(ExternalServiceError):
    """Language-model provider failed."""
    error_code = "SC-902"

    def __init__(self, message: str = "Calculation generation failed", **kwargs):
        super().__init__("llm", message, **kwargs)


class UpstreamFailureError(StatementCalcError):
    """Both the OCR and the LLM step failed."""
    error_code = "SC-903"
    http_status = 502

    def __init__(self, errors: Dict[str, str], **kwargs):
        message = "Failed to process statement: OCR and calculation generation both failed"
        super().__init__(message, details={"errors": errors}, **kwargs)
