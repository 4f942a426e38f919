"""StatementCalc: reconciles financial statement calculations against OCR table cells."""

__version__ = "1.0.0"
