"""
Numeric parser service for comparing financial values.

Reduces decorated statement text to a signed number:
- Currency: $ 1,234
- Negative: (123), -123
- Labels: "Total Assets 1,000"

Values are reduced to their digit sequence, so the same normalization
must be applied to both sides of any comparison.
"""
import math
import re
from typing import Optional, Union

import structlog

logger = structlog.get_logger(__name__)

Number = Union[int, float]


class NumericParser:
    """
    Parser that extracts signed numbers from statement text.

    Handles number formats commonly found in financial statements:
    - Thousands separators: 1,234,567
    - Currency symbols and labels: $ (9,072,936)
    - Negative notation: parentheses (123) or minus sign -123
    """

    # Everything that is not a digit, parenthesis or minus sign
    STRIP_PATTERN = re.compile(r"[^\d()\-]")
    SIGN_PATTERN = re.compile(r"[()\-]")
    ALPHA_PATTERN = re.compile(r"[^\W\d_]")

    def extract_number(self, value: Union[str, Number, None]) -> float:
        """
        Extract a signed number from text.

        Args:
            value: Cell text, statement result or evaluated formula value.

        Returns:
            Signed value, or NaN when the input holds no digits.
        """
        if value is None:
            return math.nan

        text = value if isinstance(value, str) else self.format_number(value)
        cleaned = self.STRIP_PATTERN.sub("", text)

        is_negative = cleaned.startswith("(") or cleaned.startswith("-")
        digits = self.SIGN_PATTERN.sub("", cleaned)

        if not digits:
            return math.nan

        number = float(int(digits))
        return -number if is_negative else number

    def format_number(self, value: Number) -> str:
        """
        Render a number the way it would be printed on a statement.

        Integral floats drop their fractional part (1000.0 -> "1000");
        other floats use the shortest round-trip representation.
        """
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, int):
            return str(value)
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)

    def numbers_equal(self, left: Union[str, Number, None], right: Union[str, Number, None]) -> bool:
        """
        Compare two values after normalization.

        NaN on either side never compares equal, so text without digits
        is treated as "no match" rather than zero.
        """
        left_value = self.extract_number(left)
        right_value = self.extract_number(right)
        if math.isnan(left_value) or math.isnan(right_value):
            return False
        return left_value == right_value

    def has_alphabetic(self, text: Optional[str]) -> bool:
        """Check whether text contains any letter."""
        if not text:
            return False
        return bool(self.ALPHA_PATTERN.search(text))


# Singleton instance
_parser_instance: Optional[NumericParser] = None


def get_numeric_parser() -> NumericParser:
    """Get singleton NumericParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = NumericParser()
    return _parser_instance


def extract_number(value: Union[str, Number, None]) -> float:
    """Extract a signed number from text using the shared parser."""
    return get_numeric_parser().extract_number(value)


def format_number(value: Number) -> str:
    """Render a number using the shared parser."""
    return get_numeric_parser().format_number(value)
