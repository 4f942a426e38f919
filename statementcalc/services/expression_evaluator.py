"""
Expression evaluator for calculation formulas.

Formulas arrive from a language model, so they are never handed to a
general-purpose interpreter. Instead a small recursive-descent parser
accepts exactly:

    expr    := term (('+' | '-') term)*
    term    := unary (('*' | '/') unary)*
    unary   := ('+' | '-') unary | primary
    primary := NUMBER | '(' expr ')'

Accounting notation is normalized first: "(1,000)" becomes "-1000" and
remaining thousands separators are removed.
"""
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import structlog

from statementcalc.exceptions import FormulaParseError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EvaluationError:
    """Sentinel returned when a formula cannot be evaluated."""

    formula: str
    message: str

    def __str__(self) -> str:
        return "Error"


EvaluationResult = Union[float, EvaluationError]


class ExpressionEvaluator:
    """
    Arithmetic-only evaluator for accounting formulas.

    Supports + - * / with standard precedence, left associativity,
    unary signs, parentheses and decimal literals. All arithmetic uses
    IEEE-754 doubles.
    """

    ACCOUNTING_NEGATIVE_PATTERN = re.compile(r"\(\s*-?\s*(\d[\d,]*(?:\.\d+)?)\s*\)")
    TOKEN_PATTERN = re.compile(r"(\d+(?:\.\d*)?|\.\d+)|(\S)")
    OPERATORS = frozenset("+-*/()")

    # Keeps nesting well inside the interpreter recursion limit
    MAX_DEPTH = 100

    def normalize(self, formula: str) -> str:
        """
        Rewrite accounting notation into plain arithmetic.

        Args:
            formula: Raw formula, e.g. "(1,000) + 2,500".

        Returns:
            Normalized formula, e.g. "-1000 + 2500".
        """
        normalized = self.ACCOUNTING_NEGATIVE_PATTERN.sub(
            lambda match: "-" + match.group(1).replace(",", ""),
            formula,
        )
        return normalized.replace(",", "")

    def evaluate(self, formula: str) -> EvaluationResult:
        """
        Evaluate a formula string.

        Args:
            formula: Formula in accounting notation.

        Returns:
            The numeric result, or an EvaluationError sentinel.
        """
        try:
            return self.evaluate_strict(formula)
        except FormulaParseError as e:
            logger.warning("Formula evaluation failed", formula=formula, reason=e.reason)
            return EvaluationError(formula=str(formula), message=e.reason)

    def evaluate_strict(self, formula: str) -> float:
        """
        Evaluate a formula, raising on failure.

        Raises:
            FormulaParseError: If the formula is not pure arithmetic or
                cannot be computed.
        """
        if not isinstance(formula, str) or not formula.strip():
            raise FormulaParseError(str(formula), "Empty formula")

        tokens = self._tokenize(formula, self.normalize(formula))
        parser = _Parser(formula, tokens, self.MAX_DEPTH)
        value = parser.parse()

        if not math.isfinite(value):
            raise FormulaParseError(formula, "Result is not finite")
        return value

    def _tokenize(self, formula: str, normalized: str) -> List[Tuple[str, str]]:
        """Split a normalized formula into (kind, text) tokens."""
        tokens: List[Tuple[str, str]] = []

        for match in self.TOKEN_PATTERN.finditer(normalized):
            number, symbol = match.groups()

            if number is not None:
                tokens.append(("number", number))
            elif symbol is not None:
                if symbol not in self.OPERATORS:
                    raise FormulaParseError(formula, f"Unexpected character {symbol!r}")
                tokens.append(("op", symbol))

        if not tokens:
            raise FormulaParseError(formula, "Empty formula")
        return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, formula: str, tokens: List[Tuple[str, str]], max_depth: int):
        self._formula = formula
        self._tokens = tokens
        self._index = 0
        self._depth = 0
        self._max_depth = max_depth

    def parse(self) -> float:
        value = self._expr()
        if self._index < len(self._tokens):
            raise FormulaParseError(
                self._formula, f"Unexpected token {self._tokens[self._index][1]!r}"
            )
        return value

    def _peek(self) -> Optional[str]:
        if self._index < len(self._tokens):
            kind, text = self._tokens[self._index]
            if kind == "op":
                return text
        return None

    def _expr(self) -> float:
        value = self._term()
        while self._peek() in ("+", "-"):
            operator = self._tokens[self._index][1]
            self._index += 1
            right = self._term()
            value = value + right if operator == "+" else value - right
        return value

    def _term(self) -> float:
        value = self._unary()
        while self._peek() in ("*", "/"):
            operator = self._tokens[self._index][1]
            self._index += 1
            right = self._unary()
            if operator == "*":
                value = value * right
            else:
                if right == 0:
                    raise FormulaParseError(self._formula, "Division by zero")
                value = value / right
        return value

    def _unary(self) -> float:
        operator = self._peek()
        if operator in ("+", "-"):
            self._index += 1
            self._enter()
            try:
                operand = self._unary()
            finally:
                self._depth -= 1
            return -operand if operator == "-" else operand
        return self._primary()

    def _primary(self) -> float:
        if self._index >= len(self._tokens):
            raise FormulaParseError(self._formula, "Unexpected end of formula")

        kind, text = self._tokens[self._index]
        self._index += 1

        if kind == "number":
            return float(text)

        if text == "(":
            self._enter()
            try:
                value = self._expr()
            finally:
                self._depth -= 1
            if self._peek() != ")":
                raise FormulaParseError(self._formula, "Unbalanced parentheses")
            self._index += 1
            return value

        raise FormulaParseError(self._formula, f"Unexpected token {text!r}")

    def _enter(self) -> None:
        self._depth += 1
        if self._depth > self._max_depth:
            raise FormulaParseError(self._formula, "Formula is nested too deeply")


# Singleton instance
_evaluator_instance: Optional[ExpressionEvaluator] = None


def get_expression_evaluator() -> ExpressionEvaluator:
    """Get singleton ExpressionEvaluator instance."""
    global _evaluator_instance
    if _evaluator_instance is None:
        _evaluator_instance = ExpressionEvaluator()
    return _evaluator_instance


def evaluate(formula: str) -> EvaluationResult:
    """Evaluate a formula using the shared evaluator."""
    return get_expression_evaluator().evaluate(formula)
