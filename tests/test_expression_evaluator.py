"""
Unit tests for ExpressionEvaluator service.
"""
import pytest

from statementcalc.exceptions import FormulaParseError
from statementcalc.services.expression_evaluator import (
    EvaluationError,
    ExpressionEvaluator,
    evaluate,
)


class TestNormalize:
    """Tests for accounting notation normalization."""

    @pytest.fixture
    def evaluator(self) -> ExpressionEvaluator:
        """Create evaluator instance."""
        return ExpressionEvaluator()

    def test_bracket_negative(self, evaluator: ExpressionEvaluator):
        """Test bracketed figures become negatives without commas."""
        assert evaluator.normalize("(1,000)+500") == "-1000+500"

    def test_minus_inside_brackets(self, evaluator: ExpressionEvaluator):
        """Test a minus inside the brackets is absorbed."""
        assert evaluator.normalize("(-1,000)") == "-1000"

    def test_strips_remaining_commas(self, evaluator: ExpressionEvaluator):
        """Test thousands separators outside brackets are removed."""
        assert evaluator.normalize("1,250,000 - 250,000") == "1250000 - 250000"

    def test_grouping_parentheses_untouched(self, evaluator: ExpressionEvaluator):
        """Test parentheses around expressions are kept."""
        assert evaluator.normalize("(600 + 400) * 2") == "(600 + 400) * 2"


class TestEvaluate:
    """Tests for formula evaluation."""

    @pytest.fixture
    def evaluator(self) -> ExpressionEvaluator:
        """Create evaluator instance."""
        return ExpressionEvaluator()

    def test_bracket_negative_sum(self, evaluator: ExpressionEvaluator):
        """Test bracket negative plus a positive."""
        assert evaluator.evaluate("(1,000)+500") == -500

    def test_simple_sum(self, evaluator: ExpressionEvaluator):
        """Test plain addition."""
        assert evaluator.evaluate("600+400") == 1000

    def test_minus_before_brackets(self, evaluator: ExpressionEvaluator):
        """Test subtracting a bracketed negative."""
        assert evaluator.evaluate("500-(1,000)") == 1500

    def test_precedence(self, evaluator: ExpressionEvaluator):
        """Test multiplication binds tighter than addition."""
        assert evaluator.evaluate("2 + 3 * 4") == 14

    def test_left_associativity(self, evaluator: ExpressionEvaluator):
        """Test subtraction and division associate left to right."""
        assert evaluator.evaluate("10 - 4 - 3") == 3
        assert evaluator.evaluate("100 / 10 / 5") == 2

    def test_grouping(self, evaluator: ExpressionEvaluator):
        """Test parenthesized sub-expressions."""
        assert evaluator.evaluate("(600 + 400) * 2") == 2000

    def test_unary_minus(self, evaluator: ExpressionEvaluator):
        """Test leading unary minus."""
        assert evaluator.evaluate("-5 + 10") == 5

    def test_decimals(self, evaluator: ExpressionEvaluator):
        """Test decimal literals use float arithmetic."""
        assert evaluator.evaluate("0.1 + 0.2") == 0.1 + 0.2

    def test_decimal_bracket_negative(self, evaluator: ExpressionEvaluator):
        """Test decimals inside accounting brackets."""
        assert evaluator.evaluate("(1,234.50) + 234.50") == -1000

    def test_division_by_zero_returns_error(self, evaluator: ExpressionEvaluator):
        """Test division by zero yields the error sentinel."""
        result = evaluator.evaluate("10/0")

        assert isinstance(result, EvaluationError)
        assert result.message == "Division by zero"
        assert str(result) == "Error"

    def test_text_returns_error(self, evaluator: ExpressionEvaluator):
        """Test non-arithmetic input yields the error sentinel."""
        assert isinstance(evaluator.evaluate("not a formula"), EvaluationError)

    def test_code_is_rejected(self, evaluator: ExpressionEvaluator):
        """Test that interpreter syntax is never executed."""
        assert isinstance(evaluator.evaluate("__import__('os').getcwd()"), EvaluationError)
        assert isinstance(evaluator.evaluate("2 ** 10"), EvaluationError)

    def test_empty_returns_error(self, evaluator: ExpressionEvaluator):
        """Test empty and missing formulas."""
        assert isinstance(evaluator.evaluate(""), EvaluationError)
        assert isinstance(evaluator.evaluate(None), EvaluationError)

    def test_unbalanced_returns_error(self, evaluator: ExpressionEvaluator):
        """Test unbalanced parentheses."""
        assert isinstance(evaluator.evaluate("(600 + 400"), EvaluationError)
        assert isinstance(evaluator.evaluate("600 + 400)"), EvaluationError)

    def test_dangling_operator_returns_error(self, evaluator: ExpressionEvaluator):
        """Test an expression ending in an operator."""
        assert isinstance(evaluator.evaluate("600 +"), EvaluationError)

    def test_deep_nesting_returns_error(self, evaluator: ExpressionEvaluator):
        """Test pathological nesting is rejected, not a recursion crash."""
        formula = "(" * 500 + "1 + 1" + ")" * 500
        assert isinstance(evaluator.evaluate(formula), EvaluationError)

    def test_evaluate_strict_raises(self, evaluator: ExpressionEvaluator):
        """Test strict mode raises FormulaParseError."""
        with pytest.raises(FormulaParseError) as exc_info:
            evaluator.evaluate_strict("1 / 0")

        assert exc_info.value.reason == "Division by zero"
        assert exc_info.value.error_code == "SC-100"

    def test_evaluate_is_repeatable(self, evaluator: ExpressionEvaluator):
        """Test repeated evaluation gives identical results."""
        assert evaluator.evaluate("(1,000)+500") == evaluator.evaluate("(1,000)+500")


def test_module_level_evaluate():
    """Test the module convenience function."""
    assert evaluate("1,000 + 1,000") == 2000
