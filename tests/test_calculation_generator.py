"""
Unit tests for CalculationGenerator.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from statementcalc.config import Settings
from statementcalc.exceptions import LLMServiceError
from statementcalc.services.calculation_generator import CalculationGenerator, StatementType


RESPONSE_TEXT = '[{"rowName": "Cash", "year": "2022", "resultInStatement": 450, "formula": "400+50"}]'


def _anthropic_response(text: str = RESPONSE_TEXT) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=120, output_tokens=40),
    )


def _openai_response(text: str = RESPONSE_TEXT) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=100, completion_tokens=30),
    )


class TestBuildPrompt:
    """Tests for prompt construction."""

    @pytest.fixture
    def generator(self) -> CalculationGenerator:
        """Create generator with default settings."""
        return CalculationGenerator(settings=Settings(), anthropic_client=MagicMock())

    def test_base_prompt(self, generator: CalculationGenerator):
        """Test the record properties are requested."""
        prompt = generator.build_prompt(None, False)

        for field in ("formulaName", "rowName", "year", "resultInStatement", "formula"):
            assert field in prompt
        assert "entityType" not in prompt
        assert "only one value" in prompt

    def test_multi_entity_prompt(self, generator: CalculationGenerator):
        """Test entityType is requested for mixed statements."""
        assert '"Group" | "Company"' in generator.build_prompt(None, True)

    def test_statement_type_hint(self, generator: CalculationGenerator):
        """Test the statement type is mentioned."""
        prompt = generator.build_prompt(StatementType.CASH_FLOW.value, False)

        assert "The statement is a Cash Flow." in prompt

    def test_generic_statement_type_omitted(self, generator: CalculationGenerator):
        """Test the generic option adds no hint."""
        assert "The statement is a" not in generator.build_prompt("financialStatement", False)


class TestAnthropicProvider:
    """Tests for the default Claude provider."""

    def test_generate(self):
        """Test the multimodal message and result."""
        client = MagicMock()
        client.messages.create.return_value = _anthropic_response()
        generator = CalculationGenerator(settings=Settings(llm_provider="anthropic"), anthropic_client=client)

        result = generator.generate(b"\x89PNG", "image/png", "Balance Sheet", False)

        assert result.text == RESPONSE_TEXT
        assert result.provider == "anthropic"
        assert result.input_tokens == 120

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-3-5-sonnet-20240620"
        assert kwargs["max_tokens"] == 4096
        assert kwargs["temperature"] == 0.0
        content = kwargs["messages"][0]["content"]
        assert content[1]["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBORw=="}

    def test_model_override(self):
        """Test a per-request model."""
        client = MagicMock()
        client.messages.create.return_value = _anthropic_response()
        generator = CalculationGenerator(settings=Settings(), anthropic_client=client)

        result = generator.generate(b"img", "image/png", model="claude-3-opus-20240229")

        assert result.model == "claude-3-opus-20240229"
        assert client.messages.create.call_args.kwargs["model"] == "claude-3-opus-20240229"

    def test_api_error_wrapped(self):
        """Test provider errors become LLMServiceError."""
        client = MagicMock()
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client.messages.create.side_effect = anthropic.APIConnectionError(request=request)
        generator = CalculationGenerator(settings=Settings(), anthropic_client=client)

        with pytest.raises(LLMServiceError) as exc_info:
            generator.generate(b"img", "image/png")

        assert exc_info.value.error_code == "SC-902"

    def test_missing_api_key(self):
        """Test a missing key fails before any request."""
        generator = CalculationGenerator(settings=Settings(anthropic_api_key=None))

        with pytest.raises(LLMServiceError, match="ANTHROPIC_API_KEY"):
            generator.generate(b"img", "image/png")


class TestOpenAIProvider:
    """Tests for the OpenAI provider."""

    def test_generate(self):
        """Test the image is sent as a data URL."""
        client = MagicMock()
        client.chat.completions.create.return_value = _openai_response()
        settings = Settings(llm_provider="openai", llm_model="gpt-4o")
        generator = CalculationGenerator(settings=settings, openai_client=client)

        result = generator.generate(b"\x89PNG", "image/png")

        assert result.text == RESPONSE_TEXT
        assert result.provider == "openai"
        assert result.output_tokens == 30

        content = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw=="


def test_unknown_provider():
    """Test an unsupported provider is rejected."""
    generator = CalculationGenerator(settings=Settings(llm_provider="bard"))

    with pytest.raises(LLMServiceError, match="Unknown LLM provider"):
        generator.generate(b"img", "image/png")
