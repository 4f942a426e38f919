"""
Calculation generator for financial statement images.

Asks a multimodal language model to list every calculation on a
statement as a JSON array of calculation records.

Uses Anthropic Claude by default, or OpenAI when configured.
"""
import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import anthropic
import openai
import structlog

from statementcalc.config import Settings, get_settings
from statementcalc.exceptions import LLMServiceError
from statementcalc.middleware.logging import log_performance

logger = structlog.get_logger(__name__)


class StatementType(str, Enum):
    """Financial statement types offered for processing."""
    BALANCE_SHEET = "Balance Sheet"
    PROFIT_AND_LOSS = "Profit and Loss"
    CASH_FLOW = "Cash Flow"
    CHANGES_IN_EQUITY = "Changes in Equity"
    FINANCIAL_STATEMENT = "financialStatement"


@dataclass
class GenerationResult:
    """Raw output of one generation call."""

    text: str
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0


class CalculationGenerator:
    """
    LLM client that proposes calculations for a statement image.

    The model returns text; parsing and validation of the records is
    left to the calculation grouper so malformed entries can be skipped
    one at a time.
    """

    BASE_PROMPT = """
Provide all the calculations for a financial statement for every year. If you do a calculation for a year, you must do it for all the other years. Brackets around numbers should be negatives. Only return a valid JSON array format with the following properties:
* formulaName: string (a descriptive name for the calculation)
* rowName: string (must match exactly the row name in the financial statement, if the row name is blank then return an empty string)
* year: string
* resultInStatement: number
* formula: string (refer to the number values and omit this object if the calculation involves only one value)
"""

    ENTITY_PROMPT = """* entityType?: "Group" | "Company"
"""

    CLOSING_PROMPT = """
Omit the entire object from the array if the "calculation" involves only one value.
"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        anthropic_client: Optional[Any] = None,
        openai_client: Optional[Any] = None,
    ):
        """
        Initialize generator.

        Args:
            settings: Application settings (defaults to cached settings).
            anthropic_client: Preconfigured Anthropic client.
            openai_client: Preconfigured OpenAI client.
        """
        self._settings = settings or get_settings()
        self._anthropic = anthropic_client
        self._openai = openai_client

    def build_prompt(self, statement_type: Optional[str], is_multi_entity: bool) -> str:
        """
        Build the extraction prompt.

        Args:
            statement_type: Statement type hint.
            is_multi_entity: Whether the statement mixes group and
                company figures.

        Returns:
            Prompt text.
        """
        prompt = self.BASE_PROMPT
        if is_multi_entity:
            prompt += self.ENTITY_PROMPT
        if statement_type and statement_type != StatementType.FINANCIAL_STATEMENT.value:
            prompt += f"\nThe statement is a {statement_type}.\n"
        prompt += self.CLOSING_PROMPT
        return prompt

    @log_performance("llm_generate_calculations")
    def generate(
        self,
        image_bytes: bytes,
        media_type: str,
        statement_type: Optional[str] = None,
        is_multi_entity: bool = False,
        model: Optional[str] = None,
    ) -> GenerationResult:
        """
        Ask the model for the statement's calculations.

        Args:
            image_bytes: Raw image bytes.
            media_type: Image MIME type.
            statement_type: Statement type hint.
            is_multi_entity: Whether to request entityType per record.
            model: Model override for this request.

        Returns:
            GenerationResult with the raw response text.

        Raises:
            LLMServiceError: If the provider is unavailable or fails.
        """
        prompt = self.build_prompt(statement_type, is_multi_entity)
        encoded = base64.b64encode(image_bytes).decode("ascii")
        model_name = model or self._settings.llm_model
        provider = self._settings.llm_provider.lower()

        logger.info(
            "Generating calculations",
            provider=provider,
            model=model_name,
            statement_type=statement_type,
            is_multi_entity=is_multi_entity,
        )

        if provider == "anthropic":
            return self._call_anthropic(prompt, encoded, media_type, model_name)
        if provider == "openai":
            return self._call_openai(prompt, encoded, media_type, model_name)
        raise LLMServiceError(f"Unknown LLM provider '{provider}'")

    def _call_anthropic(
        self, prompt: str, encoded: str, media_type: str, model_name: str
    ) -> GenerationResult:
        """Call Claude with the prompt and image."""
        client = self._get_anthropic_client()

        try:
            response = client.messages.create(
                model=model_name,
                max_tokens=self._settings.llm_max_tokens,
                temperature=self._settings.llm_temperature,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": media_type,
                                    "data": encoded,
                                },
                            },
                        ],
                    }
                ],
            )
        except anthropic.APIError as e:
            logger.error("Anthropic request failed", error=str(e), model=model_name)
            raise LLMServiceError(f"Anthropic request failed: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        usage = getattr(response, "usage", None)

        return GenerationResult(
            text=text,
            model=model_name,
            provider="anthropic",
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )

    def _call_openai(
        self, prompt: str, encoded: str, media_type: str, model_name: str
    ) -> GenerationResult:
        """Call an OpenAI vision model with the prompt and image."""
        client = self._get_openai_client()

        try:
            response = client.chat.completions.create(
                model=model_name,
                max_tokens=self._settings.llm_max_tokens,
                temperature=self._settings.llm_temperature,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{media_type};base64,{encoded}"},
                            },
                        ],
                    }
                ],
            )
        except openai.OpenAIError as e:
            logger.error("OpenAI request failed", error=str(e), model=model_name)
            raise LLMServiceError(f"OpenAI request failed: {e}") from e

        usage = getattr(response, "usage", None)

        return GenerationResult(
            text=response.choices[0].message.content or "",
            model=model_name,
            provider="openai",
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

    def _get_anthropic_client(self) -> Any:
        if self._anthropic is None:
            if not self._settings.anthropic_api_key:
                raise LLMServiceError("ANTHROPIC_API_KEY is not configured")
            self._anthropic = anthropic.Anthropic(api_key=self._settings.anthropic_api_key)
        return self._anthropic

    def _get_openai_client(self) -> Any:
        if self._openai is None:
            if not self._settings.openai_api_key:
                raise LLMServiceError("OPENAI_API_KEY is not configured")
            self._openai = openai.OpenAI(api_key=self._settings.openai_api_key)
        return self._openai


# Singleton instance
_generator_instance: Optional[CalculationGenerator] = None


def get_calculation_generator() -> CalculationGenerator:
    """Get singleton CalculationGenerator instance."""
    global _generator_instance
    if _generator_instance is None:
        _generator_instance = CalculationGenerator()
    return _generator_instance
