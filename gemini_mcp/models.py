"""
Typed input contract for the callGemini tool.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gemini_mcp.config import DEFAULT_MODEL
from gemini_mcp.exceptions import InvalidToolArgumentError

TOOL_NAME = "callGemini"


class GeminiToolInput(BaseModel):
    """Validated parameters for one callGemini invocation.

    Field names are snake_case in Python and camelCase on the wire.
    """

    # Strict: wrong JSON types are rejected, never coerced.
    model_config = ConfigDict(populate_by_name=True, extra="ignore", strict=True)

    model: str = Field(
        default=DEFAULT_MODEL,
        min_length=1,
        description="The Gemini model to use (e.g., 'gemini-1.5-flash-latest', 'gemini-pro')",
    )
    prompt: str = Field(
        ...,
        min_length=1,
        description="The text prompt to send to the Gemini API",
    )
    temperature: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Controls randomness of output. Lower is more deterministic.",
    )
    max_output_tokens: int = Field(
        default=2048,
        ge=1,
        le=8192,
        alias="maxOutputTokens",
        description="Maximum number of tokens to generate",
    )
    top_k: int | None = Field(
        default=None,
        gt=0,
        alias="topK",
        description="Consider only the top-K tokens for sampling",
    )
    top_p: float | None = Field(
        default=None,
        ge=0,
        le=1,
        alias="topP",
        description="Consider only the tokens comprising the top-P probability mass for sampling",
    )
    enable_grounding: bool = Field(
        default=True,
        alias="enableGrounding",
        description="Enable grounding with web search capabilities",
    )

    @classmethod
    def input_schema(cls) -> dict:
        """JSON Schema advertised in tools/list."""
        return cls.model_json_schema(by_alias=True)

    @classmethod
    def parse_arguments(cls, arguments: dict | None) -> GeminiToolInput:
        """Validate raw tool arguments. Raises InvalidToolArgumentError."""
        try:
            return cls.model_validate(arguments or {})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidToolArgumentError(TOOL_NAME, problems) from None
