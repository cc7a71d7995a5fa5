"""
GeminiClient — outbound access to the Google Gemini API.

Built once at startup, after configuration validates, and handed to the
tool layer. Wraps the official google-genai SDK and converts every failure
into ExternalApiError so callers deal with one exception type.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import anyio
import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from gemini_mcp import config
from gemini_mcp.exceptions import ExternalApiError
from gemini_mcp.models import GeminiToolInput
from gemini_mcp.types import GeminiResponse

logger = logging.getLogger(__name__)

_TIMEOUT_STATUSES = frozenset({"DEADLINE_EXCEEDED"})
_RATE_LIMIT_STATUSES = frozenset({"RESOURCE_EXHAUSTED"})


def _enum_value(value):
    return getattr(value, "value", value)


def _dump(obj: Any) -> Any:
    """Best-effort conversion of SDK objects to JSON-friendly data."""
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(mode="json", exclude_none=True)
    return obj


class GeminiClient:
    """Async client for text generation.

    Args:
        api_key: Gemini API key. Required.
        timeout_ms: Per-request timeout; enforced both by the SDK transport
            and by a cancel scope around the call.
        sdk_client: Pre-built ``genai.Client`` (tests pass a fake).
    """

    def __init__(
        self,
        api_key: str,
        *,
        timeout_ms: int = config.DEFAULT_REQUEST_TIMEOUT_MS,
        sdk_client: Any | None = None,
    ) -> None:
        if not api_key:
            raise ExternalApiError(
                "Gemini API key not found in configuration", 401, "Missing API key"
            )
        self.timeout_ms = timeout_ms
        if sdk_client is None:
            sdk_client = genai.Client(
                api_key=api_key,
                http_options=genai_types.HttpOptions(timeout=timeout_ms),
            )
        self._sdk = sdk_client

    @classmethod
    def from_settings(cls, settings: config.Settings) -> GeminiClient:
        return cls(settings.gemini_api_key, timeout_ms=settings.request_timeout_ms)

    def _build_config(self, request: GeminiToolInput) -> genai_types.GenerateContentConfig:
        kwargs: dict[str, Any] = {
            "temperature": request.temperature,
            "max_output_tokens": request.max_output_tokens,
        }
        if request.top_k is not None:
            kwargs["top_k"] = request.top_k
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if request.enable_grounding:
            kwargs["tools"] = [
                genai_types.Tool(google_search_retrieval=genai_types.GoogleSearchRetrieval())
            ]
        return genai_types.GenerateContentConfig(**kwargs)

    def _timeout_error(self) -> ExternalApiError:
        return ExternalApiError(
            f"Request timed out after {self.timeout_ms}ms",
            408,
            "Request took too long to complete",
        )

    def _translate_api_error(self, e: Exception) -> ExternalApiError:
        status = str(getattr(e, "status", "") or "").upper()
        code = getattr(e, "code", None)
        if status in _TIMEOUT_STATUSES:
            return self._timeout_error()
        if code == 429 or status in _RATE_LIMIT_STATUSES:
            return ExternalApiError("Rate limit exceeded for Gemini API", 429, "Too many requests")
        message = getattr(e, "message", None) or str(e)
        details = getattr(e, "details", None)
        return ExternalApiError(
            f"Gemini API error: {message}",
            code if isinstance(code, int) else 500,
            json.dumps(details, default=str)[:500] if details is not None else None,
        )

    async def generate(self, request: GeminiToolInput) -> GeminiResponse:
        """Send one prompt and return the generated text.

        Raises:
            ExternalApiError: on timeout, rate limit, SDK failure, or a
                response without candidates or text.
        """
        if request.model not in config.SUPPORTED_MODELS:
            logger.warning(
                "Potentially unsupported model: %s. Supported models are: %s",
                request.model,
                ", ".join(config.SUPPORTED_MODELS),
            )
        logger.debug(
            "Initializing Gemini API call",
            extra={
                "model": request.model,
                "prompt_length": len(request.prompt),
                "temperature": request.temperature,
                "output_limit": request.max_output_tokens,
                "enable_grounding": request.enable_grounding,
            },
        )

        try:
            with anyio.fail_after(self.timeout_ms / 1000):
                response = await self._sdk.aio.models.generate_content(
                    model=request.model,
                    contents=request.prompt,
                    config=self._build_config(request),
                )
        except ExternalApiError:
            raise
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.error("Gemini API call timed out", extra={"timeout_ms": self.timeout_ms})
            raise self._timeout_error() from e
        except genai_errors.APIError as e:
            logger.error("Gemini API returned an error", exc_info=True)
            raise self._translate_api_error(e) from e
        except Exception as e:
            logger.error("Error calling Gemini API with SDK", exc_info=True)
            raise ExternalApiError(
                str(e) or "Unknown error occurred calling Gemini API", 500, repr(e)
            ) from e

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> GeminiResponse:
        candidates = getattr(response, "candidates", None) or []
        logger.debug(
            "Gemini API response received",
            extra={"candidate_count": len(candidates)},
        )
        if not candidates:
            raise ExternalApiError(
                "No candidates found in Gemini response", 200, "Empty candidates array"
            )
        candidate = candidates[0]
        text = getattr(response, "text", None)
        if not text:
            logger.error(
                "No text found in Gemini API response",
                extra={"finish_reason": _enum_value(getattr(candidate, "finish_reason", None))},
            )
            raise ExternalApiError(
                "Could not parse Gemini response - missing text content",
                200,
                json.dumps(_dump(response), default=str)[:200],
            )
        ratings = getattr(candidate, "safety_ratings", None)
        return {
            "text": text,
            "finish_reason": _enum_value(getattr(candidate, "finish_reason", None)),
            "safety_ratings": [_dump(r) for r in ratings] if ratings else None,
        }
