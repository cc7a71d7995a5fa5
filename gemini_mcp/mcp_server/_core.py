"""Core helpers: tool result envelopes and the JSON error bodies used over HTTP."""

from __future__ import annotations

from mcp import types

from gemini_mcp.exceptions import format_error_for_user

ERROR_PREFIX = "Error interacting with Gemini API"


def _text_result(text: str) -> types.CallToolResult:
    """Wrap generated text in the protocol's content-item shape."""
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


def _error_result(message: str) -> types.CallToolResult:
    """Return a non-exceptional tool result flagged with isError."""
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=message)],
        isError=True,
    )


def _api_error_result(error: Exception) -> types.CallToolResult:
    """Error result for a failed outbound call, in sanitized user-facing form.

    Raw detail and stack stay in the log.
    """
    return _error_result(f"{ERROR_PREFIX}: {format_error_for_user(error)}")


def _invalid_request_body() -> dict:
    return {"error": "Invalid MCP request"}


def _internal_error_body(exc: BaseException) -> dict:
    return {"error": "Internal server error", "message": str(exc)}
