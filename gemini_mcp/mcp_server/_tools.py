"""Gemini tool: callGemini definition, invocation boundary, registration."""

from __future__ import annotations

import logging
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server

from gemini_mcp.client import GeminiClient
from gemini_mcp.exceptions import InvalidToolArgumentError
from gemini_mcp.mcp_server._core import _api_error_result, _error_result, _text_result
from gemini_mcp.models import TOOL_NAME, GeminiToolInput

logger = logging.getLogger(__name__)


def tool_definition() -> types.Tool:
    """The callGemini tool as advertised in tools/list."""
    return types.Tool(
        name=TOOL_NAME,
        title="Gemini API",
        description="Sends a prompt to the Google Gemini API and returns the generated response",
        inputSchema=GeminiToolInput.input_schema(),
        annotations=types.ToolAnnotations(
            title="Gemini API",
            readOnlyHint=True,
            openWorldHint=True,
        ),
    )


async def call_gemini(client: GeminiClient, arguments: dict[str, Any] | None) -> types.CallToolResult:
    """Validate, call Gemini, and map the outcome to a tool result.

    Never raises: invalid arguments and API failures both come back as
    results with ``isError`` set, so the protocol session stays healthy.
    """
    try:
        request = GeminiToolInput.parse_arguments(arguments)
    except InvalidToolArgumentError as e:
        logger.warning("Rejected callGemini arguments", extra={"reason": str(e)})
        return _error_result(str(e))

    logger.info(
        "Tool callGemini called",
        extra={
            "model": request.model,
            "prompt_length": len(request.prompt),
            "temperature": request.temperature,
            "enable_grounding": request.enable_grounding,
        },
    )
    try:
        response = await client.generate(request)
    except Exception as e:
        logger.exception(
            "Error in callGemini tool",
            extra={
                "error_message": str(e),
                "status_code": getattr(e, "status_code", None),
                "api_response": getattr(e, "api_response", None),
            },
        )
        return _api_error_result(e)
    return _text_result(response["text"])


def register(server: Server, client: GeminiClient) -> None:
    """Register the Gemini tool handlers with the low-level MCP server."""
    logger.info("Registering Gemini API tool")

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [tool_definition()]

    # Arguments are validated by GeminiToolInput so failures keep our message shape.
    @server.call_tool(validate_input=False)
    async def handle_call_tool(name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        if name != TOOL_NAME:
            return _error_result(f"Unknown tool: {name}")
        return await call_gemini(client, arguments)
