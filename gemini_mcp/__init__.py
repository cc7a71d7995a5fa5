"""gemini-mcp — MCP server exposing the Google Gemini API as a tool."""

from gemini_mcp.config import VERSION, Settings, load_settings
from gemini_mcp.exceptions import (
    ConfigurationError,
    ExternalApiError,
    GeminiMcpError,
    InvalidToolArgumentError,
    SessionRegistryError,
    format_error_for_user,
)
from gemini_mcp.models import GeminiToolInput
from gemini_mcp.types import GeminiResponse

__all__ = [
    "VERSION",
    "ConfigurationError",
    "ExternalApiError",
    "GeminiMcpError",
    "GeminiResponse",
    "GeminiToolInput",
    "InvalidToolArgumentError",
    "SessionRegistryError",
    "Settings",
    "format_error_for_user",
    "load_settings",
]
