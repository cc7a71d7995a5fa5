"""
gemini-mcp exception hierarchy.

All custom exceptions live here to avoid circular imports.
"""


class GeminiMcpError(Exception):
    """Exit code 1 — base for every error raised by this package."""

    exit_code = 1


class ConfigurationError(GeminiMcpError):
    """Exit code 1 — missing or malformed startup configuration."""

    def __init__(self, message):
        super().__init__(f"Configuration error: {message}")


class ExternalApiError(GeminiMcpError):
    """Raised by GeminiClient when the outbound API call fails.

    ``status_code`` is the HTTP-like status (408 timeout, 429 rate limit, ...).
    ``api_response`` holds raw detail for operators; it never reaches clients.
    """

    def __init__(self, message, status_code=None, api_response=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.api_response = api_response


class InvalidToolArgumentError(GeminiMcpError):
    """A tool was invoked with arguments that fail validation."""

    def __init__(self, tool_name, message):
        super().__init__(f"Invalid argument for tool '{tool_name}': {message}")
        self.tool_name = tool_name


class SessionRegistryError(GeminiMcpError):
    """Registry misuse, e.g. registering an id twice. A programming error."""


def format_error_for_user(error):
    """Return a short, client-safe description of ``error``.

    Raw API payloads and stack traces are left out; they only go to the log.
    """
    if isinstance(error, ExternalApiError):
        status = f" (status {error.status_code})" if error.status_code else ""
        return f"API request failed{status}: {error.message}"
    return str(error)
