"""
gemini-mcp configuration, constants, and environment validation.
Standalone module — imports only the exception hierarchy.
"""

import os
from dataclasses import dataclass

from gemini_mcp.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# .env path and helpers
# ---------------------------------------------------------------------------

ENV_PATH = os.path.join(os.getcwd(), ".env")


def load_env():
    """Read KEY=VALUE pairs from .env, then overlay the process environment.

    The process environment wins so container deployments can override a
    checked-in .env without editing it.
    """
    env = {}
    if os.path.exists(ENV_PATH):
        with open(ENV_PATH) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, val = line.split("=", 1)
                    env[key.strip()] = val.strip().strip("'\"")
    for key in _KNOWN_ENV_KEYS:
        if key in os.environ:
            env[key] = os.environ[key]
    return env


def _env_bool(env, key, default=False):
    """Parse common boolean env formats."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env, key, default, errors, minimum=1, maximum=None):
    """Parse a bounded integer env value, recording a problem on failure."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        errors.append(f"{key} must be an integer, got {raw!r}")
        return default
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f">= {minimum}"
        errors.append(f"{key} must be {bound}, got {value}")
        return default
    return value


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VERSION = "1.0.0"
SERVER_NAME = "GeminiMcpServer"

SERVER_INSTRUCTIONS = (
    "This server provides tools to interact with the Google Gemini API.\n\n"
    "Available tools:\n"
    "- callGemini: Sends a prompt to the Gemini API and returns the generated response.\n"
    "  You can specify parameters like model, temperature, and maxOutputTokens.\n"
)

DEFAULT_MODEL = "gemini-1.5-flash-latest"
SUPPORTED_MODELS = (
    "gemini-1.5-flash-latest",
    "gemini-1.5-pro-latest",
    "gemini-pro",
    "gemini-pro-vision",
)

API_KEY_PLACEHOLDER = "YOUR_ACTUAL_GEMINI_API_KEY_HERE"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_REQUEST_TIMEOUT_MS = 30000
MAX_REQUEST_TIMEOUT_MS = 60000
DEFAULT_LOG_LEVEL = "info"
LOG_LEVELS = ("error", "warn", "info", "debug")

MCP_PATH = "/mcp"

_KNOWN_ENV_KEYS = (
    "GEMINI_API_KEY",
    "HOST",
    "PORT",
    "REQUEST_TIMEOUT_MS",
    "LOG_LEVEL",
    "MCP_JSON_RESPONSE",
)


# ---------------------------------------------------------------------------
# Validated settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Settings:
    """Validated runtime configuration. Build with load_settings()."""

    gemini_api_key: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    log_level: str = DEFAULT_LOG_LEVEL
    json_response: bool = False

    def __repr__(self):
        # The key must never end up in a log line or traceback.
        return (
            f"Settings(gemini_api_key='***', host={self.host!r}, port={self.port}, "
            f"request_timeout_ms={self.request_timeout_ms}, log_level={self.log_level!r}, "
            f"json_response={self.json_response})"
        )


def load_settings(env=None):
    """Validate the environment and return Settings.

    Every problem is collected before raising, so one failed start reports
    all of them.

    Raises:
        ConfigurationError: if any variable is missing or invalid.
    """
    if env is None:
        env = load_env()
    errors = []

    api_key = env.get("GEMINI_API_KEY", "").strip()
    if not api_key:
        errors.append("GEMINI_API_KEY is required")
    elif api_key == API_KEY_PLACEHOLDER:
        errors.append("Please replace the placeholder with your actual Gemini API key")

    port = _env_int(env, "PORT", DEFAULT_PORT, errors, minimum=1, maximum=65535)
    timeout_ms = _env_int(
        env,
        "REQUEST_TIMEOUT_MS",
        DEFAULT_REQUEST_TIMEOUT_MS,
        errors,
        minimum=1,
        maximum=MAX_REQUEST_TIMEOUT_MS,
    )

    log_level = (env.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().lower()
    if log_level not in LOG_LEVELS:
        errors.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

    if errors:
        raise ConfigurationError(
            "Environment validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )

    return Settings(
        gemini_api_key=api_key,
        host=(env.get("HOST") or DEFAULT_HOST).strip(),
        port=port,
        request_timeout_ms=timeout_ms,
        log_level=log_level,
        json_response=_env_bool(env, "MCP_JSON_RESPONSE", False),
    )
