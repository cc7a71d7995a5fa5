"""
Shared test fixtures for gemini-mcp tests.
Strips configuration variables from the environment so no test reads a
real .env or API key.
"""

import os
import sys

import pytest

# Add project root to path so imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

_CONFIG_KEYS = (
    "GEMINI_API_KEY",
    "HOST",
    "PORT",
    "REQUEST_TIMEOUT_MS",
    "LOG_LEVEL",
    "MCP_JSON_RESPONSE",
)


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch, tmp_path):
    """Ensure every test starts with a clean configuration state."""
    from gemini_mcp import config

    for key in _CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config, "ENV_PATH", str(tmp_path / "nonexistent.env"))
