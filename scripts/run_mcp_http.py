"""Run the Gemini MCP server in streamable-http mode."""

import sys

from gemini_mcp.cli import main

if __name__ == "__main__":
    main(["--transport", "http", *sys.argv[1:]])
