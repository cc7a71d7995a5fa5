"""Command-line entry point: ``gemini-mcp``.

Examples:
    gemini-mcp                          # stdio transport (default)
    gemini-mcp --transport http         # streamable HTTP on $PORT (3000)
    gemini-mcp --transport http --port 8080
    gemini-mcp --list-tools
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys

from gemini_mcp import config
from gemini_mcp.exceptions import ConfigurationError, GeminiMcpError
from gemini_mcp.logging_config import configure_logging

logger = logging.getLogger("gemini_mcp.cli")


def _port(value):
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}") from None
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port must be between 1 and 65535, got {port}")
    return port


def build_parser():
    parser = argparse.ArgumentParser(
        prog="gemini-mcp",
        description="Expose the Google Gemini API as an MCP tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  GEMINI_API_KEY       required
  PORT                 HTTP port (default 3000)
  HOST                 HTTP bind address (default 0.0.0.0)
  REQUEST_TIMEOUT_MS   Gemini request timeout, <= 60000 (default 30000)
  LOG_LEVEL            error | warn | info | debug (default info)
  MCP_JSON_RESPONSE    answer POSTs with JSON instead of SSE (default false)
        """,
    )
    parser.add_argument(
        "--transport",
        "-t",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport type (default: stdio)",
    )
    parser.add_argument("--host", default=None, help="HTTP bind address (overrides HOST)")
    parser.add_argument("--port", "-p", type=_port, default=None, help="HTTP port (overrides PORT)")
    parser.add_argument(
        "--list-tools", "-l", action="store_true", help="List available tools and exit"
    )
    parser.add_argument("--version", action="version", version=f"gemini-mcp {config.VERSION}")
    return parser


def _list_tools():
    from gemini_mcp.mcp_server import tool_definition

    tool = tool_definition()
    print("Available tools:")
    print(f"  {tool.name}")
    print(f"    {tool.description}")


def main(argv=None):
    ns = build_parser().parse_args(argv)

    if ns.list_tools:
        _list_tools()
        sys.exit(0)

    try:
        settings = config.load_settings()
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        sys.exit(e.exit_code)

    overrides = {}
    if ns.host:
        overrides["host"] = ns.host
    if ns.port:
        overrides["port"] = ns.port
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    configure_logging(settings.log_level)

    # Imported late so --help and --list-tools stay fast.
    from gemini_mcp.client import GeminiClient
    from gemini_mcp.mcp_server import serve_http, serve_stdio

    try:
        client = GeminiClient.from_settings(settings)
        if ns.transport == "http":
            exit_code = asyncio.run(serve_http(settings, client))
        else:
            exit_code = asyncio.run(serve_stdio(client))
    except GeminiMcpError as e:
        logger.error("Error starting MCP server", extra={"error": str(e)})
        sys.exit(e.exit_code)
    except Exception as e:
        logger.exception("Error starting MCP server", extra={"error": str(e)})
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
