"""
Command line entry point for jimeng-mcp.

    jimeng-mcp stdio              Run as MCP server (stdio mode)
    jimeng-mcp server [--port N]  Run as HTTP API server
"""
import argparse
import asyncio
import sys
from typing import Optional, Sequence

USAGE = """\
jimeng-mcp - Jimeng AI Free API MCP Server

Usage:
  jimeng-mcp stdio              Run as MCP server (stdio mode)
  jimeng-mcp server [options]   Run as HTTP API server

Options for server mode:
  --port <number>               HTTP server port (default: 8000 or from SERVER_PORT)

Environment Variables:
  JIMENG_SESSION_ID             Session ID(s) for API access (comma-separated for multiple)
  JIMENG_TOKEN                  Alias for JIMENG_SESSION_ID
  SERVER_PORT                   HTTP server port
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jimeng-mcp", usage=USAGE, add_help=False)
    parser.add_argument("mode", nargs="?")
    parser.add_argument("-h", "--help", action="store_true", dest="help")
    parser.add_argument("--port", type=int, help="HTTP server port for server mode")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.help or args.mode is None:
        print(USAGE)
        return 0

    if args.mode == "stdio":
        from mcp_server.app import main as run_stdio

        asyncio.run(run_stdio())
        return 0

    if args.mode == "server":
        from http_server.app import main as run_http

        run_http(port=args.port)
        return 0

    print(f"Unknown command: {args.mode}", file=sys.stderr)
    print(USAGE)
    return 1


if __name__ == "__main__":
    sys.exit(main())
