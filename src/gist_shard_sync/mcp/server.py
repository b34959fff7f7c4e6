"""MCP server for sharded Gist sync using stdio transport.

Exposes maintenance tools (pull, shard repair, status, ping) to MCP
clients.  All user-facing messages go to stderr; stdout carries the
JSON-RPC stream.
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import DEFAULT_MCP_LOG_FILE, setup_logging
from ..version import check_version_consistency
from .context import SyncContext
from .lifespan import server_lifespan
from .tools import ALL_SPECS, ToolRegistry, build_error_response
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

SERVER_NAME = "gist-shard-sync"

server = Server(SERVER_NAME)

# Initialized in main()
_context: SyncContext | None = None
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, read-only)
# ---------------------------------------------------------------------------


async def _handle_ping(ctx: SyncContext, args: dict) -> types.CallToolResult:
    """Handle ping tool -- verify the GitHub token."""
    try:
        user = await run_sync(ctx.client.get_authenticated_user)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"GitHub reachable. Authenticated as {user.get('login', 'unknown')}.",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"GitHub connection failed: {e}. Check GITHUB_TOKEN and GIST_SYNC_API_URL.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Verify the GitHub token and report the authenticated user",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    writes_remote=False,
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> SyncContext:
    """Get the global SyncContext.

    Raises:
        RuntimeError: If the server lifespan has not started.
    """
    if _context is None:
        raise RuntimeError(
            "SyncContext not initialized. Server lifespan not started."
        )
    return _context


def set_context(context: SyncContext | None) -> None:
    global _context
    _context = context


def get_registry() -> ToolRegistry:
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    context = get_context()
    try:
        return await get_registry().call_tool(name, arguments, context)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(read_only: bool = False) -> ToolRegistry:
    return ToolRegistry([PING_SPEC] + ALL_SPECS, read_only=read_only)


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Args:
        config_overrides: Optional dict with config values to override
            (token, api_url, data_dir, debug, log_file, read_only)
    """
    overrides = dict(config_overrides or {})
    log_file = overrides.pop("log_file", None)
    read_only = bool(overrides.pop("read_only", False))

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(mode="mcp", debug=bool(overrides.get("debug")), log_file=log_file)

    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"Warning: {message}\n")
    else:
        logger.info(message)

    registry = build_registry(read_only)
    logger.info(
        "Registered %d tools (read_only=%s)", registry.tool_count(), read_only
    )
    if read_only:
        print(
            f"Read-only mode: {registry.tool_count()} tools enabled",
            file=sys.stderr,
        )
    set_registry(registry)

    # set_context() is called here rather than in the lifespan so that
    # `python -m gist_shard_sync.mcp.server` updates this module, not a
    # second import of it.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_context(ctx["context"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Gist Shard Sync - MCP server for sharded Gist document sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .gist_sync/config.yml)
  gist-shard-sync

  # Use another cache directory
  gist-shard-sync --data-dir ~/notes-cache

  # Hide tools that write to GitHub
  gist-shard-sync --read-only

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--token",
        help="Override GitHub token (visible in process list -- prefer GITHUB_TOKEN env var)",
    )
    parser.add_argument("--api-url", help="Override GitHub API base URL")
    parser.add_argument("--data-dir", help="Override local cache directory")
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_MCP_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_MCP_LOG_FILE})",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Only expose tools that never write to GitHub",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"gist-shard-sync version {__version__}",
    )

    args = parser.parse_args()

    config_overrides: dict = {}
    if args.token:
        config_overrides["token"] = args.token
    if args.api_url:
        config_overrides["api_url"] = args.api_url
    if args.data_dir:
        config_overrides["data_dir"] = args.data_dir
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.read_only:
        config_overrides["read_only"] = True

    cli_keys = [
        k for k in config_overrides if k not in ("token", "log_file")
    ]
    if cli_keys:
        print(f"Config overrides from CLI: {', '.join(cli_keys)}", file=sys.stderr)

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
