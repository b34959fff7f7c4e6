"""Error response builders for MCP tool handlers.

Every failure is returned as a tool result with ``isError=True`` and a
corrective action, so an agent can recover without human intervention.
"""

import mcp.types as types

from ...exceptions import (
    AuthRequiredError,
    ConflictError,
    NotFoundError,
    ParseError,
    SyncError,
    TransportError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, version_conflict,
            auth_required, permission_denied, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Map a ``SyncError`` to an error response with a corrective action."""
    message = str(error)
    match error:
        case ConflictError():
            return build_error_response(
                "version_conflict",
                message,
                "Run sync_pull to fetch the newer remote index, then retry.",
            )
        case AuthRequiredError():
            return build_error_response(
                "auth_required",
                message,
                "Set GIST_SYNC_VAULT_PASSWORD and restart the server to "
                "read or write secure documents.",
            )
        case NotFoundError():
            return build_error_response(
                "not_found",
                message,
                "Check root_container_id in the local sync config, or run "
                "sync_pull to locate the root gist.",
            )
        case ParseError():
            return build_error_response(
                "parse_error",
                message,
                "Run shard_repair with apply=true to rebuild the shard list.",
            )
        case TransportError(status=401 | 403):
            return build_error_response(
                "permission_denied",
                message,
                "Check that GITHUB_TOKEN is valid and has the gist scope.",
            )
        case _:
            return build_error_response(
                "server_error",
                message,
                "Retry later; GitHub may be rate limiting or unavailable.",
            )
