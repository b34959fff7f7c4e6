"""MCP tool handlers for pull, repair and status.

Defines three tools:

- ``sync_pull`` -- pull the remote index and changed documents.
- ``shard_repair`` -- diagnose (or repair with ``apply``) the shard list.
- ``sync_status`` -- show the local config and index snapshot summary.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...exceptions import NotFoundError
from ...sync.models import RepairOptions
from ...sync.reporter import (
    format_pull_report,
    format_repair_report,
    format_status,
    pull_to_json,
    repair_to_json,
)
from ..context import SyncContext
from .registry import ToolSpec

logger = logging.getLogger(__name__)

REPAIR_FLAGS = (
    "apply",
    "rewrite_metadata",
    "drop_empty_shards",
    "delete_orphan_containers",
    "sweep_unreferenced_containers",
)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_sync_pull(
    ctx: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_pull`` tool."""
    config = await ctx.local.get_config()
    last_seen = None if args.get("force") else config.last_remote_updated_at
    result = await ctx.engine.sync_down(config, last_seen)

    updates = dict(result.config_updates)
    updates["last_remote_updated_at"] = result.remote_updated_at
    await ctx.local.save_config(config.updated(updates))

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_pull_report(result))],
        structuredContent=pull_to_json(result),
    )


def _repair_options(args: dict[str, Any]) -> RepairOptions:
    values: dict[str, Any] = {}
    for flag in REPAIR_FLAGS:
        if flag in args:
            if not isinstance(args[flag], bool):
                raise ValueError(f"{flag} must be a boolean")
            values[flag] = args[flag]
    legacy = args.get("legacy_container_id_to_delete")
    if legacy:
        values["legacy_container_id_to_delete"] = str(legacy)
    return RepairOptions(**values)


async def _handle_shard_repair(
    ctx: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``shard_repair`` tool."""
    options = _repair_options(args)
    config = await ctx.local.get_config()
    root_id = config.root_container_id
    if not root_id:
        raise NotFoundError("No root container configured; run sync_pull first")

    snapshot = await ctx.engine.fetch_remote_index(root_id)
    report = await ctx.engine.repair_shards(root_id, snapshot, options)

    deleted = report.deleted_legacy_container_id
    if deleted and deleted == config.legacy_container_id:
        await ctx.local.save_config(config.updated({"legacy_container_id": None}))

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_repair_report(report))],
        structuredContent=repair_to_json(report),
    )


async def _handle_sync_status(
    ctx: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_status`` tool."""
    config = await ctx.local.get_config()
    index = await ctx.local.get_index()
    structured: dict[str, Any] = {
        "root_container_id": config.root_container_id,
        "legacy_container_id": config.legacy_container_id,
        "schema_version": config.schema_version,
        "last_remote_updated_at": config.last_remote_updated_at,
        "has_index": index is not None,
    }
    if index is not None:
        structured.update(
            {
                "categories": len(index.categories),
                "documents": sum(len(c.items) for c in index.categories),
                "shards": len(index.shard_list),
            }
        )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_status(config, index))],
        structuredContent=structured,
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=types.Tool(
            name="sync_pull",
            description=(
                "Pull the remote index and every changed document into the "
                "local cache. Migrates an unsharded root on first contact. "
                "Local edits that collide with remote changes are kept as "
                "conflict copies."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "force": {
                        "type": "boolean",
                        "default": False,
                        "description": "Pull even if the root gist looks unchanged",
                    },
                },
                "required": [],
            },
        ),
        writes_remote=True,
        handler=_handle_sync_pull,
    ),
    ToolSpec(
        tool=types.Tool(
            name="shard_repair",
            description=(
                "Rebuild the shard list from shard manifests: merge duplicate "
                "rows, recompute counters, drop empty shards and optionally "
                "delete orphaned gists. Dry run unless apply=true."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=True,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "apply": {
                        "type": "boolean",
                        "default": False,
                        "description": "Write the repaired shard list",
                    },
                    "rewrite_metadata": {
                        "type": "boolean",
                        "default": True,
                        "description": "Rewrite shard README and description",
                    },
                    "drop_empty_shards": {
                        "type": "boolean",
                        "default": True,
                        "description": "Remove shards with no manifest entries and no items",
                    },
                    "delete_orphan_containers": {
                        "type": "boolean",
                        "default": False,
                        "description": "Delete the gists of dropped shards",
                    },
                    "sweep_unreferenced_containers": {
                        "type": "boolean",
                        "default": False,
                        "description": "Delete shard gists nothing references",
                    },
                    "legacy_container_id_to_delete": {
                        "type": "string",
                        "description": "Id of a migrated legacy gist to delete",
                    },
                },
                "required": [],
            },
        ),
        writes_remote=True,
        handler=_handle_shard_repair,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_status",
            description=(
                "Show the local sync config and index snapshot: root gist, "
                "schema version, category, document and shard counts."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=True,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=False,
            ),
            inputSchema={
                "type": "object",
                "properties": {},
                "required": [],
            },
        ),
        writes_remote=False,
        handler=_handle_sync_status,
    ),
]
