"""Pull and repair report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_pull_report`` -- summary of one ``sync_down`` call.
- ``format_repair_report`` -- repair counters plus the repaired shard table.
- ``format_status`` -- one-screen overview of a local index snapshot.
- ``pull_to_json`` / ``repair_to_json`` -- structured dicts for MCP output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .repair import format_bytes

if TYPE_CHECKING:
    from .models import Index, RepairReport, SyncConfig, SyncDownResult

# ------------------------------------------------------------------
# Human-readable reports
# ------------------------------------------------------------------


def format_pull_report(result: SyncDownResult) -> str:
    """Format a pull result as human-readable text.

    Sections are only included when they contain at least one document.

    Args:
        result: The value returned by ``SyncEngine.sync_down``.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    if not result.synced:
        lines.append(
            f"Remote unchanged since {result.remote_updated_at or 'unknown'}; "
            "nothing fetched."
        )
    else:
        lines.append(f"Pulled remote index ({result.remote_updated_at})")
        lines.append("")
        lines.append(
            f"Fetched {result.fetched_files} files: "
            f"{len(result.updated_documents)} updated, "
            f"{len(result.conflict_documents)} conflicts, "
            f"{len(result.pending_decryption)} pending decryption"
        )
        lines.append("")

        if result.conflict_documents:
            lines.append("Conflict copies (local edits kept):")
            for doc_id in result.conflict_documents:
                lines.append(f"  {doc_id}")
            lines.append("")

        if result.pending_decryption:
            lines.append("Pending decryption (set the vault password):")
            for doc_id in result.pending_decryption:
                lines.append(f"  {doc_id}")
            lines.append("")

    if result.config_updates:
        lines.append("Config updated:")
        for key, value in sorted(result.config_updates.items()):
            lines.append(f"  {key} = {value}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_repair_report(report: RepairReport) -> str:
    """Format a repair report, including the repaired shard table.

    Args:
        report: The value returned by ``SyncEngine.repair_shards``.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    header = "Shard repair"
    if not report.applied:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append("")
    lines.append(
        f"Shard rows: {report.raw_shard_count} raw, "
        f"{report.deduped_shard_count} unique, "
        f"{report.duplicate_rows_merged} merged"
    )
    lines.append(
        f"Manifests loaded: {report.manifests_loaded}; "
        f"repaired shards: {report.repaired_shard_count}; "
        f"empty shards removed: {report.removed_empty_shards}"
    )
    lines.append("")

    if report.shards:
        lines.append("Shards:")
        for shard in report.shards:
            lines.append(
                f"  [{shard.kind.value}] {shard.category_name} "
                f"#{shard.part}  {shard.file_count} files  "
                f"{format_bytes(shard.total_bytes)}  ({shard.container_id})"
            )
        lines.append("")

    if report.removed_shard_containers:
        label = "Deleted" if report.applied else "Removable"
        lines.append(f"{label} empty shard containers:")
        for container_id in report.removed_shard_containers:
            lines.append(f"  {container_id}")
        lines.append("")

    if report.swept_container_ids:
        lines.append("Swept unreferenced containers:")
        for container_id in report.swept_container_ids:
            lines.append(f"  {container_id}")
        lines.append("")

    if report.deleted_legacy_container_id:
        lines.append(
            f"Deleted legacy container: {report.deleted_legacy_container_id}"
        )
        lines.append("")

    if report.root_updated_at:
        lines.append(f"Root updated at: {report.root_updated_at}")

    return "\n".join(lines).rstrip()


def format_status(config: SyncConfig, index: Index | None) -> str:
    """Format an overview of the local config and index snapshot."""
    lines = [
        f"Root container: {config.root_container_id or '(not set)'}",
        f"Schema version: {config.schema_version}",
    ]
    if config.legacy_container_id:
        lines.append(f"Legacy container: {config.legacy_container_id}")
    if index is None:
        lines.append("No local index snapshot; run sync_pull first.")
        return "\n".join(lines)

    items = sum(len(c.items) for c in index.categories)
    lines.append(f"Index updated at: {index.updated_at or 'never'}")
    lines.append(f"Categories: {len(index.categories)}, documents: {items}")
    lines.append(f"Shards: {len(index.shard_list)}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def pull_to_json(result: SyncDownResult) -> dict:
    """Convert a pull result to a structured dict for MCP output."""
    return {
        "synced": result.synced,
        "remote_updated_at": result.remote_updated_at,
        "config_updates": dict(result.config_updates),
        "counts": {
            "fetched": result.fetched_files,
            "updated": len(result.updated_documents),
            "conflicts": len(result.conflict_documents),
            "pending_decryption": len(result.pending_decryption),
        },
        "conflict_documents": list(result.conflict_documents),
        "pending_decryption": list(result.pending_decryption),
    }


def repair_to_json(report: RepairReport) -> dict:
    """Convert a repair report to a structured dict for MCP output."""
    data = report.model_dump(mode="json", exclude={"shards"})
    data["shards"] = [
        s.model_dump(mode="json", by_alias=True, exclude_none=True)
        for s in report.shards
    ]
    return data
