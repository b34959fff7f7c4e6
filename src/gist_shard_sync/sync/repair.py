"""Shard list repair and diagnostics.

The shard list in the index can drift from what the shard containers really
hold: a migration that failed halfway, two clients racing on the same
category, or an interrupted push leave duplicate rows, wrong counters or
containers nobody references any more.  ``ShardRepairer`` rebuilds the
shard list from the manifests and the index items linked to each shard.

The procedure is a dry run unless ``RepairOptions.apply`` is set, and it
returns the same counters either way so the impact can be previewed.
Running it twice in a row changes nothing the second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gist_shard_sync.core.async_utils import gather_limited
from gist_shard_sync.exceptions import SyncError
from gist_shard_sync.sync.layout import (
    README_FILE,
    SHARD_DESCRIPTION_PREFIX,
    index_files,
)
from gist_shard_sync.sync.models import (
    LARGE_FILES_NAME,
    UNKNOWN_CATEGORY_NAME,
    Index,
    IndexView,
    ManifestEntry,
    RepairOptions,
    RepairReport,
    ShardDescriptor,
    ShardKind,
    ShardManifest,
    utc_now,
)
from gist_shard_sync.sync.ports import LocalStore, RemoteStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def merge_descriptors(
    base: ShardDescriptor, incoming: ShardDescriptor
) -> ShardDescriptor:
    """Merge two rows describing the same container.

    Identity fields come from the first non-empty value, counters are the
    maximum of both rows.
    """
    return base.model_copy(
        update={
            "id": base.id or incoming.id,
            "category_id": base.category_id or incoming.category_id,
            "category_name": base.category_name or incoming.category_name,
            "file_count": max(base.file_count, incoming.file_count),
            "total_bytes": max(base.total_bytes, incoming.total_bytes),
            "updated_at": base.updated_at or incoming.updated_at or utc_now(),
        }
    )


def dedupe_shards(
    shards: tuple[ShardDescriptor, ...],
) -> tuple[list[ShardDescriptor], int]:
    """Collapse rows sharing a container id; return rows and merge count."""
    by_container: dict[str, ShardDescriptor] = {}
    merged = 0
    for shard in shards:
        existing = by_container.get(shard.container_id)
        if existing is None:
            by_container[shard.container_id] = shard
        else:
            merged += 1
            by_container[shard.container_id] = merge_descriptors(
                existing, shard
            )
    return list(by_container.values()), merged


def format_bytes(size: int) -> str:
    """Render a byte count as B, KB or MB."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def shard_description(shard: ShardDescriptor) -> str:
    """Container description for a shard."""
    if shard.kind == ShardKind.LARGE:
        return f"{SHARD_DESCRIPTION_PREFIX} [large] {LARGE_FILES_NAME} #{shard.part}"
    name = shard.category_name or shard.category_id or "Unknown"
    return (
        f"{SHARD_DESCRIPTION_PREFIX} [category] {name} "
        f"({shard.category_id or 'N/A'}) #{shard.part}"
    )


def shard_readme(shard: ShardDescriptor, stats: ShardStats) -> str:
    """Human-readable summary written to a shard's README."""
    name = shard.category_name or "N/A"
    summary = (
        f"[{shard.kind.value}] {name} · Part {shard.part} · "
        f"Files {stats.linked_count}/{stats.manifest_count} · "
        f"Orphans {stats.orphan_entries} · Size {format_bytes(stats.total_bytes)}"
    )
    return (
        "# Nexus Shard\n\n"
        f"{summary}\n\n"
        "| Key | Value |\n"
        "| --- | --- |\n"
        f"| Shard | {shard.id} |\n"
        f"| Gist | {shard.container_id} |\n"
        f"| Category | {name} ({shard.category_id or 'N/A'}) |\n"
        f"| Updated | {shard.updated_at} |\n"
    )


@dataclass(frozen=True)
class ShardStats:
    """What repair found for one shard."""

    linked_count: int
    manifest_count: int
    total_bytes: int
    orphan_entries: int

    @property
    def empty_and_unused(self) -> bool:
        return self.linked_count == 0 and self.manifest_count == 0


def repair_descriptor(
    shard: ShardDescriptor,
    manifest: ShardManifest | None,
    view: IndexView,
) -> tuple[ShardDescriptor, ShardStats]:
    """Recompute one descriptor from its manifest and linked items."""
    linked: dict[str, str] = {}
    for file_id, indexed in view.items_by_id.items():
        storage = indexed.item.storage_ref
        if storage is None:
            continue
        if (
            storage.container_id == shard.container_id
            or storage.shard_id == shard.id
        ):
            linked[file_id] = indexed.category_id

    manifest_files = manifest.files if manifest else ()
    by_file_id = {entry.file_id: entry for entry in manifest_files}

    category_id = shard.category_id
    if category_id is None and shard.kind == ShardKind.CATEGORY:
        categories = set(linked.values())
        if len(categories) == 1:
            category_id = categories.pop()

    if shard.kind == ShardKind.LARGE:
        category_name = LARGE_FILES_NAME
    elif category_id:
        category_name = view.category_names.get(category_id, category_id)
    else:
        category_name = shard.category_name or UNKNOWN_CATEGORY_NAME

    if linked:
        stats_rows: list[ManifestEntry] = [
            by_file_id[file_id] for file_id in linked if file_id in by_file_id
        ]
    else:
        stats_rows = list(manifest_files)

    stats = ShardStats(
        linked_count=len(linked),
        manifest_count=len(manifest_files),
        total_bytes=sum(row.size for row in stats_rows),
        orphan_entries=sum(
            1 for row in manifest_files if row.file_id not in view.items_by_id
        ),
    )
    repaired = shard.model_copy(
        update={
            "category_id": (
                None if shard.kind == ShardKind.LARGE else category_id
            ),
            "category_name": category_name,
            "file_count": stats.linked_count or stats.manifest_count,
            "total_bytes": stats.total_bytes,
            "updated_at": (
                manifest.updated_at
                if manifest and manifest.updated_at
                else shard.updated_at
            ),
        }
    )
    return repaired, stats


def _sort_key(shard: ShardDescriptor) -> str:
    return f"{shard.kind.value}:{shard.category_name}:{shard.part}"


def referenced_containers(
    root_container_id: str,
    shards: tuple[ShardDescriptor, ...],
    view: IndexView,
) -> set[str]:
    """Containers repair must never delete: the root, every kept shard and
    every container an item points at."""
    keep = {root_container_id} | {s.container_id for s in shards}
    keep |= {
        indexed.item.storage_ref.container_id
        for indexed in view.items_by_id.values()
        if indexed.item.storage_ref is not None
    }
    return keep


# ---------------------------------------------------------------------------
# Repairer
# ---------------------------------------------------------------------------


class ShardRepairer:
    """Rebuild the shard list of a sharded index.

    Args:
        remote: Remote store holding the root and shard containers.
        local: Local store the repaired index is saved to when applied.
    """

    def __init__(self, remote: RemoteStore, local: LocalStore) -> None:
        self.remote = remote
        self.local = local

    async def repair(
        self,
        root_container_id: str,
        index: Index,
        options: RepairOptions | None = None,
    ) -> RepairReport:
        options = options or RepairOptions()
        index = index.as_v2()
        view = IndexView(index)

        raw_shards = index.shard_list
        deduped, merged_rows = dedupe_shards(raw_shards)

        manifests = await gather_limited(
            [self.remote.fetch_manifest(s.container_id) for s in deduped]
        )
        manifests_loaded = sum(1 for m in manifests if m is not None)

        repaired_rows: list[tuple[ShardDescriptor, ShardStats]] = []
        dropped: list[str] = []
        for shard, manifest in zip(deduped, manifests):
            repaired, stats = repair_descriptor(shard, manifest, view)
            if options.drop_empty_shards and stats.empty_and_unused:
                dropped.append(shard.container_id)
                continue
            repaired_rows.append((repaired, stats))

        repaired_rows.sort(key=lambda row: _sort_key(row[0]))
        repaired_shards = tuple(row[0] for row in repaired_rows)
        keep = referenced_containers(root_container_id, repaired_shards, view)
        removable = [c for c in dict.fromkeys(dropped) if c not in keep]

        report = RepairReport(
            applied=options.apply,
            raw_shard_count=len(raw_shards),
            deduped_shard_count=len(deduped),
            duplicate_rows_merged=merged_rows,
            manifests_loaded=manifests_loaded,
            repaired_shard_count=len(repaired_shards),
            removed_empty_shards=len(dropped),
            removed_shard_containers=tuple(removable),
            shards=repaired_shards,
        )
        logger.info(
            "Shard repair %s: %d rows, %d unique, %d merged, %d removable",
            "applying" if options.apply else "dry run",
            report.raw_shard_count,
            report.deduped_shard_count,
            report.duplicate_rows_merged,
            report.removed_empty_shards,
        )
        if not options.apply:
            return report

        if options.rewrite_metadata:
            await gather_limited(
                [self._rewrite_metadata(s, stats) for s, stats in repaired_rows]
            )

        return await self._apply(
            root_container_id, index, repaired_shards, options, report
        )

    async def _rewrite_metadata(
        self, shard: ShardDescriptor, stats: ShardStats
    ) -> None:
        await self.remote.write_file(
            shard.container_id, README_FILE, shard_readme(shard, stats)
        )
        await self.remote.update_description(
            shard.container_id, shard_description(shard)
        )

    async def _apply(
        self,
        root_container_id: str,
        index: Index,
        repaired_shards: tuple[ShardDescriptor, ...],
        options: RepairOptions,
        report: RepairReport,
    ) -> RepairReport:
        index = index.with_shards(repaired_shards).stamped(utc_now())
        root_updated_at = await self.remote.write_batch(
            root_container_id, index_files(index)
        )
        await self.local.save_index(index)

        keep = referenced_containers(
            root_container_id, repaired_shards, IndexView(index)
        )
        deleted: list[str] = []
        if options.delete_orphan_containers:
            for container_id in report.removed_shard_containers:
                if container_id in keep:
                    continue
                await self.remote.delete_container(container_id)
                deleted.append(container_id)

        swept: list[str] = []
        if options.sweep_unreferenced_containers:
            for container_id in await self.remote.list_shard_containers():
                if container_id in keep or container_id in deleted:
                    continue
                await self.remote.delete_container(container_id)
                swept.append(container_id)

        deleted_legacy: str | None = None
        legacy = options.legacy_container_id_to_delete
        if (
            legacy
            and legacy != root_container_id
            and legacy not in deleted
            and legacy not in swept
        ):
            try:
                await self.remote.delete_container(legacy)
                deleted_legacy = legacy
            except SyncError as exc:
                logger.warning(
                    "Failed to delete legacy container %s: %s", legacy, exc
                )

        logger.info(
            "Shard repair applied: %d shards kept, %d deleted, %d swept",
            len(repaired_shards),
            len(deleted),
            len(swept),
        )
        return report.model_copy(
            update={
                "root_updated_at": root_updated_at,
                "swept_unreferenced_containers": len(swept),
                "swept_container_ids": tuple(swept),
                "deleted_legacy_container_id": deleted_legacy,
            }
        )
