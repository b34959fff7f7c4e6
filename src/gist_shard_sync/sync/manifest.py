"""Shard manifest bookkeeping.

Each shard container carries a ``shard_manifest.json`` listing the documents
it holds.  ``ShardManifestTracker`` keeps that manifest and the matching
``ShardDescriptor`` aggregates (``file_count``, ``total_bytes``) in step when
a document is written to or removed from a shard.

The tracker never mutates its inputs: every method returns the index value
with the updated descriptor.  Missing storage, descriptor, manifest or entry
make the removal methods a no-op, returning the index unchanged.  Calls for
the same shard must be sequenced by the caller (fetch then replace).
"""

from __future__ import annotations

import logging

from gist_shard_sync.sync.checksum import byte_length, checksum
from gist_shard_sync.sync.models import (
    Index,
    IndexItem,
    ManifestEntry,
    ShardManifest,
    StorageRef,
    utc_now,
)
from gist_shard_sync.sync.ports import RemoteStore

logger = logging.getLogger(__name__)


class ShardManifestTracker:
    """Keep shard manifests and descriptor stats consistent.

    Args:
        remote: Remote store used to fetch and replace manifests.
    """

    def __init__(self, remote: RemoteStore) -> None:
        self.remote = remote

    async def upsert(
        self,
        index: Index,
        item: IndexItem,
        content: str,
        updated_at: str,
    ) -> Index:
        """Record *item* with plain *content* in its shard's manifest.

        A new entry adds one file and its size to the descriptor; an
        existing entry adjusts ``total_bytes`` by the size difference.
        A shard without a readable manifest gets a fresh one.
        """
        storage = item.storage_ref
        if storage is None:
            return index
        descriptor = index.shard(storage.shard_id)
        if descriptor is None:
            logger.debug(
                "No descriptor for shard %s, manifest not updated",
                storage.shard_id,
            )
            return index

        manifest = await self.remote.fetch_manifest(storage.container_id)
        if manifest is None:
            manifest = ShardManifest.empty(storage.shard_id)

        size = byte_length(content)
        entry = ManifestEntry(
            file_id=item.id,
            filename=storage.remote_filename,
            checksum=checksum(content),
            updated_at=updated_at,
            size=size,
            is_secure=item.is_secure,
        )
        existing = manifest.entry_for(item.id)
        if existing is not None:
            descriptor = descriptor.model_copy(
                update={
                    "total_bytes": max(
                        0, descriptor.total_bytes - existing.size + size
                    ),
                    "updated_at": updated_at,
                }
            )
        else:
            descriptor = descriptor.model_copy(
                update={
                    "file_count": descriptor.file_count + 1,
                    "total_bytes": descriptor.total_bytes + size,
                    "updated_at": updated_at,
                }
            )

        await self.remote.replace_manifest(
            storage.container_id, manifest.with_entry(entry)
        )
        return index.with_shard(descriptor)

    async def remove_by_item(self, index: Index, item: IndexItem) -> Index:
        """Drop *item* from the manifest of the shard its storage points at."""
        if item.storage_ref is None:
            return index
        return await self.remove_by_storage(index, item.id, item.storage_ref)

    async def remove_by_storage(
        self, index: Index, file_id: str, storage: StorageRef
    ) -> Index:
        """Drop *file_id* from the manifest of an explicit storage location."""
        descriptor = index.shard(storage.shard_id)
        if descriptor is None:
            return index

        manifest = await self.remote.fetch_manifest(storage.container_id)
        if manifest is None:
            return index

        target = manifest.entry_for(file_id)
        if target is None:
            return index

        descriptor = descriptor.model_copy(
            update={
                "file_count": max(0, descriptor.file_count - 1),
                "total_bytes": max(0, descriptor.total_bytes - target.size),
                "updated_at": utc_now(),
            }
        )
        await self.remote.replace_manifest(
            storage.container_id, manifest.without(file_id)
        )
        return index.with_shard(descriptor)
