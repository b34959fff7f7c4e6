"""Legacy (schema 1) to sharded (schema 2) migration.

A legacy root container holds the index and every document file side by
side.  Migration builds a fresh root container, re-attaches every legacy
item to a shard chosen by the allocator, writes each shard's documents and
manifest in one batch, and finally writes the new root's structural files.

The procedure is not transactional.  A failure partway leaves orphan shard
containers behind; ``repair`` with ``sweep_unreferenced_containers`` is the
tool that cleans them up.  The legacy container itself is never modified.
"""

from __future__ import annotations

import logging

from gist_shard_sync.core.async_utils import gather_limited
from gist_shard_sync.exceptions import AuthRequiredError
from gist_shard_sync.sync.allocator import ShardLimits, select_or_create_shard
from gist_shard_sync.sync.checksum import byte_length, checksum
from gist_shard_sync.sync.layout import MANIFEST_FILE, index_files, root_files
from gist_shard_sync.sync.models import (
    Index,
    IndexItem,
    ManifestEntry,
    MigrationResult,
    ShardManifest,
    StorageRef,
    utc_now,
)
from gist_shard_sync.sync.ports import CryptoProvider, LocalStore, RemoteStore

logger = logging.getLogger(__name__)


class LegacyMigrator:
    """Move a legacy index and its documents into sharded storage."""

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStore,
        crypto: CryptoProvider,
        limits: ShardLimits,
    ) -> None:
        self.remote = remote
        self.local = local
        self.crypto = crypto
        self.limits = limits

    async def migrate(
        self, legacy_container_id: str, legacy_index_json: str
    ) -> MigrationResult:
        """Migrate the legacy container's index and documents.

        Args:
            legacy_container_id: Container holding the legacy index.
            legacy_index_json: Raw ``nexus_index.json`` content.

        Returns:
            The new root container id, the migrated index and the config
            fields the caller should persist.
        """
        legacy = Index.from_json(legacy_index_json)
        legacy_files = await self.remote.fetch_all_files(legacy_container_id)

        index = Index(
            schema_version=2,
            updated_at=utc_now(),
            categories=tuple(
                c.model_copy(update={"items": ()}) for c in legacy.categories
            ),
            shards=(),
        )
        root = await self.remote.create_root_container(root_files(index))
        logger.info(
            "Migrating legacy container %s into new root %s",
            legacy_container_id,
            root.id,
        )

        batches: dict[str, dict[str, str | None]] = {}
        manifests: dict[str, ShardManifest] = {}
        migrated_items = 0

        for category in legacy.categories:
            for item in category.items:
                remote_file = legacy_files.get(item.remote_filename)
                content = remote_file.content if remote_file else ""
                size = byte_length(content)

                index, shard = await select_or_create_shard(
                    index, self.remote, category.id, size, self.limits
                )
                storage = StorageRef(
                    shard_id=shard.id,
                    container_id=shard.container_id,
                    remote_filename=item.remote_filename,
                )
                migrated = item.model_copy(update={"storage_ref": storage})

                index = index.with_shard(
                    shard.model_copy(
                        update={
                            "file_count": shard.file_count + 1,
                            "total_bytes": shard.total_bytes + size,
                            "updated_at": utc_now(),
                        }
                    )
                )
                index = index.with_item(category.id, migrated)
                migrated_items += 1

                batches.setdefault(shard.container_id, {})[
                    storage.remote_filename
                ] = content
                manifest = manifests.get(
                    shard.container_id
                ) or ShardManifest.empty(shard.id)
                manifests[shard.container_id] = manifest.with_entry(
                    ManifestEntry(
                        file_id=migrated.id,
                        filename=storage.remote_filename,
                        checksum=checksum(
                            self._checksum_base(migrated, content)
                        ),
                        updated_at=utc_now(),
                        size=size,
                        is_secure=migrated.is_secure,
                    )
                )

        await gather_limited(
            [
                self.remote.write_batch(
                    container_id,
                    {
                        **files,
                        MANIFEST_FILE: manifests[container_id].to_json(),
                    },
                )
                for container_id, files in batches.items()
            ]
        )

        index = index.stamped(utc_now())
        await self.remote.write_batch(root.id, index_files(index))
        await self.local.save_index(index)

        logger.info(
            "Migrated %d items into %d shards",
            migrated_items,
            len(index.shard_list),
        )
        return MigrationResult(
            root_container_id=root.id,
            index=index,
            config_updates={
                "root_container_id": root.id,
                "legacy_container_id": legacy_container_id,
                "schema_version": 2,
            },
        )

    def _checksum_base(self, item: IndexItem, content: str) -> str:
        """Content the manifest checksum is computed over.

        Secure items are checksummed on their plain text when a key is set,
        so later pulls compare equal to the local cache; otherwise the
        ciphertext is used as a best-effort fallback.
        """
        if not item.is_secure or not self.crypto.has_key():
            return content
        try:
            return self.crypto.decrypt(content)
        except (AuthRequiredError, ValueError) as exc:
            logger.warning(
                "Failed to decrypt secure file during migration: %s (%s)",
                item.remote_filename,
                exc,
            )
            return content
