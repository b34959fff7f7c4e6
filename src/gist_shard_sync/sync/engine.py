"""Sync engine: pull, push, delete, shard assignment, migration and repair.

``SyncEngine`` coordinates the four ports.  A pull (``sync_down``):

1. Resolves the root container (from config, else by its marker).
2. Compares the root timestamp with the caller's last-known value and
   returns early when nothing changed on a sharded index.
3. Fetches only the structural files of the root container.
4. Migrates a legacy index first when no sharded index exists.
5. Fetches every shard manifest and downloads only the documents whose
   checksum differs from the local cache.
6. Forks dirty local documents that diverged into conflict copies, then
   stores every fetched document clean in one bulk write.

Write operations take a ``Snapshot`` and return a new one.  Chained calls
must pass the returned snapshot forward: its ``remote_updated_at`` is what
the next ``push_index`` conflict check compares against.

The engine holds no locks.  The timestamp check in ``push_index`` is the
only concurrency guard, so one writer per index is assumed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from gist_shard_sync.core.async_utils import gather_limited
from gist_shard_sync.exceptions import (
    AuthRequiredError,
    ConflictError,
    NotFoundError,
    ParseError,
    SyncError,
    TransportError,
)
from gist_shard_sync.sync.allocator import ShardLimits, select_or_create_shard
from gist_shard_sync.sync.checksum import byte_length, checksum, timestamp_token
from gist_shard_sync.sync.document import (
    Decrypted,
    Document,
    PendingDecryption,
)
from gist_shard_sync.sync.layout import (
    INDEX_V2_FILE,
    LEGACY_INDEX_FILE,
    SHARD_META_FILES,
    SHARDS_FILE,
    index_files,
    root_files,
)
from gist_shard_sync.sync.manifest import ShardManifestTracker
from gist_shard_sync.sync.migration import LegacyMigrator
from gist_shard_sync.sync.models import (
    LARGE_FILES_NAME,
    Index,
    IndexItem,
    IndexView,
    RemoteFile,
    RepairOptions,
    RepairReport,
    ShardDescriptor,
    ShardKind,
    ShardManifest,
    Snapshot,
    StorageRef,
    SyncConfig,
    SyncDownResult,
    load_shards,
    parse_timestamp,
    storage_key,
    utc_now,
)
from gist_shard_sync.sync.ports import (
    CryptoProvider,
    FileRepository,
    LocalStore,
    RemoteStore,
)
from gist_shard_sync.sync.repair import ShardRepairer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def hydrate_category_names(index: Index) -> Index:
    """Fill missing shard display names from the category list."""
    names = {c.id: c.name for c in index.categories}
    shards = []
    for shard in index.shard_list:
        if shard.kind == ShardKind.LARGE:
            shard = shard.model_copy(update={"category_name": LARGE_FILES_NAME})
        elif not shard.category_name and shard.category_id:
            shard = shard.model_copy(
                update={
                    "category_name": names.get(
                        shard.category_id, shard.category_id
                    )
                }
            )
        shards.append(shard)
    return index.with_shards(tuple(shards))


def reconcile_descriptor(
    shard: ShardDescriptor, manifest: ShardManifest, view: IndexView
) -> ShardDescriptor:
    """Recount a descriptor from the manifest entries it really owns.

    An entry counts when its item exists in the index and the item's
    storage points at this shard or is not assigned yet.
    """
    count = 0
    total = 0
    for entry in manifest.files:
        indexed = view.get(entry.file_id)
        if indexed is None:
            continue
        storage = indexed.item.storage_ref
        if storage is not None and storage.shard_id != shard.id:
            continue
        count += 1
        total += entry.size
    return shard.model_copy(
        update={
            "file_count": count,
            "total_bytes": total,
            "updated_at": manifest.updated_at or shard.updated_at,
        }
    )


def parse_shard_list(
    remote_file: RemoteFile | None,
    fallback: tuple[ShardDescriptor, ...],
) -> tuple[ShardDescriptor, ...]:
    """Decode the stored shard list, keeping *fallback* when unusable."""
    if remote_file is None or not remote_file.content:
        return fallback
    try:
        return load_shards(remote_file.content)
    except ParseError as exc:
        logger.warning("Ignoring malformed shard list: %s", exc)
        return fallback


def root_config_updates(config: SyncConfig, root_container_id: str) -> dict[str, Any]:
    """Config fields the caller should persist after reaching *root*."""
    updates: dict[str, Any] = {}
    if config.root_container_id != root_container_id:
        updates["root_container_id"] = root_container_id
    if config.schema_version < 2:
        updates["schema_version"] = 2
    return updates


@dataclass
class _PullBatch:
    """Documents collected during one pull."""

    upserts: list[Document] = field(default_factory=list)
    conflicts: list[Document] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    fetched: int = 0


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SyncEngine:
    """Orchestrate sync operations over the remote and local ports.

    Args:
        remote: Remote container store.
        local: Local config and index snapshot store.
        files: Local document cache.
        crypto: Encryption for secure documents.
        limits: Shard capacity limits (defaults apply when omitted).
    """

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStore,
        files: FileRepository,
        crypto: CryptoProvider,
        limits: ShardLimits | None = None,
    ) -> None:
        self.remote = remote
        self.local = local
        self.files = files
        self.crypto = crypto
        self.limits = limits or ShardLimits()

        self.manifests = ShardManifestTracker(remote)
        self.migrator = LegacyMigrator(remote, local, crypto, self.limits)
        self.repairer = ShardRepairer(remote, local)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def initialize(self, index: Index) -> tuple[str, Snapshot]:
        """Create a root container for *index* and save it locally.

        Returns:
            The new root container id and the snapshot to continue from.
        """
        index = index.as_v2().stamped(utc_now())
        meta = await self.remote.create_root_container(root_files(index))
        await self.local.save_index(index)
        logger.info("Initialized root container %s", meta.id)
        return meta.id, Snapshot(index=index, remote_updated_at=meta.updated_at)

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def sync_down(
        self, config: SyncConfig, last_remote_updated_at: str | None
    ) -> SyncDownResult:
        """Pull the remote index and changed documents into the local cache.

        Raises:
            NotFoundError: If no root container can be found, or it holds
                no index at all.
        """
        root_id = config.root_container_id
        if not root_id:
            root_id = await self.remote.find_root_container()
            if not root_id:
                raise NotFoundError(
                    "No root container found; initialize one first"
                )

        meta = await self.remote.fetch_container(root_id)
        if (
            last_remote_updated_at == meta.updated_at
            and config.schema_version >= 2
        ):
            logger.debug("Root %s unchanged since %s", root_id, meta.updated_at)
            return SyncDownResult(
                synced=False,
                remote_updated_at=meta.updated_at,
                config_updates=root_config_updates(config, root_id),
            )

        root = await self.remote.fetch_files(
            root_id, [INDEX_V2_FILE, SHARDS_FILE, LEGACY_INDEX_FILE]
        )
        v2_file = root.get(INDEX_V2_FILE)
        if v2_file is not None and v2_file.content:
            index = Index.from_json(v2_file.content).as_v2()
            index = index.with_shards(
                parse_shard_list(root.get(SHARDS_FILE), index.shard_list)
            )
            index = hydrate_category_names(index)
            index, batch = await self._pull_shard_changes(index)
            await self.local.save_index(index)
            logger.info(
                "Pulled %s: %d files fetched, %d conflicts, %d pending",
                root_id,
                batch.fetched,
                len(batch.conflicts),
                len(batch.pending),
            )
            return SyncDownResult(
                index=index,
                synced=True,
                remote_updated_at=meta.updated_at,
                config_updates=root_config_updates(config, root_id),
                fetched_files=batch.fetched,
                updated_documents=tuple(d.id for d in batch.upserts),
                conflict_documents=tuple(d.id for d in batch.conflicts),
                pending_decryption=tuple(batch.pending),
            )

        legacy_file = root.get(LEGACY_INDEX_FILE)
        if legacy_file is None or not legacy_file.content:
            raise NotFoundError(f"Root container {root_id} holds no index file")

        migrated = await self.migrator.migrate(root_id, legacy_file.content)
        rerun = await self.sync_down(
            config.updated(migrated.config_updates), None
        )
        return rerun.model_copy(
            update={
                "config_updates": {
                    **rerun.config_updates,
                    **migrated.config_updates,
                }
            }
        )

    async def fetch_remote_index(self, root_container_id: str) -> Snapshot:
        """Read the sharded index straight from the root container.

        The separately stored shard list wins over the embedded one when
        it is readable.

        Raises:
            NotFoundError: If the root holds no sharded index.
        """
        meta = await self.remote.fetch_container(root_container_id)
        root = await self.remote.fetch_files(
            root_container_id, [INDEX_V2_FILE, SHARDS_FILE]
        )
        v2_file = root.get(INDEX_V2_FILE)
        if v2_file is None or not v2_file.content:
            raise NotFoundError(
                f"Root container {root_container_id} holds no sharded index"
            )
        index = Index.from_json(v2_file.content)
        if not index.is_sharded:
            raise SyncError(
                f"Root container {root_container_id} is not a sharded index"
            )
        index = index.with_shards(
            parse_shard_list(root.get(SHARDS_FILE), index.shard_list)
        )
        return Snapshot(index=index, remote_updated_at=meta.updated_at)

    async def _pull_shard_changes(self, index: Index) -> tuple[Index, _PullBatch]:
        view = IndexView(index)
        shards = index.shard_list
        manifests = await gather_limited(
            [self.remote.fetch_manifest(s.container_id) for s in shards]
        )

        local_docs: dict[str, Document | None] = {}
        wanted: dict[str, dict[str, None]] = {}
        reconciled: list[ShardDescriptor] = []
        for shard, manifest in zip(shards, manifests):
            if manifest is None:
                reconciled.append(shard)
                continue
            reconciled.append(reconcile_descriptor(shard, manifest, view))

            for entry in manifest.files:
                indexed = view.get(entry.file_id)
                if indexed is None:
                    continue
                if indexed.item.storage_ref is None:
                    index = index.with_item(
                        indexed.category_id,
                        indexed.item.model_copy(
                            update={
                                "remote_filename": entry.filename,
                                "storage_ref": StorageRef(
                                    shard_id=shard.id,
                                    container_id=shard.container_id,
                                    remote_filename=entry.filename,
                                ),
                            }
                        ),
                    )
                local = await self._local_document(local_docs, entry.file_id)
                if local is None or local.checksum != entry.checksum:
                    wanted.setdefault(shard.container_id, {})[entry.filename] = None

        index = index.with_shards(tuple(reconciled))
        view = IndexView(index)

        async def fetch(
            shard: ShardDescriptor, manifest: ShardManifest | None
        ) -> dict[str, RemoteFile]:
            if manifest is None:
                return await self.remote.fetch_all_files(shard.container_id)
            names = wanted.get(shard.container_id)
            if not names:
                return {}
            return await self.remote.fetch_files(shard.container_id, list(names))

        fetched = await gather_limited(
            [fetch(s, m) for s, m in zip(shards, manifests)]
        )

        batch = _PullBatch()
        for shard, manifest, remote_files in zip(shards, manifests, fetched):
            by_filename = (
                {e.filename: e for e in manifest.files} if manifest else {}
            )
            for filename, remote_file in remote_files.items():
                if filename in SHARD_META_FILES:
                    continue
                key = storage_key(shard.container_id, filename)
                indexed = view.items_by_storage_key.get(key)
                if indexed is None and manifest is None:
                    indexed = view.items_by_filename.get(filename)
                if indexed is None:
                    continue

                entry = by_filename.get(filename)
                updated_at = (
                    (entry.updated_at if entry else None)
                    or remote_file.updated_at
                    or utc_now()
                )
                batch.fetched += 1
                await self._collect_remote_document(
                    indexed.item, remote_file.content, updated_at, local_docs, batch
                )

        if batch.upserts or batch.conflicts:
            await self.files.save_bulk(batch.upserts + batch.conflicts)
        return index, batch

    async def _local_document(
        self, cache: dict[str, Document | None], document_id: str
    ) -> Document | None:
        if document_id not in cache:
            cache[document_id] = await self.files.get(document_id)
        return cache[document_id]

    async def _collect_remote_document(
        self,
        item: IndexItem,
        raw_content: str,
        remote_updated_at: str,
        local_docs: dict[str, Document | None],
        batch: _PullBatch,
    ) -> None:
        """Turn one fetched file into a clean document, forking on conflict."""
        body: Decrypted | PendingDecryption
        if item.is_secure:
            try:
                body = Decrypted(text=self.crypto.decrypt(raw_content))
            except (AuthRequiredError, ValueError) as exc:
                logger.warning(
                    "Failed to decrypt %s, keeping it pending: %s",
                    item.remote_filename,
                    exc,
                )
                body = PendingDecryption(ciphertext=raw_content)
                batch.pending.append(item.id)
        else:
            body = Decrypted(text=raw_content)

        remote = Document(
            id=item.id,
            title=item.title,
            body=body,
            language=item.language,
            tags=item.tags,
            updated_at=remote_updated_at,
            is_dirty=False,
            checksum="",
            last_synced_at=remote_updated_at,
            is_secure=item.is_secure,
        )
        remote = remote.model_copy(update={"checksum": checksum(remote.content)})

        local = await self._local_document(local_docs, item.id)
        if (
            local is not None
            and local.is_dirty
            and local.checksum != remote.checksum
        ):
            fork = local.model_copy(
                update={
                    "id": f"{item.id}_conflict_{timestamp_token()}",
                    "title": f"{item.title} (Conflict)",
                    "is_dirty": True,
                }
            )
            logger.warning(
                "Local edits to %s diverged from remote; kept as %s",
                item.id,
                fork.id,
            )
            batch.conflicts.append(fork)

        batch.upserts.append(remote)
        local_docs[item.id] = remote

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def push_index(
        self, container_id: str, snapshot: Snapshot, force: bool = False
    ) -> Snapshot:
        """Write the index structural files to the root container.

        Raises:
            ConflictError: If the root changed after
                ``snapshot.remote_updated_at`` and *force* is not set.
        """
        if not force:
            try:
                meta = await self.remote.fetch_container(container_id)
            except TransportError as exc:
                logger.warning(
                    "Conflict check failed, proceeding cautiously: %s", exc
                )
            else:
                if parse_timestamp(meta.updated_at) > parse_timestamp(
                    snapshot.remote_updated_at
                ):
                    raise ConflictError(
                        f"Root container {container_id} was updated at "
                        f"{meta.updated_at}, after the last known "
                        f"{snapshot.remote_updated_at or 'never'}"
                    )

        index = snapshot.index.stamped(utc_now())
        if index.is_sharded:
            index = index.as_v2()
            remote_time = await self.remote.write_batch(
                container_id, index_files(index)
            )
        else:
            remote_time = await self.remote.write_file(
                container_id, LEGACY_INDEX_FILE, index.to_json()
            )

        await self.local.save_index(index)
        return Snapshot(index=index, remote_updated_at=remote_time)

    async def push_file(
        self,
        root_container_id: str,
        snapshot: Snapshot,
        file_id: str,
        document: Document,
    ) -> Snapshot:
        """Upload *document* to its shard (or the legacy root).

        Raises:
            NotFoundError: If the item is missing or has no storage.
            AuthRequiredError: If the document is secure and no key is set,
                or its content is still pending decryption.
        """
        index = snapshot.index
        if not index.is_sharded:
            remote_time = await self.remote.write_file(
                root_container_id, document.filename, self._outgoing(document)
            )
            await self.files.save(document.mark_clean())
            return snapshot.advanced(remote_updated_at=remote_time)

        indexed = IndexView(index).get(file_id)
        if indexed is None:
            raise NotFoundError(f"Index item {file_id} not found")
        if indexed.item.storage_ref is None:
            raise NotFoundError(f"Index item {file_id} has no storage assignment")

        filename = document.filename
        item = indexed.item.model_copy(
            update={
                "remote_filename": filename,
                "storage_ref": indexed.item.storage_ref.model_copy(
                    update={"remote_filename": filename}
                ),
            }
        )
        index = index.with_item(indexed.category_id, item)

        payload = self._outgoing(document)
        remote_time = await self.remote.write_file(
            item.storage_ref.container_id, filename, payload
        )
        index = await self.manifests.upsert(
            index, item, document.content, remote_time
        )

        await self.files.save(document.mark_clean())
        return Snapshot(index=index, remote_updated_at=remote_time)

    def _outgoing(self, document: Document) -> str:
        if document.is_pending:
            raise AuthRequiredError(
                f"Document {document.id} is still pending decryption"
            )
        if not document.is_secure:
            return document.content
        if not self.crypto.has_key():
            raise AuthRequiredError(
                "Vault password not set; cannot push a secure document"
            )
        return self.crypto.encrypt(document.content)

    async def delete_remote_file(
        self,
        root_container_id: str,
        snapshot: Snapshot,
        file_id: str,
        filename: str,
        storage_override: StorageRef | None = None,
    ) -> Snapshot:
        """Remove a document file remotely and from its shard manifest."""
        index = snapshot.index
        if not index.is_sharded:
            remote_time = await self.remote.write_file(
                root_container_id, filename, None
            )
            return snapshot.advanced(remote_updated_at=remote_time)

        if storage_override is not None:
            remote_time = await self.remote.write_file(
                storage_override.container_id, filename, None
            )
            index = await self.manifests.remove_by_storage(
                index, file_id, storage_override
            )
            return Snapshot(index=index, remote_updated_at=remote_time)

        indexed = IndexView(index).get(file_id)
        if indexed is None or indexed.item.storage_ref is None:
            remote_time = await self.remote.write_file(
                root_container_id, filename, None
            )
            return snapshot.advanced(remote_updated_at=remote_time)

        storage = indexed.item.storage_ref
        remote_time = await self.remote.write_file(
            storage.container_id, storage.remote_filename, None
        )
        index = await self.manifests.remove_by_item(index, indexed.item)
        return Snapshot(index=index, remote_updated_at=remote_time)

    # ------------------------------------------------------------------
    # Shard assignment, repair
    # ------------------------------------------------------------------

    async def assign_storage(
        self,
        snapshot: Snapshot,
        category_id: str,
        item: IndexItem,
        raw_content: str,
    ) -> tuple[Snapshot, IndexItem]:
        """Pick (or create) the shard for *item*.

        Returns:
            The snapshot whose index includes any newly created shard, and
            the item carrying its storage reference.  Counters are updated
            later, by ``push_file``.
        """
        index, shard = await select_or_create_shard(
            snapshot.index,
            self.remote,
            category_id,
            byte_length(raw_content),
            self.limits,
        )
        storage = StorageRef(
            shard_id=shard.id,
            container_id=shard.container_id,
            remote_filename=item.remote_filename,
        )
        return snapshot.advanced(index=index), item.model_copy(
            update={"storage_ref": storage}
        )

    async def repair_shards(
        self,
        root_container_id: str,
        snapshot: Snapshot,
        options: RepairOptions | None = None,
    ) -> RepairReport:
        index = hydrate_category_names(snapshot.index.as_v2())
        return await self.repairer.repair(root_container_id, index, options)
