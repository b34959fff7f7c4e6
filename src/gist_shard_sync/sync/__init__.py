"""Sharded document sync engine.

Public API for keeping a hierarchical document index (categories and
items) in step with remote multi-file containers, while a local cache
holds the working copies.

Architecture
------------
Document contents are spread over **shard containers**, each holding a
bounded number of documents for one category (or oversized documents of
any category).  The root container only stores the index and the flat
shard list.  Every shard carries a manifest of the documents it holds, with
their sizes and checksums, so a pull only downloads what changed.

Modules:

- ``models``    -- ``Index``, ``ShardDescriptor``, ``ShardManifest``,
  ``Snapshot`` and result models: core data contracts.
- ``document``  -- ``Document`` with a ``Decrypted`` / ``PendingDecryption``
  body.
- ``ports``     -- Protocols for the remote store, local store, document
  repository and crypto provider.
- ``allocator`` -- Shard assignment (bin packing).
- ``manifest``  -- ``ShardManifestTracker``: manifest and counter upkeep.
- ``migration`` -- ``LegacyMigrator``: unsharded to sharded migration.
- ``repair``    -- ``ShardRepairer``: shard list diagnostics and repair.
- ``engine``    -- ``SyncEngine``: pull, push, delete, assign, repair.
- ``catalog``   -- ``Catalog``: category and document editing.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from gist_shard_sync.sync import Catalog, Index, Snapshot, SyncEngine

    engine = SyncEngine(remote, local_store, file_repository, crypto)
    root_id, snapshot = await engine.initialize(Index(schema_version=2))

    catalog = Catalog(engine, root_id)
    snapshot, notes = await catalog.add_category(snapshot, "Notes")
    snapshot, doc = await catalog.create_file(
        snapshot, notes.id, "a.yaml", language="yaml", content="x"
    )

    result = await engine.sync_down(config, snapshot.remote_updated_at)
"""

from .allocator import ShardLimits
from .catalog import Catalog
from .document import Decrypted, Document, PendingDecryption
from .engine import SyncEngine
from .models import (
    Category,
    Index,
    IndexItem,
    IndexView,
    ManifestEntry,
    RepairOptions,
    RepairReport,
    ShardDescriptor,
    ShardKey,
    ShardKind,
    ShardManifest,
    Snapshot,
    StorageRef,
    SyncConfig,
    SyncDownResult,
)
from .reporter import (
    format_pull_report,
    format_repair_report,
    pull_to_json,
    repair_to_json,
)

__all__ = [
    "Catalog",
    "Category",
    "Decrypted",
    "Document",
    "Index",
    "IndexItem",
    "IndexView",
    "ManifestEntry",
    "PendingDecryption",
    "RepairOptions",
    "RepairReport",
    "ShardDescriptor",
    "ShardKey",
    "ShardKind",
    "ShardLimits",
    "ShardManifest",
    "Snapshot",
    "StorageRef",
    "SyncConfig",
    "SyncDownResult",
    "SyncEngine",
    "format_pull_report",
    "format_repair_report",
    "pull_to_json",
    "repair_to_json",
]
