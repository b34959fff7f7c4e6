"""Pydantic models for the sharded sync engine.

Defines the data contracts shared by every sync module:

- ``Index``, ``Category``, ``IndexItem``: the hierarchical document index.
- ``StorageRef``: where an item's content lives in the remote store.
- ``ShardKey``, ``ShardDescriptor``: one shard container and its aggregate
  stats, as tracked in the index.
- ``ShardManifest``, ``ManifestEntry``: the per-shard record stored inside
  the shard container itself.
- ``SyncConfig``, ``Snapshot``: engine inputs.
- ``SyncDownResult``, ``MigrationResult``, ``RepairOptions``,
  ``RepairReport``: engine outputs.

All models are frozen (immutable).  Operations that "change" an index return
a new value built with ``model_copy(update=...)``.  Field aliases carry the
JSON key names used on the wire, so ``to_json()`` output stays readable by
other clients of the same remote containers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from gist_shard_sync.exceptions import ParseError

LARGE_FILES_NAME = "Large Files"
UNKNOWN_CATEGORY_NAME = "Unknown Category"

_WIRE_CONFIG = {"frozen": True, "populate_by_name": True}


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string with millisecond precision."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime:
    """Parse an ISO 8601 timestamp; ``None`` or empty maps to the epoch."""
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Storage references and shards
# ---------------------------------------------------------------------------


class ShardKind(str, Enum):
    """Placement group of a shard."""

    CATEGORY = "category"
    LARGE = "large"


class StorageRef(BaseModel):
    """Location of an item's content within the remote store."""

    shard_id: str = Field(alias="shardId")
    container_id: str = Field(alias="gistId")
    remote_filename: str = Field(alias="gist_file")

    model_config = _WIRE_CONFIG

    @property
    def storage_key(self) -> str:
        return storage_key(self.container_id, self.remote_filename)


def storage_key(container_id: str, filename: str) -> str:
    """Key identifying one file in one container."""
    return f"{container_id}::{filename}"


def _normalize_category_id(value: str) -> str:
    cleaned = "".join(
        ch if (ch.isascii() and (ch.isalnum() or ch in "_-")) else "_"
        for ch in value
    )
    return cleaned[:36]


class ShardKey(BaseModel):
    """Structured shard identity: placement group plus part number.

    ``to_id()`` is the only place shard ids are built and ``from_id()`` is
    its exact inverse, so no other code needs to pick ids apart.
    """

    kind: ShardKind
    category_id: str | None = None
    part: int = Field(default=1, ge=1)

    model_config = {"frozen": True}

    def to_id(self) -> str:
        if self.kind == ShardKind.LARGE:
            return f"large-part-{self.part}"
        return f"cat-{_normalize_category_id(self.category_id or '')}-part-{self.part}"

    @classmethod
    def from_id(cls, shard_id: str | None) -> ShardKey | None:
        """Decode an id produced by ``to_id()``; ``None`` for foreign ids.

        The category part of a decoded ``cat-`` id is the normalized form,
        not necessarily the original category id.
        """
        if not shard_id:
            return None
        head, sep, tail = shard_id.rpartition("-part-")
        if not sep or not tail.isdigit() or int(tail) < 1:
            return None
        if head == "large":
            return cls(kind=ShardKind.LARGE, part=int(tail))
        if head.startswith("cat-") and len(head) > len("cat-"):
            return cls(
                kind=ShardKind.CATEGORY,
                category_id=head[len("cat-"):],
                part=int(tail),
            )
        return None


class ShardDescriptor(BaseModel):
    """One shard container as tracked in the index.

    Invariants enforced on construction: a ``large`` shard never carries a
    ``category_id``; a missing ``kind`` is inferred from ``category_id``; a
    missing ``part`` is recovered from the shard id, defaulting to 1.
    """

    id: str
    container_id: str = Field(alias="gistId")
    category_id: str | None = Field(default=None, alias="categoryId")
    category_name: str = Field(default="", alias="categoryName")
    part: int = Field(default=1, ge=1)
    kind: ShardKind = ShardKind.CATEGORY
    file_count: int = Field(default=0, ge=0, alias="fileCount")
    total_bytes: int = Field(default=0, ge=0, alias="totalBytes")
    updated_at: str = Field(default="", alias="updated_at")

    model_config = _WIRE_CONFIG

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        container = data.get("gistId", data.get("container_id"))
        if not data.get("id") and container:
            data["id"] = f"shard-{container}"
        category_key = "categoryId" if "categoryId" in data else "category_id"
        if not data.get("kind"):
            data["kind"] = (
                ShardKind.CATEGORY
                if data.get(category_key)
                else ShardKind.LARGE
            )
        if data["kind"] in (ShardKind.LARGE, ShardKind.LARGE.value):
            data.pop("categoryId", None)
            data.pop("category_id", None)
        if not data.get("part"):
            key = ShardKey.from_id(data.get("id"))
            data["part"] = key.part if key else 1
        for name in ("categoryName", "category_name"):
            if name in data and data[name] is None:
                data[name] = ""
        for name in ("fileCount", "file_count", "totalBytes", "total_bytes"):
            if name in data and not data[name]:
                data[name] = 0
        return data

    @property
    def key(self) -> ShardKey:
        return ShardKey(
            kind=self.kind, category_id=self.category_id, part=self.part
        )

    def in_group(self, kind: ShardKind, category_id: str | None) -> bool:
        """Return ``True`` if this shard belongs to the placement group."""
        if kind == ShardKind.LARGE:
            return self.kind == ShardKind.LARGE
        return (
            self.kind == ShardKind.CATEGORY
            and self.category_id == category_id
        )


# ---------------------------------------------------------------------------
# Shard manifest
# ---------------------------------------------------------------------------


class ManifestEntry(BaseModel):
    """One document recorded in a shard manifest."""

    file_id: str = Field(alias="fileId")
    filename: str
    checksum: str
    updated_at: str = Field(default="", alias="updated_at")
    size: int = Field(default=0, ge=0)
    is_secure: bool = Field(default=False, alias="isSecure")

    model_config = _WIRE_CONFIG


class ShardManifest(BaseModel):
    """Authoritative record of the documents a shard container holds."""

    version: int = 1
    shard_id: str = Field(alias="shardId")
    updated_at: str = Field(default="", alias="updated_at")
    files: tuple[ManifestEntry, ...] = ()

    model_config = _WIRE_CONFIG

    @classmethod
    def empty(cls, shard_id: str) -> ShardManifest:
        return cls(shard_id=shard_id, updated_at=utc_now())

    @classmethod
    def from_json(cls, raw: str) -> ShardManifest:
        """Decode a manifest file.

        Raises:
            ParseError: If *raw* is not a valid manifest document.
        """
        try:
            return cls.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise ParseError(f"Malformed shard manifest: {exc}") from exc

    def to_json(self) -> str:
        return _dump(self)

    def entry_for(self, file_id: str) -> ManifestEntry | None:
        for entry in self.files:
            if entry.file_id == file_id:
                return entry
        return None

    def with_entry(self, entry: ManifestEntry) -> ShardManifest:
        """Return a copy with *entry* inserted or replacing the same file id."""
        files = [f for f in self.files if f.file_id != entry.file_id]
        if len(files) == len(self.files):
            files = list(self.files) + [entry]
        else:
            files = [
                entry if f.file_id == entry.file_id else f
                for f in self.files
            ]
        return self.model_copy(update={"files": tuple(files)})

    def without(self, file_id: str) -> ShardManifest:
        return self.model_copy(
            update={
                "files": tuple(
                    f for f in self.files if f.file_id != file_id
                )
            }
        )


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class IndexItem(BaseModel):
    """One document entry in a category."""

    id: str
    title: str
    remote_filename: str = Field(alias="gist_file")
    language: str = "plaintext"
    tags: tuple[str, ...] = ()
    storage_ref: StorageRef | None = Field(default=None, alias="storage")
    is_secure: bool = Field(default=False, alias="isSecure")

    model_config = _WIRE_CONFIG


class Category(BaseModel):
    """A named group of index items."""

    id: str
    name: str
    icon: str | None = None
    default_language: str | None = Field(
        default=None, alias="defaultLanguage"
    )
    items: tuple[IndexItem, ...] = ()

    model_config = _WIRE_CONFIG


class Index(BaseModel):
    """The hierarchical document index plus the flat shard list.

    ``shards`` is ``None`` for schema 1 and always a tuple (possibly
    empty) for schema 2 and above.
    """

    schema_version: int = Field(default=1, alias="version")
    updated_at: str = Field(default="", alias="updated_at")
    categories: tuple[Category, ...] = ()
    shards: tuple[ShardDescriptor, ...] | None = None

    model_config = _WIRE_CONFIG

    @model_validator(mode="before")
    @classmethod
    def _shards_for_v2(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        version = data.get("version", data.get("schema_version")) or 1
        if version >= 2 and data.get("shards") is None:
            data = dict(data)
            data["shards"] = ()
        return data

    # -- wire format -------------------------------------------------------

    @classmethod
    def from_json(cls, raw: str) -> Index:
        """Decode an index file.

        Raises:
            ParseError: If *raw* is not a valid index document.
        """
        try:
            return cls.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise ParseError(f"Malformed index: {exc}") from exc

    def to_json(self) -> str:
        return _dump(self)

    # -- queries -----------------------------------------------------------

    @property
    def is_sharded(self) -> bool:
        return self.schema_version >= 2

    @property
    def shard_list(self) -> tuple[ShardDescriptor, ...]:
        return self.shards or ()

    def category(self, category_id: str) -> Category | None:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def shard(self, shard_id: str) -> ShardDescriptor | None:
        for shard in self.shard_list:
            if shard.id == shard_id:
                return shard
        return None

    # -- copies ------------------------------------------------------------

    def as_v2(self) -> Index:
        """Return this index normalized to schema 2."""
        if self.is_sharded and self.shards is not None:
            return self
        return self.model_copy(
            update={
                "schema_version": max(2, self.schema_version),
                "shards": self.shards or (),
            }
        )

    def stamped(self, updated_at: str) -> Index:
        return self.model_copy(update={"updated_at": updated_at})

    def with_shards(self, shards: tuple[ShardDescriptor, ...]) -> Index:
        return self.model_copy(update={"shards": tuple(shards)})

    def with_shard(self, shard: ShardDescriptor) -> Index:
        """Replace the descriptor with the same id, or append it."""
        current = self.shard_list
        if any(s.id == shard.id for s in current):
            shards = tuple(shard if s.id == shard.id else s for s in current)
        else:
            shards = current + (shard,)
        return self.with_shards(shards)

    def with_category(self, category: Category) -> Index:
        """Replace the category with the same id, or append it."""
        if self.category(category.id) is None:
            return self.model_copy(
                update={"categories": self.categories + (category,)}
            )
        return self.model_copy(
            update={
                "categories": tuple(
                    category if c.id == category.id else c
                    for c in self.categories
                )
            }
        )

    def without_category(self, category_id: str) -> Index:
        return self.model_copy(
            update={
                "categories": tuple(
                    c for c in self.categories if c.id != category_id
                )
            }
        )

    def with_item(self, category_id: str, item: IndexItem) -> Index:
        """Replace the item with the same id in *category_id*, or append it."""
        category = self.category(category_id)
        if category is None:
            raise KeyError(category_id)
        if any(i.id == item.id for i in category.items):
            items = tuple(item if i.id == item.id else i for i in category.items)
        else:
            items = category.items + (item,)
        return self.with_category(category.model_copy(update={"items": items}))

    def without_item(self, item_id: str) -> Index:
        return self.model_copy(
            update={
                "categories": tuple(
                    c.model_copy(
                        update={
                            "items": tuple(
                                i for i in c.items if i.id != item_id
                            )
                        }
                    )
                    for c in self.categories
                )
            }
        )


@dataclass(frozen=True)
class IndexedItem:
    """An index item together with the id of the category holding it."""

    category_id: str
    item: IndexItem


class IndexView:
    """Lookup maps over one index value, built once per operation."""

    def __init__(self, index: Index) -> None:
        self.index = index
        self.items_by_id: dict[str, IndexedItem] = {}
        self.items_by_storage_key: dict[str, IndexedItem] = {}
        self.items_by_filename: dict[str, IndexedItem] = {}
        self.category_names: dict[str, str] = {}

        for category in index.categories:
            self.category_names[category.id] = category.name
            for item in category.items:
                indexed = IndexedItem(category.id, item)
                self.items_by_id[item.id] = indexed
                self.items_by_filename.setdefault(
                    item.remote_filename, indexed
                )
                if item.storage_ref is not None:
                    self.items_by_storage_key[
                        item.storage_ref.storage_key
                    ] = indexed

    def get(self, item_id: str) -> IndexedItem | None:
        return self.items_by_id.get(item_id)


# ---------------------------------------------------------------------------
# Remote store values
# ---------------------------------------------------------------------------


class RemoteFile(BaseModel):
    """One named file fetched from a remote container."""

    filename: str
    content: str
    updated_at: str | None = None

    model_config = {"frozen": True}


class ContainerMeta(BaseModel):
    """Container-level metadata (no file contents)."""

    id: str
    updated_at: str
    description: str = ""
    filenames: tuple[str, ...] = ()

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Engine inputs and outputs
# ---------------------------------------------------------------------------


class SyncConfig(BaseModel):
    """Locally persisted sync settings.

    ``last_remote_updated_at`` is the root timestamp seen by the last pull
    or push, kept so the next pull can skip an unchanged remote.
    """

    root_container_id: str | None = None
    legacy_container_id: str | None = None
    schema_version: int = 1
    last_remote_updated_at: str | None = None

    model_config = {"frozen": True}

    def updated(self, updates: dict[str, Any]) -> SyncConfig:
        return self.model_copy(update=updates)


class Snapshot(BaseModel):
    """An index value plus the newest remote timestamp the caller has seen.

    Engine write operations take a snapshot and return a new one; chained
    operations must pass the returned snapshot forward.
    """

    index: Index
    remote_updated_at: str | None = None

    model_config = {"frozen": True}

    def advanced(
        self, index: Index | None = None, remote_updated_at: str | None = None
    ) -> Snapshot:
        return Snapshot(
            index=index if index is not None else self.index,
            remote_updated_at=remote_updated_at or self.remote_updated_at,
        )


class SyncDownResult(BaseModel):
    """Outcome of a pull.

    Attributes:
        index: The remote index, or ``None`` when nothing changed.
        synced: Whether a full pull ran.
        remote_updated_at: Root container timestamp observed by the pull.
        config_updates: ``SyncConfig`` fields the caller should persist.
        fetched_files: Number of document files downloaded.
        updated_documents: Ids of documents overwritten with remote content.
        conflict_documents: Ids of conflict forks created.
        pending_decryption: Ids of secure documents that failed to decrypt.
    """

    index: Index | None = None
    synced: bool = False
    remote_updated_at: str | None = None
    config_updates: dict[str, Any] = Field(default_factory=dict)
    fetched_files: int = 0
    updated_documents: tuple[str, ...] = ()
    conflict_documents: tuple[str, ...] = ()
    pending_decryption: tuple[str, ...] = ()

    model_config = {"frozen": True}


class MigrationResult(BaseModel):
    """Outcome of a legacy to sharded migration."""

    root_container_id: str
    index: Index
    config_updates: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class RepairOptions(BaseModel):
    """Parameters of the shard repair procedure (dry-run by default)."""

    apply: bool = False
    rewrite_metadata: bool = True
    drop_empty_shards: bool = True
    delete_orphan_containers: bool = False
    sweep_unreferenced_containers: bool = False
    legacy_container_id_to_delete: str | None = None

    model_config = {"frozen": True}


class RepairReport(BaseModel):
    """Counters and results of a repair run (filled even for dry runs)."""

    applied: bool
    raw_shard_count: int
    deduped_shard_count: int
    duplicate_rows_merged: int
    manifests_loaded: int
    repaired_shard_count: int
    removed_empty_shards: int
    removed_shard_containers: tuple[str, ...] = ()
    swept_unreferenced_containers: int = 0
    swept_container_ids: tuple[str, ...] = ()
    deleted_legacy_container_id: str | None = None
    root_updated_at: str | None = None
    shards: tuple[ShardDescriptor, ...] = ()

    model_config = {"frozen": True}

    def counters(self) -> dict[str, int]:
        """The numeric counters only (stable across dry runs)."""
        return {
            "raw_shard_count": self.raw_shard_count,
            "deduped_shard_count": self.deduped_shard_count,
            "duplicate_rows_merged": self.duplicate_rows_merged,
            "manifests_loaded": self.manifests_loaded,
            "repaired_shard_count": self.repaired_shard_count,
            "removed_empty_shards": self.removed_empty_shards,
            "swept_unreferenced_containers": self.swept_unreferenced_containers,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _dump(model: BaseModel) -> str:
    return json.dumps(
        model.model_dump(mode="json", by_alias=True, exclude_none=True),
        indent=2,
        ensure_ascii=False,
    )


def dump_shards(shards: tuple[ShardDescriptor, ...]) -> str:
    """Serialize a shard list the way it is stored in the root container."""
    return json.dumps(
        [
            s.model_dump(mode="json", by_alias=True, exclude_none=True)
            for s in shards
        ],
        indent=2,
        ensure_ascii=False,
    )


def load_shards(raw: str) -> tuple[ShardDescriptor, ...]:
    """Decode a stored shard list.

    Raises:
        ParseError: If *raw* is not a JSON array of shard descriptors.
    """
    try:
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError("shard list is not an array")
        return tuple(ShardDescriptor.model_validate(row) for row in data)
    except (ValueError, ValidationError) as exc:
        raise ParseError(f"Malformed shard list: {exc}") from exc
