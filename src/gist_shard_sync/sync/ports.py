"""Ports the sync engine depends on.

The engine only talks to these protocols; concrete adapters live in
``gist_shard_sync.core`` (remote store), ``gist_shard_sync.storage``
(local store, file repository) and ``gist_shard_sync.security`` (crypto).
Tests provide in-memory fakes.

All I/O methods are coroutines.  Remote store implementations handle their
own retries; the engine never retries a failed call.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from gist_shard_sync.sync.document import Document
from gist_shard_sync.sync.models import (
    ContainerMeta,
    Index,
    RemoteFile,
    ShardKind,
    ShardManifest,
    SyncConfig,
)

# ---------------------------------------------------------------------------
# Remote store
# ---------------------------------------------------------------------------


class RemoteStore(Protocol):
    """Multi-file remote containers addressed by id."""

    async def fetch_container(self, container_id: str) -> ContainerMeta:
        """Return container metadata without file contents.

        Raises:
            NotFoundError: If the container does not exist.
            TransportError: On any other failure.
        """
        ...  # pragma: no cover

    async def fetch_files(
        self, container_id: str, filenames: Sequence[str]
    ) -> dict[str, RemoteFile]:
        """Return the named files that exist, keyed by filename."""
        ...  # pragma: no cover

    async def fetch_all_files(self, container_id: str) -> dict[str, RemoteFile]:
        ...  # pragma: no cover

    async def write_file(
        self, container_id: str, filename: str, content: str | None
    ) -> str:
        """Write one file (``None`` deletes it); return the new timestamp."""
        ...  # pragma: no cover

    async def write_batch(
        self, container_id: str, files: dict[str, str | None]
    ) -> str:
        """Atomically write several files; return the new timestamp."""
        ...  # pragma: no cover

    async def create_root_container(self, files: dict[str, str]) -> ContainerMeta:
        """Create a root container holding the structural *files*."""
        ...  # pragma: no cover

    async def create_shard_container(
        self,
        shard_id: str,
        display_name: str,
        part: int,
        category_id: str | None,
        kind: ShardKind,
    ) -> ContainerMeta:
        """Create an empty shard container with an initial manifest."""
        ...  # pragma: no cover

    async def find_root_container(self) -> str | None:
        """Return the id of the root container found by its marker."""
        ...  # pragma: no cover

    async def list_shard_containers(self) -> list[str]:
        """Return the ids of every container marked as a shard."""
        ...  # pragma: no cover

    async def delete_container(self, container_id: str) -> None:
        ...  # pragma: no cover

    async def fetch_manifest(self, container_id: str) -> ShardManifest | None:
        """Return the shard manifest, or ``None`` if missing or malformed."""
        ...  # pragma: no cover

    async def replace_manifest(
        self, container_id: str, manifest: ShardManifest
    ) -> str:
        ...  # pragma: no cover

    async def update_description(
        self, container_id: str, description: str
    ) -> None:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Local persistence
# ---------------------------------------------------------------------------


class LocalStore(Protocol):
    """Local config and index snapshot."""

    async def get_config(self) -> SyncConfig:
        ...  # pragma: no cover

    async def save_config(self, config: SyncConfig) -> None:
        ...  # pragma: no cover

    async def get_index(self) -> Index | None:
        ...  # pragma: no cover

    async def save_index(self, index: Index) -> None:
        ...  # pragma: no cover


class FileRepository(Protocol):
    """Document entities by id."""

    async def get(self, document_id: str) -> Document | None:
        ...  # pragma: no cover

    async def save(self, document: Document) -> None:
        ...  # pragma: no cover

    async def delete(self, document_id: str) -> None:
        ...  # pragma: no cover

    async def save_bulk(self, documents: Sequence[Document]) -> None:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------


class CryptoProvider(Protocol):
    """Symmetric encryption for secure documents."""

    def has_key(self) -> bool:
        ...  # pragma: no cover

    def set_password(self, password: str) -> None:
        ...  # pragma: no cover

    def clear(self) -> None:
        ...  # pragma: no cover

    def encrypt(self, plaintext: str) -> str:
        """Encrypt *plaintext*.

        Raises:
            AuthRequiredError: If no key is set.
        """
        ...  # pragma: no cover

    def decrypt(self, payload: str) -> str:
        """Decrypt *payload*.

        Raises:
            AuthRequiredError: If no key is set.
            ValueError: If the payload is malformed or the key is wrong.
        """
        ...  # pragma: no cover
