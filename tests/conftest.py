"""Shared pytest fixtures for gist-shard-sync tests.

The four engine ports are replaced by in-memory fakes.  ``FakeRemoteStore``
stamps every write with a strictly increasing timestamp from one shared
clock, the way GitHub stamps gist updates.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest
from dotenv import load_dotenv

from gist_shard_sync.config import Config
from gist_shard_sync.core.async_utils import reset_semaphore
from gist_shard_sync.exceptions import AuthRequiredError, NotFoundError, ParseError
from gist_shard_sync.sync.checksum import byte_length, checksum
from gist_shard_sync.sync.document import Document
from gist_shard_sync.sync.engine import SyncEngine
from gist_shard_sync.sync.layout import (
    MANIFEST_FILE,
    ROOT_DESCRIPTION,
    SHARD_DESCRIPTION_PREFIX,
    index_files,
    root_files,
)
from gist_shard_sync.sync.models import (
    Category,
    ContainerMeta,
    Index,
    IndexItem,
    ManifestEntry,
    RemoteFile,
    ShardDescriptor,
    ShardKind,
    ShardManifest,
    StorageRef,
    SyncConfig,
)

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live GitHub token",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(autouse=True)
def _unbounded_semaphore():
    """Each test starts without a request semaphore."""
    reset_semaphore()
    yield
    reset_semaphore()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic ISO timestamps, one second apart."""

    def __init__(self) -> None:
        self._now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def tick(self) -> str:
        self._now += timedelta(seconds=1)
        return self._now.isoformat(timespec="milliseconds").replace(
            "+00:00", "Z"
        )


class FakeContainer:
    def __init__(self, description: str, files: dict[str, str], updated_at: str):
        self.description = description
        self.files = dict(files)
        self.updated_at = updated_at


class FakeRemoteStore:
    """In-memory ``RemoteStore`` that records every call."""

    def __init__(self) -> None:
        self.clock = FakeClock()
        self.containers: dict[str, FakeContainer] = {}
        self._next_id = 0
        self.fetch_calls: list[tuple[str, tuple[str, ...] | None]] = []
        self.writes: list[tuple[str, dict[str, str | None]]] = []
        self.deleted: list[str] = []
        self.created_shards: list[str] = []
        self.fail_fetch_container: Exception | None = None

    # -- helpers used by tests ---------------------------------------------

    def new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    def add_container(
        self, description: str, files: dict[str, str], container_id: str | None = None
    ) -> str:
        container_id = container_id or self.new_id("gist")
        self.containers[container_id] = FakeContainer(
            description, files, self.clock.tick()
        )
        return container_id

    def touch(self, container_id: str) -> str:
        """Simulate another client writing to the container."""
        stamp = self.clock.tick()
        self.containers[container_id].updated_at = stamp
        return stamp

    def file(self, container_id: str, filename: str) -> str | None:
        return self.containers[container_id].files.get(filename)

    def manifest(self, container_id: str) -> ShardManifest:
        return ShardManifest.from_json(self.file(container_id, MANIFEST_FILE))

    def reset_calls(self) -> None:
        self.fetch_calls.clear()
        self.writes.clear()

    def _get(self, container_id: str) -> FakeContainer:
        container = self.containers.get(container_id)
        if container is None:
            raise NotFoundError(f"container {container_id} not found")
        return container

    # -- RemoteStore --------------------------------------------------------

    async def fetch_container(self, container_id: str) -> ContainerMeta:
        if self.fail_fetch_container is not None:
            raise self.fail_fetch_container
        container = self._get(container_id)
        return ContainerMeta(
            id=container_id,
            updated_at=container.updated_at,
            description=container.description,
            filenames=tuple(container.files),
        )

    async def fetch_files(
        self, container_id: str, filenames: Sequence[str]
    ) -> dict[str, RemoteFile]:
        self.fetch_calls.append((container_id, tuple(filenames)))
        container = self._get(container_id)
        return {
            name: RemoteFile(
                filename=name,
                content=container.files[name],
                updated_at=container.updated_at,
            )
            for name in filenames
            if name in container.files
        }

    async def fetch_all_files(self, container_id: str) -> dict[str, RemoteFile]:
        self.fetch_calls.append((container_id, None))
        container = self._get(container_id)
        return {
            name: RemoteFile(
                filename=name, content=content, updated_at=container.updated_at
            )
            for name, content in container.files.items()
        }

    async def write_file(
        self, container_id: str, filename: str, content: str | None
    ) -> str:
        return await self.write_batch(container_id, {filename: content})

    async def write_batch(
        self, container_id: str, files: dict[str, str | None]
    ) -> str:
        container = self._get(container_id)
        for name, content in files.items():
            if content is None:
                container.files.pop(name, None)
            else:
                container.files[name] = content
        container.updated_at = self.clock.tick()
        self.writes.append((container_id, dict(files)))
        return container.updated_at

    async def create_root_container(self, files: dict[str, str]) -> ContainerMeta:
        container_id = self.add_container(ROOT_DESCRIPTION, files, self.new_id("root"))
        return await self.fetch_container(container_id)

    async def create_shard_container(
        self,
        shard_id: str,
        display_name: str,
        part: int,
        category_id: str | None,
        kind: ShardKind,
    ) -> ContainerMeta:
        container_id = self.add_container(
            f"{SHARD_DESCRIPTION_PREFIX} [{kind.value}] {display_name} #{part}",
            {MANIFEST_FILE: ShardManifest.empty(shard_id).to_json()},
        )
        self.created_shards.append(container_id)
        return await self.fetch_container(container_id)

    async def find_root_container(self) -> str | None:
        for container_id, container in self.containers.items():
            if container.description == ROOT_DESCRIPTION:
                return container_id
        return None

    async def list_shard_containers(self) -> list[str]:
        return [
            container_id
            for container_id, container in self.containers.items()
            if container.description.startswith(SHARD_DESCRIPTION_PREFIX)
        ]

    async def delete_container(self, container_id: str) -> None:
        self._get(container_id)
        del self.containers[container_id]
        self.deleted.append(container_id)

    async def fetch_manifest(self, container_id: str) -> ShardManifest | None:
        container = self.containers.get(container_id)
        if container is None or MANIFEST_FILE not in container.files:
            return None
        try:
            return ShardManifest.from_json(container.files[MANIFEST_FILE])
        except ParseError:
            return None

    async def replace_manifest(
        self, container_id: str, manifest: ShardManifest
    ) -> str:
        return await self.write_file(container_id, MANIFEST_FILE, manifest.to_json())

    async def update_description(self, container_id: str, description: str) -> None:
        container = self._get(container_id)
        container.description = description
        container.updated_at = self.clock.tick()


class FakeLocalStore:
    def __init__(self) -> None:
        self.config = SyncConfig()
        self.index: Index | None = None
        self.saved_indexes: list[Index] = []

    async def get_config(self) -> SyncConfig:
        return self.config

    async def save_config(self, config: SyncConfig) -> None:
        self.config = config

    async def get_index(self) -> Index | None:
        return self.index

    async def save_index(self, index: Index) -> None:
        self.index = index
        self.saved_indexes.append(index)


class FakeFileRepository:
    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}

    async def get(self, document_id: str) -> Document | None:
        return self.documents.get(document_id)

    async def save(self, document: Document) -> None:
        self.documents[document.id] = document

    async def delete(self, document_id: str) -> None:
        self.documents.pop(document_id, None)

    async def save_bulk(self, documents: Sequence[Document]) -> None:
        for document in documents:
            self.documents[document.id] = document


class FakeCrypto:
    """Reversible stand-in: ``enc:<password>:<plaintext>``."""

    def __init__(self, password: str | None = None) -> None:
        self.password = password

    def has_key(self) -> bool:
        return self.password is not None

    def set_password(self, password: str) -> None:
        self.password = password

    def clear(self) -> None:
        self.password = None

    def encrypt(self, plaintext: str) -> str:
        if self.password is None:
            raise AuthRequiredError("Vault password not set")
        return f"enc:{self.password}:{plaintext}"

    def decrypt(self, payload: str) -> str:
        if self.password is None:
            raise AuthRequiredError("Vault password not set")
        prefix = f"enc:{self.password}:"
        if not payload.startswith(prefix):
            raise ValueError("Decryption failed")
        return payload[len(prefix):]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def local() -> FakeLocalStore:
    return FakeLocalStore()


@pytest.fixture
def files() -> FakeFileRepository:
    return FakeFileRepository()


@pytest.fixture
def crypto() -> FakeCrypto:
    return FakeCrypto()


@pytest.fixture
def engine(remote, local, files, crypto) -> SyncEngine:
    return SyncEngine(remote, local, files, crypto)


@pytest.fixture
def mock_config(tmp_path) -> Config:
    return Config(
        github_token="ghp_test",
        api_url="https://api.github.example.com",
        data_dir=str(tmp_path / "data"),
    )


@pytest.fixture
def seed_remote(remote):
    """Factory building a sharded root plus one shard per category.

    ``docs`` maps ``(category_id, item_id)`` to the document content.
    Returns ``(root_id, index)``.
    """

    def _seed(
        docs: dict[tuple[str, str], str],
        secure: frozenset[str] = frozenset(),
        with_manifest: bool = True,
    ) -> tuple[str, Index]:
        categories: dict[str, list[IndexItem]] = {}
        shards: list[ShardDescriptor] = []
        shard_files: dict[str, dict[str, str]] = {}
        entries: dict[str, list[ManifestEntry]] = {}
        containers: dict[str, str] = {}

        for (category_id, item_id), content in docs.items():
            shard_id = f"cat-{category_id}-part-1"
            if category_id not in containers:
                containers[category_id] = remote.new_id("gist")
                shard_files[category_id] = {}
                entries[category_id] = []
            container_id = containers[category_id]
            filename = f"{item_id}.txt"
            stored = content
            shard_files[category_id][filename] = stored
            plain = content
            if item_id in secure and stored.startswith("enc:"):
                plain = stored.split(":", 2)[2]
            entries[category_id].append(
                ManifestEntry(
                    file_id=item_id,
                    filename=filename,
                    checksum=checksum(plain),
                    updated_at="2024-01-01T00:00:00.000Z",
                    size=byte_length(plain),
                    is_secure=item_id in secure,
                )
            )
            categories.setdefault(category_id, []).append(
                IndexItem(
                    id=item_id,
                    title=f"Title {item_id}",
                    remote_filename=filename,
                    storage_ref=StorageRef(
                        shard_id=shard_id,
                        container_id=container_id,
                        remote_filename=filename,
                    ),
                    is_secure=item_id in secure,
                )
            )

        for category_id, container_id in containers.items():
            shard_id = f"cat-{category_id}-part-1"
            manifest = ShardManifest(
                shard_id=shard_id,
                updated_at="2024-01-01T00:00:00.000Z",
                files=tuple(entries[category_id]),
            )
            content = dict(shard_files[category_id])
            if with_manifest:
                content[MANIFEST_FILE] = manifest.to_json()
            remote.add_container(
                f"{SHARD_DESCRIPTION_PREFIX} [category] {category_id} #1",
                content,
                container_id,
            )
            shards.append(
                ShardDescriptor(
                    id=shard_id,
                    container_id=container_id,
                    category_id=category_id,
                    category_name=category_id.title(),
                    part=1,
                    kind=ShardKind.CATEGORY,
                    file_count=len(entries[category_id]),
                    total_bytes=sum(e.size for e in entries[category_id]),
                )
            )

        index = Index(
            schema_version=2,
            updated_at="2024-01-01T00:00:00.000Z",
            categories=tuple(
                Category(id=cid, name=cid.title(), items=tuple(items))
                for cid, items in categories.items()
            ),
            shards=tuple(shards),
        )
        root_id = remote.add_container(
            ROOT_DESCRIPTION, root_files(index), remote.new_id("root")
        )
        return root_id, index

    return _seed


@pytest.fixture
def seed_legacy(remote):
    """Factory building a schema-1 root holding the documents itself."""

    def _seed(docs: dict[tuple[str, str], str]) -> tuple[str, Index]:
        categories: dict[str, list[IndexItem]] = {}
        root_content: dict[str, str] = {}
        for (category_id, item_id), content in docs.items():
            filename = f"{item_id}.txt"
            root_content[filename] = content
            categories.setdefault(category_id, []).append(
                IndexItem(id=item_id, title=item_id, remote_filename=filename)
            )
        index = Index(
            schema_version=1,
            categories=tuple(
                Category(id=cid, name=cid.title(), items=tuple(items))
                for cid, items in categories.items()
            ),
        )
        root_content.update(index_files(index))
        root_id = remote.add_container(
            ROOT_DESCRIPTION, root_content, remote.new_id("root")
        )
        return root_id, index

    return _seed
