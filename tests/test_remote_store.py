"""Tests for GistRemoteStore over a mocked GistClient."""

from unittest.mock import MagicMock

import pytest

from gist_shard_sync.core.gist_client import GistClient
from gist_shard_sync.core.remote_store import GistRemoteStore
from gist_shard_sync.exceptions import NotFoundError
from gist_shard_sync.sync.layout import (
    INDEX_V2_FILE,
    MANIFEST_FILE,
    README_FILE,
    ROOT_DESCRIPTION,
)
from gist_shard_sync.sync.models import ShardKind, ShardManifest


def _gist(gist_id, files=None, description="", updated_at="2024-01-01T00:00:00Z"):
    return {
        "id": gist_id,
        "description": description,
        "updated_at": updated_at,
        "files": {
            name: {"filename": name, "content": content}
            for name, content in (files or {}).items()
        },
    }


@pytest.fixture
def client():
    client = MagicMock(spec=GistClient)
    client.file_content.side_effect = lambda entry: entry.get("content") or ""
    return client


@pytest.fixture
def store(client):
    return GistRemoteStore(client)


async def test_fetch_container(store, client):
    client.get_gist.return_value = _gist("g1", {"a.txt": "x"}, "desc")
    meta = await store.fetch_container("g1")
    assert (meta.id, meta.description, meta.filenames) == ("g1", "desc", ("a.txt",))


async def test_fetch_files_filters(store, client):
    client.get_gist.return_value = _gist("g1", {"a.txt": "A", "b.txt": "B"})
    files = await store.fetch_files("g1", ["b.txt", "missing.txt"])
    assert list(files) == ["b.txt"]
    assert files["b.txt"].content == "B"
    assert files["b.txt"].updated_at == "2024-01-01T00:00:00Z"


async def test_write_batch_returns_update_time(store, client):
    client.update_gist.return_value = _gist("g1", updated_at="2024-02-02T00:00:00Z")
    stamp = await store.write_batch("g1", {"a.txt": None})
    assert stamp == "2024-02-02T00:00:00Z"
    client.update_gist.assert_called_once_with("g1", {"a.txt": None})


async def test_create_shard_container(store, client):
    client.create_gist.return_value = _gist("s1", {MANIFEST_FILE: "{}"})

    meta = await store.create_shard_container(
        "cat-c-part-1", "Code", 1, "c", ShardKind.CATEGORY
    )

    assert meta.id == "s1"
    description, files = client.create_gist.call_args.args
    assert description == "Nexus Shard [category] Code (c) #1"
    assert ShardManifest.from_json(files[MANIFEST_FILE]).files == ()
    assert "cat-c-part-1" in files[README_FILE]


async def test_find_root_container(store, client):
    client.list_gists.return_value = [
        _gist("other", {"notes.md": "x"}, "notes"),
        _gist("root", {INDEX_V2_FILE: "{}"}, ROOT_DESCRIPTION),
    ]
    assert await store.find_root_container() == "root"


async def test_find_root_by_index_file(store, client):
    client.list_gists.return_value = [_gist("r", {INDEX_V2_FILE: "{}"}, "renamed")]
    assert await store.find_root_container() == "r"


async def test_find_root_none(store, client):
    client.list_gists.return_value = []
    assert await store.find_root_container() is None


async def test_list_shard_containers(store, client):
    client.list_gists.return_value = [
        _gist("s1", description="Nexus Shard [large] Large Files #1"),
        _gist("x", description=None),
    ]
    assert await store.list_shard_containers() == ["s1"]


async def test_fetch_manifest(store, client):
    manifest = ShardManifest.empty("cat-c-part-1")
    client.get_gist.return_value = _gist("s1", {MANIFEST_FILE: manifest.to_json()})
    assert await store.fetch_manifest("s1") == manifest


@pytest.mark.parametrize(
    "files",
    [{}, {MANIFEST_FILE: ""}, {MANIFEST_FILE: "not json"}],
)
async def test_fetch_manifest_unreadable(store, client, files):
    client.get_gist.return_value = _gist("s1", files)
    assert await store.fetch_manifest("s1") is None


async def test_fetch_manifest_missing_container(store, client):
    client.get_gist.side_effect = NotFoundError("gone")
    assert await store.fetch_manifest("s1") is None


async def test_update_description(store, client):
    client.update_gist.return_value = _gist("s1")
    await store.update_description("s1", "new")
    client.update_gist.assert_called_once_with("s1", {}, "new")
