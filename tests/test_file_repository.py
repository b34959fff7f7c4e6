"""Tests for SqliteFileRepository."""

import pytest

from gist_shard_sync.storage import SqliteFileRepository
from gist_shard_sync.sync.document import Document, PendingDecryption


@pytest.fixture
def repo(tmp_path):
    return SqliteFileRepository(tmp_path / "nested" / "docs.sqlite3")


async def test_get_missing(repo):
    assert await repo.get("nope") is None


async def test_save_and_get(repo):
    doc = Document.create(id="a", title="A", content="hello", tags=("x",))
    await repo.save(doc)
    assert await repo.get("a") == doc


async def test_save_replaces(repo):
    doc = Document.create(id="a", title="A", content="one")
    await repo.save(doc)
    await repo.save(doc.with_content("two"))
    assert (await repo.get("a")).content == "two"
    assert repo.ids_sync() == ["a"]


async def test_pending_body_preserved(repo):
    doc = Document(id="s", title="S", body=PendingDecryption(ciphertext="iv:ct"))
    await repo.save(doc)
    assert (await repo.get("s")).is_pending


async def test_save_bulk_and_delete(repo):
    docs = [Document.create(id=i, title=i, content=i) for i in ("b", "a", "c")]
    await repo.save_bulk(docs)
    await repo.save_bulk([])
    assert repo.ids_sync() == ["a", "b", "c"]

    await repo.delete("b")
    await repo.delete("missing")
    assert repo.ids_sync() == ["a", "c"]


def test_reopen_keeps_data(tmp_path):
    path = tmp_path / "docs.sqlite3"
    SqliteFileRepository(path).save_many_sync([Document.create(id="a", title="A", content="x")])
    assert SqliteFileRepository(path).get_sync("a").content == "x"
