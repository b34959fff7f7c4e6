"""Tests for the sync data models and their wire format."""

import json

import pytest

from gist_shard_sync.exceptions import ParseError
from gist_shard_sync.sync.models import (
    Category,
    Index,
    IndexItem,
    IndexView,
    ManifestEntry,
    ShardDescriptor,
    ShardKey,
    ShardKind,
    ShardManifest,
    Snapshot,
    StorageRef,
    dump_shards,
    load_shards,
    parse_timestamp,
)


def _item(item_id: str, storage: StorageRef | None = None) -> IndexItem:
    return IndexItem(
        id=item_id,
        title=item_id,
        remote_filename=f"{item_id}.txt",
        storage_ref=storage,
    )


# ---------------------------------------------------------------------------
# ShardKey
# ---------------------------------------------------------------------------


class TestShardKey:
    def test_large_id(self):
        assert ShardKey(kind=ShardKind.LARGE, part=3).to_id() == "large-part-3"

    def test_category_id_is_normalized(self):
        key = ShardKey(kind=ShardKind.CATEGORY, category_id="a b/c", part=2)
        assert key.to_id() == "cat-a_b_c-part-2"

    def test_category_id_truncated_to_36_chars(self):
        key = ShardKey(kind=ShardKind.CATEGORY, category_id="x" * 50)
        assert key.to_id() == f"cat-{'x' * 36}-part-1"

    def test_from_id_inverts_to_id(self):
        key = ShardKey(kind=ShardKind.CATEGORY, category_id="notes-1", part=7)
        assert ShardKey.from_id(key.to_id()) == key

    def test_from_id_large(self):
        assert ShardKey.from_id("large-part-4") == ShardKey(
            kind=ShardKind.LARGE, part=4
        )

    @pytest.mark.parametrize(
        "shard_id", [None, "", "shard-gist1", "cat--part-1", "large-part-0", "x-part-2"]
    )
    def test_from_id_rejects_foreign_ids(self, shard_id):
        assert ShardKey.from_id(shard_id) is None


# ---------------------------------------------------------------------------
# ShardDescriptor normalization
# ---------------------------------------------------------------------------


class TestShardDescriptor:
    def test_missing_id_derived_from_container(self):
        shard = ShardDescriptor.model_validate({"gistId": "g1", "categoryId": "c"})
        assert shard.id == "shard-g1"
        assert shard.kind == ShardKind.CATEGORY

    def test_kind_inferred_large_without_category(self):
        shard = ShardDescriptor.model_validate({"id": "large-part-1", "gistId": "g"})
        assert shard.kind == ShardKind.LARGE

    def test_large_shard_drops_category_id(self):
        shard = ShardDescriptor.model_validate(
            {"id": "large-part-1", "gistId": "g", "kind": "large", "categoryId": "c"}
        )
        assert shard.category_id is None

    def test_part_recovered_from_id(self):
        shard = ShardDescriptor.model_validate(
            {"id": "cat-notes-part-4", "gistId": "g", "categoryId": "notes"}
        )
        assert shard.part == 4

    def test_part_defaults_to_one_for_foreign_id(self):
        shard = ShardDescriptor.model_validate(
            {"id": "whatever", "gistId": "g", "categoryId": "notes"}
        )
        assert shard.part == 1

    def test_null_counters_become_zero(self):
        shard = ShardDescriptor.model_validate(
            {
                "id": "large-part-1",
                "gistId": "g",
                "fileCount": None,
                "totalBytes": None,
                "categoryName": None,
            }
        )
        assert shard.file_count == 0
        assert shard.total_bytes == 0
        assert shard.category_name == ""

    def test_in_group(self):
        shard = ShardDescriptor(id="cat-a-part-1", container_id="g", category_id="a")
        assert shard.in_group(ShardKind.CATEGORY, "a")
        assert not shard.in_group(ShardKind.CATEGORY, "b")
        assert not shard.in_group(ShardKind.LARGE, None)


class TestShardList:
    def test_dump_uses_wire_names(self):
        shard = ShardDescriptor(
            id="cat-a-part-1",
            container_id="g",
            category_id="a",
            file_count=2,
            total_bytes=10,
        )
        data = json.loads(dump_shards((shard,)))
        assert data[0]["gistId"] == "g"
        assert data[0]["categoryId"] == "a"
        assert data[0]["fileCount"] == 2
        assert data[0]["totalBytes"] == 10

    def test_load_round_trips(self):
        shards = (
            ShardDescriptor(id="large-part-2", container_id="g", kind=ShardKind.LARGE),
        )
        assert load_shards(dump_shards(shards)) == shards

    @pytest.mark.parametrize("raw", ["not json", '{"id": 1}', '[{"id": "x"}]'])
    def test_load_rejects_malformed(self, raw):
        with pytest.raises(ParseError):
            load_shards(raw)


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


def _entry(file_id: str, size: int = 1) -> ManifestEntry:
    return ManifestEntry(
        file_id=file_id, filename=f"{file_id}.txt", checksum="0", size=size
    )


class TestShardManifest:
    def test_with_entry_appends_new(self):
        manifest = ShardManifest.empty("s").with_entry(_entry("a"))
        manifest = manifest.with_entry(_entry("b"))
        assert [e.file_id for e in manifest.files] == ["a", "b"]

    def test_with_entry_replaces_in_place(self):
        manifest = (
            ShardManifest.empty("s")
            .with_entry(_entry("a"))
            .with_entry(_entry("b"))
            .with_entry(_entry("a", size=9))
        )
        assert [e.file_id for e in manifest.files] == ["a", "b"]
        assert manifest.entry_for("a").size == 9

    def test_without(self):
        manifest = ShardManifest.empty("s").with_entry(_entry("a")).without("a")
        assert manifest.files == ()
        assert manifest.entry_for("a") is None

    def test_json_wire_names(self):
        data = json.loads(ShardManifest.empty("s").with_entry(_entry("a")).to_json())
        assert data["shardId"] == "s"
        assert data["files"][0]["fileId"] == "a"
        assert data["files"][0]["isSecure"] is False

    def test_from_json_malformed(self):
        with pytest.raises(ParseError):
            ShardManifest.from_json("{")


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class TestIndex:
    def test_v1_has_no_shards(self):
        index = Index.from_json('{"version": 1, "categories": []}')
        assert index.shards is None
        assert not index.is_sharded
        assert "shards" not in json.loads(index.to_json())

    def test_v2_defaults_to_empty_shard_list(self):
        index = Index.from_json('{"version": 2, "categories": []}')
        assert index.shards == ()
        assert index.is_sharded

    def test_as_v2(self):
        index = Index().as_v2()
        assert index.schema_version == 2
        assert index.shards == ()

    def test_item_wire_names(self):
        storage = StorageRef(shard_id="s", container_id="g", remote_filename="a.txt")
        index = Index(
            schema_version=2,
            categories=(Category(id="c", name="C", items=(_item("a", storage),)),),
            shards=(),
        )
        item = json.loads(index.to_json())["categories"][0]["items"][0]
        assert item["gist_file"] == "a.txt"
        assert item["storage"] == {"shardId": "s", "gistId": "g", "gist_file": "a.txt"}
        assert item["isSecure"] is False

    def test_from_json_malformed(self):
        with pytest.raises(ParseError):
            Index.from_json("[1, 2]")

    def test_with_item_unknown_category(self):
        with pytest.raises(KeyError):
            Index().with_item("missing", _item("a"))

    def test_with_item_replaces_existing(self):
        index = Index(categories=(Category(id="c", name="C", items=(_item("a"),)),))
        renamed = _item("a").model_copy(update={"title": "renamed"})
        updated = index.with_item("c", renamed)
        assert updated.category("c").items[0].title == "renamed"
        assert index.category("c").items[0].title == "a"

    def test_without_item(self):
        index = Index(
            categories=(Category(id="c", name="C", items=(_item("a"), _item("b"))),)
        )
        assert [i.id for i in index.without_item("a").category("c").items] == ["b"]

    def test_with_shard_replaces_or_appends(self):
        shard = ShardDescriptor(id="large-part-1", container_id="g", kind=ShardKind.LARGE)
        index = Index().as_v2().with_shard(shard)
        index = index.with_shard(shard.model_copy(update={"file_count": 3}))
        assert len(index.shard_list) == 1
        assert index.shard("large-part-1").file_count == 3


class TestIndexView:
    def test_lookup_maps(self):
        storage = StorageRef(shard_id="s", container_id="g", remote_filename="a.txt")
        index = Index(
            categories=(
                Category(id="c", name="Code", items=(_item("a", storage), _item("b"))),
            )
        )
        view = IndexView(index)
        assert view.get("a").category_id == "c"
        assert view.items_by_storage_key["g::a.txt"].item.id == "a"
        assert "b.txt" in view.items_by_filename
        assert view.category_names == {"c": "Code"}
        assert view.get("zzz") is None


class TestTimestamps:
    def test_missing_is_epoch(self):
        assert parse_timestamp(None).year == 1970
        assert parse_timestamp("").year == 1970

    def test_z_suffix(self):
        assert parse_timestamp("2024-01-01T00:00:01Z") > parse_timestamp(
            "2024-01-01T00:00:00.000Z"
        )

    def test_snapshot_advanced_keeps_token(self):
        snapshot = Snapshot(index=Index(), remote_updated_at="t1")
        assert snapshot.advanced(index=Index(schema_version=2)).remote_updated_at == "t1"
        assert snapshot.advanced(remote_updated_at="t2").remote_updated_at == "t2"
