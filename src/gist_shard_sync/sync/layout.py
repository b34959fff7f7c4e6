"""Names, markers and structural files of the remote container layout."""

from __future__ import annotations

from gist_shard_sync.sync.models import Index, dump_shards

# Root container structural files.
INDEX_V2_FILE = "nexus_index_v2.json"
SHARDS_FILE = "nexus_shards.json"
LEGACY_INDEX_FILE = "nexus_index.json"
README_FILE = "README.md"

# Written inside every shard container next to the documents.
MANIFEST_FILE = "shard_manifest.json"

# Description of the root container, used to discover it.
ROOT_DESCRIPTION = "Nexus Configuration Index - Do not edit manually if possible"

# Prefix of every shard container description.
SHARD_DESCRIPTION_PREFIX = "Nexus Shard"

# Files in a shard container that are not documents.
SHARD_META_FILES = frozenset({MANIFEST_FILE, README_FILE})

ROOT_README = (
    "# Nexus Configuration Index\n\n"
    "This container stores the document index. Document contents live in "
    "the shard containers listed in `nexus_shards.json`.\n"
)


def index_files(index: Index) -> dict[str, str]:
    """Structural files written to the root container for *index*."""
    if index.is_sharded:
        return {
            INDEX_V2_FILE: index.to_json(),
            SHARDS_FILE: dump_shards(index.shard_list),
        }
    return {LEGACY_INDEX_FILE: index.to_json()}


def root_files(index: Index) -> dict[str, str]:
    """Files a new root container is created with."""
    return {**index_files(index), README_FILE: ROOT_README}
