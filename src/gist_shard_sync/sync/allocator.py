"""Shard assignment (bin packing).

Documents larger than ``large_file_bytes`` go to the category-independent
``large`` group; everything else goes to its category's group.  Within a
group, shards are tried in ascending ``part`` order: the first one that
stays within the file limit and the soft byte target wins.  A document that
is itself bigger than the soft target may fall back to any shard that stays
within the hard byte ceiling.  When nothing fits, a new shard container is
created with the next part number.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, model_validator

from gist_shard_sync.sync.models import (
    LARGE_FILES_NAME,
    Index,
    ShardDescriptor,
    ShardKey,
    ShardKind,
    utc_now,
)
from gist_shard_sync.sync.ports import RemoteStore

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
KIB = 1024


class ShardLimits(BaseModel):
    """Capacity limits of one shard container."""

    target_bytes: int = Field(default=3 * MIB, ge=1)
    hard_bytes: int = Field(default=8 * MIB, ge=1)
    file_limit: int = Field(default=120, ge=1)
    large_file_bytes: int = Field(default=512 * KIB, ge=1)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _target_within_hard(self) -> ShardLimits:
        if self.target_bytes > self.hard_bytes:
            raise ValueError("target_bytes must not exceed hard_bytes")
        return self


def placement_kind(content_bytes: int, limits: ShardLimits) -> ShardKind:
    """Return the shard group a document of *content_bytes* belongs to."""
    if content_bytes > limits.large_file_bytes:
        return ShardKind.LARGE
    return ShardKind.CATEGORY


def group_shards(
    shards: tuple[ShardDescriptor, ...],
    kind: ShardKind,
    category_id: str | None,
) -> list[ShardDescriptor]:
    """Shards of one placement group, in ascending part order."""
    return sorted(
        (s for s in shards if s.in_group(kind, category_id)),
        key=lambda s: s.part,
    )


def select_shard(
    shards: tuple[ShardDescriptor, ...],
    kind: ShardKind,
    category_id: str | None,
    content_bytes: int,
    limits: ShardLimits,
) -> ShardDescriptor | None:
    """Pick an existing shard for a new document, or ``None``."""
    candidates = group_shards(shards, kind, category_id)

    def fits(shard: ShardDescriptor, ceiling: int) -> bool:
        return (
            shard.file_count + 1 <= limits.file_limit
            and shard.total_bytes + content_bytes <= ceiling
        )

    for shard in candidates:
        if fits(shard, limits.target_bytes):
            return shard
    if content_bytes > limits.target_bytes:
        for shard in candidates:
            if fits(shard, limits.hard_bytes):
                return shard
    return None


def next_part(
    shards: tuple[ShardDescriptor, ...],
    kind: ShardKind,
    category_id: str | None,
) -> int:
    candidates = group_shards(shards, kind, category_id)
    if not candidates:
        return 1
    return max(s.part for s in candidates) + 1


async def select_or_create_shard(
    index: Index,
    remote: RemoteStore,
    category_id: str,
    content_bytes: int,
    limits: ShardLimits,
) -> tuple[Index, ShardDescriptor]:
    """Return the shard a document should live in.

    Creates a new shard container (and appends its descriptor, with zero
    counts, to the returned index) when no existing shard fits.
    """
    index = index.as_v2()
    kind = placement_kind(content_bytes, limits)
    group_category = category_id if kind == ShardKind.CATEGORY else None

    selected = select_shard(
        index.shard_list, kind, group_category, content_bytes, limits
    )
    if selected is not None:
        return index, selected

    key = ShardKey(
        kind=kind,
        category_id=group_category,
        part=next_part(index.shard_list, kind, group_category),
    )
    if kind == ShardKind.LARGE:
        category_name = LARGE_FILES_NAME
    else:
        category = index.category(category_id)
        category_name = category.name if category else category_id

    shard_id = key.to_id()
    meta = await remote.create_shard_container(
        shard_id, category_name, key.part, group_category, kind
    )
    descriptor = ShardDescriptor(
        id=shard_id,
        container_id=meta.id,
        category_id=group_category,
        category_name=category_name,
        part=key.part,
        kind=kind,
        file_count=0,
        total_bytes=0,
        updated_at=utc_now(),
    )
    logger.info(
        "Created shard %s (container %s) for %d bytes",
        shard_id,
        meta.id,
        content_bytes,
    )
    return index.with_shard(descriptor), descriptor
