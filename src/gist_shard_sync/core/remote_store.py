"""Remote store backed by GitHub Gists.

Each remote container is one gist.  The root gist is recognized by its
description; shard gists by the ``Nexus Shard`` description prefix.
Blocking client calls run in worker threads through ``run_sync_limited``,
so the semaphore set up at startup bounds how many hit the API at once.
"""

from __future__ import annotations

import logging
from typing import Sequence

from gist_shard_sync.core.async_utils import run_sync_limited
from gist_shard_sync.core.gist_client import GistClient
from gist_shard_sync.exceptions import NotFoundError, ParseError
from gist_shard_sync.sync.layout import (
    INDEX_V2_FILE,
    LEGACY_INDEX_FILE,
    MANIFEST_FILE,
    README_FILE,
    ROOT_DESCRIPTION,
    SHARD_DESCRIPTION_PREFIX,
)
from gist_shard_sync.sync.models import (
    ContainerMeta,
    RemoteFile,
    ShardDescriptor,
    ShardKind,
    ShardManifest,
)
from gist_shard_sync.sync.repair import ShardStats, shard_description, shard_readme

logger = logging.getLogger(__name__)


def _meta(gist: dict) -> ContainerMeta:
    return ContainerMeta(
        id=gist["id"],
        updated_at=gist.get("updated_at") or "",
        description=gist.get("description") or "",
        filenames=tuple((gist.get("files") or {}).keys()),
    )


class GistRemoteStore:
    """``RemoteStore`` implementation over a ``GistClient``."""

    def __init__(self, client: GistClient) -> None:
        self.client = client

    async def fetch_container(self, container_id: str) -> ContainerMeta:
        gist = await run_sync_limited(self.client.get_gist, container_id)
        return _meta(gist)

    async def fetch_files(
        self, container_id: str, filenames: Sequence[str]
    ) -> dict[str, RemoteFile]:
        gist = await run_sync_limited(self.client.get_gist, container_id)
        return await self._files(gist, set(filenames))

    async def fetch_all_files(self, container_id: str) -> dict[str, RemoteFile]:
        gist = await run_sync_limited(self.client.get_gist, container_id)
        return await self._files(gist, None)

    async def _files(
        self, gist: dict, wanted: set[str] | None
    ) -> dict[str, RemoteFile]:
        files: dict[str, RemoteFile] = {}
        for name, entry in (gist.get("files") or {}).items():
            if wanted is not None and name not in wanted:
                continue
            content = await run_sync_limited(self.client.file_content, entry)
            files[name] = RemoteFile(
                filename=name, content=content, updated_at=gist.get("updated_at")
            )
        return files

    async def write_file(
        self, container_id: str, filename: str, content: str | None
    ) -> str:
        return await self.write_batch(container_id, {filename: content})

    async def write_batch(
        self, container_id: str, files: dict[str, str | None]
    ) -> str:
        gist = await run_sync_limited(self.client.update_gist, container_id, files)
        return gist["updated_at"]

    async def create_root_container(self, files: dict[str, str]) -> ContainerMeta:
        gist = await run_sync_limited(
            self.client.create_gist, ROOT_DESCRIPTION, files
        )
        logger.info("Created root gist %s", gist["id"])
        return _meta(gist)

    async def create_shard_container(
        self,
        shard_id: str,
        display_name: str,
        part: int,
        category_id: str | None,
        kind: ShardKind,
    ) -> ContainerMeta:
        placeholder = ShardDescriptor(
            id=shard_id,
            container_id="",
            category_id=category_id,
            category_name=display_name,
            part=part,
            kind=kind,
        )
        readme = shard_readme(
            placeholder,
            ShardStats(linked_count=0, manifest_count=0, total_bytes=0, orphan_entries=0),
        )
        files = {
            MANIFEST_FILE: ShardManifest.empty(shard_id).to_json(),
            README_FILE: readme,
        }
        gist = await run_sync_limited(
            self.client.create_gist, shard_description(placeholder), files
        )
        return _meta(gist)

    async def find_root_container(self) -> str | None:
        gists = await run_sync_limited(self.client.list_gists)
        for gist in gists:
            files = gist.get("files") or {}
            if (
                gist.get("description") == ROOT_DESCRIPTION
                or INDEX_V2_FILE in files
                or LEGACY_INDEX_FILE in files
            ):
                return gist["id"]
        return None

    async def list_shard_containers(self) -> list[str]:
        gists = await run_sync_limited(self.client.list_gists)
        return [
            gist["id"]
            for gist in gists
            if (gist.get("description") or "").startswith(SHARD_DESCRIPTION_PREFIX)
        ]

    async def delete_container(self, container_id: str) -> None:
        await run_sync_limited(self.client.delete_gist, container_id)
        logger.info("Deleted gist %s", container_id)

    async def fetch_manifest(self, container_id: str) -> ShardManifest | None:
        try:
            files = await self.fetch_files(container_id, [MANIFEST_FILE])
        except NotFoundError:
            logger.warning("Shard gist %s not found", container_id)
            return None
        manifest_file = files.get(MANIFEST_FILE)
        if manifest_file is None or not manifest_file.content:
            return None
        try:
            return ShardManifest.from_json(manifest_file.content)
        except ParseError as exc:
            logger.warning("Ignoring manifest of %s: %s", container_id, exc)
            return None

    async def replace_manifest(
        self, container_id: str, manifest: ShardManifest
    ) -> str:
        return await self.write_file(container_id, MANIFEST_FILE, manifest.to_json())

    async def update_description(self, container_id: str, description: str) -> None:
        await run_sync_limited(
            self.client.update_gist, container_id, {}, description
        )
