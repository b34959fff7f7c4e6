"""Category and document editing on top of the sync engine.

Each ``Catalog`` operation updates the local cache, then (when a root
container is configured) publishes the change remotely.  Multi-step
operations thread the snapshot returned by one engine call into the next,
so every ``push_index`` checks against the newest timestamp seen.

Without a root container the catalog works offline: the index snapshot is
saved locally and nothing is sent.
"""

from __future__ import annotations

import logging
import uuid

from gist_shard_sync.exceptions import NotFoundError
from gist_shard_sync.sync.document import Document
from gist_shard_sync.sync.engine import SyncEngine
from gist_shard_sync.sync.models import Category, IndexItem, IndexView, Snapshot

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Random identifier for categories and documents."""
    return uuid.uuid4().hex[:16]


class Catalog:
    """Edit categories and documents and keep the remote in step.

    Args:
        engine: Engine used for every remote operation.
        root_container_id: Root container, or ``None`` to work offline.
    """

    def __init__(self, engine: SyncEngine, root_container_id: str | None) -> None:
        self.engine = engine
        self.root_container_id = root_container_id

    @property
    def files(self):
        return self.engine.files

    async def _publish(self, snapshot: Snapshot) -> Snapshot:
        if self.root_container_id:
            return await self.engine.push_index(self.root_container_id, snapshot)
        await self.engine.local.save_index(snapshot.index)
        return snapshot

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def add_category(
        self,
        snapshot: Snapshot,
        name: str,
        icon: str | None = None,
        default_language: str | None = None,
    ) -> tuple[Snapshot, Category]:
        category = Category(
            id=new_id(),
            name=name,
            icon=icon,
            default_language=default_language,
        )
        snapshot = snapshot.advanced(
            index=snapshot.index.with_category(category)
        )
        return await self._publish(snapshot), category

    async def delete_category(
        self, snapshot: Snapshot, category_id: str
    ) -> Snapshot:
        """Delete a category together with every document in it."""
        category = snapshot.index.category(category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")

        for item in category.items:
            await self.files.delete(item.id)
            snapshot = snapshot.advanced(
                index=snapshot.index.without_item(item.id)
            )
            if self.root_container_id:
                snapshot = await self.engine.delete_remote_file(
                    self.root_container_id,
                    snapshot,
                    item.id,
                    item.remote_filename,
                    item.storage_ref,
                )

        snapshot = snapshot.advanced(
            index=snapshot.index.without_category(category_id)
        )
        logger.info(
            "Deleted category %s with %d documents",
            category_id,
            len(category.items),
        )
        return await self._publish(snapshot)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_file(
        self,
        snapshot: Snapshot,
        category_id: str,
        title: str,
        language: str = "plaintext",
        content: str = "",
        is_secure: bool = False,
    ) -> tuple[Snapshot, Document]:
        """Create a document, assign it a shard and publish it."""
        if snapshot.index.category(category_id) is None:
            raise NotFoundError(f"Category {category_id} not found")

        document = Document.create(
            id=new_id(),
            title=title,
            content=content or f"# {title}\n",
            language=language,
            is_secure=is_secure,
        )
        await self.files.save(document)

        item = IndexItem(
            id=document.id,
            title=title,
            remote_filename=document.filename,
            language=language,
            is_secure=is_secure,
        )
        if self.root_container_id and snapshot.index.is_sharded:
            snapshot, item = await self.engine.assign_storage(
                snapshot, category_id, item, document.content
            )
        snapshot = snapshot.advanced(
            index=snapshot.index.with_item(category_id, item)
        )

        if not self.root_container_id:
            await self.engine.local.save_index(snapshot.index)
            return snapshot, document

        snapshot = await self.engine.push_index(self.root_container_id, snapshot)
        snapshot = await self.engine.push_file(
            self.root_container_id, snapshot, document.id, document
        )
        return snapshot, await self.files.get(document.id) or document

    async def update_content(
        self, snapshot: Snapshot, file_id: str, content: str
    ) -> tuple[Snapshot, Document]:
        document = await self.files.get(file_id)
        if document is None:
            raise NotFoundError(f"Document {file_id} not found")

        document = document.with_content(content)
        await self.files.save(document)
        if not self.root_container_id:
            return snapshot, document

        snapshot = await self.engine.push_file(
            self.root_container_id, snapshot, file_id, document
        )
        return snapshot, await self.files.get(file_id) or document

    async def update_metadata(
        self,
        snapshot: Snapshot,
        file_id: str,
        title: str | None = None,
        tags: tuple[str, ...] | None = None,
    ) -> Snapshot:
        """Change a document's title and/or tags in the cache and the index."""
        document = await self.files.get(file_id)
        if document is None:
            raise NotFoundError(f"Document {file_id} not found")
        indexed = IndexView(snapshot.index).get(file_id)
        if indexed is None:
            raise NotFoundError(f"Index item {file_id} not found")

        update: dict = {}
        if title is not None:
            update["title"] = title
        if tags is not None:
            update["tags"] = tuple(tags)
        await self.files.save(document.with_metadata(title=title, tags=tags))

        snapshot = snapshot.advanced(
            index=snapshot.index.with_item(
                indexed.category_id, indexed.item.model_copy(update=update)
            )
        )
        return await self._publish(snapshot)

    async def change_language(
        self, snapshot: Snapshot, file_id: str, language: str
    ) -> Snapshot:
        """Switch a document's language, renaming its remote file.

        A rename is delete-old, push-new, push-index; each step continues
        from the snapshot the previous one returned.
        """
        document = await self.files.get(file_id)
        if document is None:
            raise NotFoundError(f"Document {file_id} not found")
        indexed = IndexView(snapshot.index).get(file_id)
        if indexed is None:
            raise NotFoundError(f"Index item {file_id} not found")

        old_filename = document.filename
        old_storage = indexed.item.storage_ref
        document = document.with_metadata(language=language)
        new_filename = document.filename

        update: dict = {"language": language, "remote_filename": new_filename}
        if old_storage is not None:
            update["storage_ref"] = old_storage.model_copy(
                update={"remote_filename": new_filename}
            )
        snapshot = snapshot.advanced(
            index=snapshot.index.with_item(
                indexed.category_id, indexed.item.model_copy(update=update)
            )
        )
        await self.files.save(document)

        if not self.root_container_id or old_filename == new_filename:
            return await self._publish(snapshot)

        snapshot = await self.engine.delete_remote_file(
            self.root_container_id,
            snapshot,
            file_id,
            old_filename,
            old_storage,
        )
        snapshot = await self.engine.push_file(
            self.root_container_id, snapshot, file_id, document
        )
        return await self.engine.push_index(self.root_container_id, snapshot)

    async def delete_file(self, snapshot: Snapshot, file_id: str) -> Snapshot:
        """Delete a document; unknown ids leave the snapshot unchanged."""
        indexed = IndexView(snapshot.index).get(file_id)
        if indexed is None:
            return snapshot

        item = indexed.item
        await self.files.delete(file_id)
        snapshot = snapshot.advanced(index=snapshot.index.without_item(file_id))
        if not self.root_container_id:
            await self.engine.local.save_index(snapshot.index)
            return snapshot

        snapshot = await self.engine.delete_remote_file(
            self.root_container_id,
            snapshot,
            file_id,
            item.remote_filename,
            item.storage_ref,
        )
        return await self.engine.push_index(self.root_container_id, snapshot)
