"""Document entity held in the local cache.

A document is the editable unit behind one index item.  Its body is either
``Decrypted`` text or ``PendingDecryption`` ciphertext: secure documents whose
remote content could not be decrypted during a pull keep the raw payload
until a vault key is available, and cannot be pushed in that state.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, Field

from gist_shard_sync.sync.checksum import checksum
from gist_shard_sync.sync.languages import remote_filename
from gist_shard_sync.sync.models import utc_now


class Decrypted(BaseModel):
    """Plain document text."""

    kind: Literal["decrypted"] = "decrypted"
    text: str

    model_config = {"frozen": True}


class PendingDecryption(BaseModel):
    """Ciphertext that could not be decrypted yet."""

    kind: Literal["pending"] = "pending"
    ciphertext: str

    model_config = {"frozen": True}


Body = Union[Decrypted, PendingDecryption]


class Document(BaseModel):
    """Local working copy of one document.

    Lifecycle: created dirty; clean after a successful push or pull; dirty
    again after a local edit.
    """

    id: str
    title: str
    body: Body = Field(discriminator="kind")
    language: str = "plaintext"
    tags: tuple[str, ...] = ()
    updated_at: str = ""
    is_dirty: bool = True
    checksum: str = ""
    last_synced_at: str | None = None
    is_secure: bool = False

    model_config = {"frozen": True}

    @classmethod
    def create(
        cls,
        id: str,
        title: str,
        content: str,
        language: str = "plaintext",
        tags: tuple[str, ...] = (),
        is_secure: bool = False,
    ) -> Document:
        """Build a new, dirty document from plain *content*."""
        return cls(
            id=id,
            title=title,
            body=Decrypted(text=content),
            language=language,
            tags=tuple(tags),
            updated_at=utc_now(),
            is_dirty=True,
            checksum=checksum(content),
            is_secure=is_secure,
        )

    @property
    def is_pending(self) -> bool:
        return isinstance(self.body, PendingDecryption)

    @property
    def content(self) -> str:
        """Plain text, or the raw ciphertext while decryption is pending."""
        if isinstance(self.body, Decrypted):
            return self.body.text
        return self.body.ciphertext

    @property
    def filename(self) -> str:
        return remote_filename(self.id, self.language)

    def with_content(self, content: str) -> Document:
        """Return a dirty copy holding the edited *content*."""
        return self.model_copy(
            update={
                "body": Decrypted(text=content),
                "checksum": checksum(content),
                "updated_at": utc_now(),
                "is_dirty": True,
            }
        )

    def with_metadata(
        self,
        title: str | None = None,
        tags: tuple[str, ...] | None = None,
        language: str | None = None,
    ) -> Document:
        update: dict = {"updated_at": utc_now()}
        if title is not None:
            update["title"] = title
        if tags is not None:
            update["tags"] = tuple(tags)
        if language is not None:
            update["language"] = language
        return self.model_copy(update=update)

    def mark_clean(self, synced_at: str | None = None) -> Document:
        return self.model_copy(
            update={
                "is_dirty": False,
                "last_synced_at": synced_at or utc_now(),
            }
        )
