"""Tests for the Document entity and its body variants."""

from gist_shard_sync.sync.checksum import checksum
from gist_shard_sync.sync.document import Decrypted, Document, PendingDecryption


class TestDocument:
    def test_create_is_dirty_with_checksum(self):
        doc = Document.create(id="d1", title="T", content="hello", language="python")
        assert doc.is_dirty
        assert doc.checksum == checksum("hello")
        assert doc.filename == "d1.py"
        assert doc.content == "hello"

    def test_unknown_language_uses_txt(self):
        doc = Document.create(id="d1", title="T", content="", language="cobol")
        assert doc.filename == "d1.txt"

    def test_with_content_marks_dirty(self):
        doc = Document.create(id="d1", title="T", content="a").mark_clean("t0")
        edited = doc.with_content("b")
        assert edited.is_dirty
        assert edited.checksum == checksum("b")
        assert not doc.is_dirty

    def test_mark_clean(self):
        doc = Document.create(id="d1", title="T", content="a").mark_clean("t0")
        assert not doc.is_dirty
        assert doc.last_synced_at == "t0"

    def test_pending_content_is_ciphertext(self):
        doc = Document(
            id="d1", title="T", body=PendingDecryption(ciphertext="iv:ct")
        )
        assert doc.is_pending
        assert doc.content == "iv:ct"

    def test_with_metadata(self):
        doc = Document.create(id="d1", title="T", content="a")
        updated = doc.with_metadata(title="U", tags=("x",), language="yaml")
        assert (updated.title, updated.tags, updated.filename) == ("U", ("x",), "d1.yaml")

    def test_body_variant_survives_json(self):
        doc = Document(id="d1", title="T", body=PendingDecryption(ciphertext="c"))
        restored = Document.model_validate_json(doc.model_dump_json())
        assert isinstance(restored.body, PendingDecryption)
        plain = Document(id="d2", title="T", body=Decrypted(text="t"))
        assert isinstance(
            Document.model_validate_json(plain.model_dump_json()).body, Decrypted
        )
