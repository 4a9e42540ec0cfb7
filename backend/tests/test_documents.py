"""
Tests for documents.py - the SQL document store used by the pipelines.
"""
from datetime import timedelta
from uuid import uuid4

from vaultflow.core.db import utcnow
from vaultflow.models.document import Document
from vaultflow.services.documents import DocumentStore

from tests.fixtures.fakes import add_document


class TestLookups:
    def test_get_returns_snapshot(self, db):
        doc = add_document(db, "Rust ownership", "Borrowing rules.", tags=["rust", "memory"])
        snap = DocumentStore(db).get(doc.id)
        assert snap.title == "Rust ownership"
        assert snap.tags == ["rust", "memory"]
        assert DocumentStore(db).get(uuid4()) is None

    def test_by_ids_keeps_caller_order_and_limit(self, db):
        a = add_document(db, "A")
        b = add_document(db, "B")
        c = add_document(db, "C")
        store = DocumentStore(db)
        assert [d.title for d in store.by_ids([c.id, uuid4(), a.id, b.id], limit=2)] == ["C", "A"]

    def test_by_tag_and_recent(self, db):
        now = utcnow()
        add_document(db, "old rust", tags=["rust"], imported_at=now - timedelta(days=2))
        add_document(db, "new rust", tags=["rust", "async"], imported_at=now)
        add_document(db, "python", tags=["python"], imported_at=now - timedelta(days=1))
        store = DocumentStore(db)

        assert [d.title for d in store.by_tag("Rust", limit=5)] == ["new rust", "old rust"]
        assert [d.title for d in store.by_tags(["async", "python"], limit=5)] == ["new rust", "python"]
        assert [d.title for d in store.recent(limit=2)] == ["new rust", "python"]

    def test_filter_new_urls(self, db):
        add_document(db, "known", url="https://a.example/1")
        store = DocumentStore(db)
        urls = ["https://b.example/2", "https://a.example/1", "https://c.example/3"]
        assert store.filter_new_urls(urls) == ["https://b.example/2", "https://c.example/3"]

    def test_find_related_by_overlap(self, db):
        target = add_document(db, "target", tags=["rust", "async", "tokio"])
        strong = add_document(db, "strong", tags=["rust", "async"])
        weak = add_document(db, "weak", tags=["rust"])
        add_document(db, "none", tags=["python"])

        related = DocumentStore(db).find_related(target.id, ["rust", "async", "tokio"])
        assert related == [strong.id, weak.id]

    def test_top_tags(self, db):
        add_document(db, "a", tags=["rust", "async"])
        add_document(db, "b", tags=["rust"])
        add_document(db, "c", tags=["python", "async"])
        assert DocumentStore(db).top_tags(2) == ["async", "rust"]


class TestWrites:
    def test_set_tags_normalises_and_replaces(self, db):
        doc = add_document(db, "doc", tags=["old"])
        saved = DocumentStore(db).set_tags(doc.id, ["Rust", "rust", "Overview", "Async IO"])
        assert saved == ["rust", "async io"]
        db.expire_all()
        assert db.get(Document, doc.id).tags == ["rust", "async io"]

    def test_set_category(self, db):
        doc = add_document(db, "doc")
        DocumentStore(db).set_category(doc.id, "learning")
        db.expire_all()
        assert db.get(Document, doc.id).category == "learning"

    def test_import_document(self, db):
        store = DocumentStore(db)
        snap = store.import_document(url="https://x.example/a", title="A", content="alpha", tags=["Rust"])
        assert snap.tags == ["rust"]
        assert snap.url == "https://x.example/a"

    def test_import_skips_duplicate_url_or_content(self, db):
        store = DocumentStore(db)
        assert store.import_document(url="https://x.example/a", title="A", content="alpha") is not None
        assert store.import_document(url="https://x.example/a", title="A2", content="beta") is None
        assert store.import_document(url="https://x.example/b", title="B", content="alpha") is None
        assert db.query(Document).count() == 1
