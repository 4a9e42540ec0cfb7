# backend/vaultflow/services/documents.py
"""
SQL-backed document store used by the pipelines.

Reads hand back DocumentSnapshot values (plain data, detached from the
session) so orchestrators can commit their own work between items without
reloading documents.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Iterable, Sequence
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.db import utcnow
from ..models.document import Document, DocumentTag
from .tags import finalize_tags

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentSnapshot:
    id: UUID
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    url: str | None = None
    category: str | None = None


def _snapshot(doc: Document) -> DocumentSnapshot:
    return DocumentSnapshot(
        id=doc.id,
        title=doc.title,
        content=doc.content or "",
        tags=list(doc.tags),
        url=doc.url,
        category=doc.category,
    )


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class DocumentStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, document_id: UUID) -> DocumentSnapshot | None:
        doc = self.db.get(Document, document_id)
        return _snapshot(doc) if doc else None

    def by_ids(self, ids: Sequence[UUID], limit: int) -> list[DocumentSnapshot]:
        if not ids:
            return []
        rows = self.db.query(Document).filter(Document.id.in_(list(ids))).all()
        by_id = {d.id: d for d in rows}
        # Preserve caller order; unknown ids are skipped
        ordered = [by_id[i] for i in ids if i in by_id]
        return [_snapshot(d) for d in ordered[:limit]]

    def by_tag(self, tag: str, limit: int) -> list[DocumentSnapshot]:
        return self.by_tags([tag], limit)

    def by_tags(self, tags: Iterable[str], limit: int) -> list[DocumentSnapshot]:
        wanted = [t.strip().lower() for t in tags if t and t.strip()]
        if not wanted:
            return []
        rows = (
            self.db.query(Document)
            .join(DocumentTag, DocumentTag.document_id == Document.id)
            .filter(DocumentTag.tag.in_(wanted))
            .distinct()
            .order_by(Document.imported_at.desc())
            .limit(limit)
            .all()
        )
        return [_snapshot(d) for d in rows]

    def recent(self, limit: int) -> list[DocumentSnapshot]:
        rows = self.db.query(Document).order_by(Document.imported_at.desc()).limit(limit).all()
        return [_snapshot(d) for d in rows]

    def filter_new_urls(self, urls: Sequence[str]) -> list[str]:
        """Return the urls not already present in the vault, in input order."""
        if not urls:
            return []
        existing = {
            row.url
            for row in self.db.query(Document.url).filter(Document.url.in_(list(set(urls)))).all()
        }
        return [u for u in urls if u not in existing]

    def find_related(
        self, document_id: UUID, tags: Sequence[str], limit: int = 5
    ) -> list[UUID]:
        """Other documents ranked by number of shared tags."""
        if not tags:
            return []
        overlap = func.count(DocumentTag.tag)
        rows = (
            self.db.query(DocumentTag.document_id, overlap)
            .filter(DocumentTag.tag.in_(list(tags)), DocumentTag.document_id != document_id)
            .group_by(DocumentTag.document_id)
            .order_by(overlap.desc())
            .limit(limit)
            .all()
        )
        return [doc_id for doc_id, _ in rows]

    def top_tags(self, limit: int = 5) -> list[str]:
        count = func.count(DocumentTag.document_id)
        rows = (
            self.db.query(DocumentTag.tag, count)
            .group_by(DocumentTag.tag)
            .order_by(count.desc(), DocumentTag.tag.asc())
            .limit(limit)
            .all()
        )
        return [tag for tag, _ in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_tags(self, document_id: UUID, tags: Sequence[str]) -> list[str]:
        """Replace a document's tags with the normalised form of `tags`."""
        final = finalize_tags(tags)
        try:
            self.db.query(DocumentTag).filter(DocumentTag.document_id == document_id).delete(
                synchronize_session="fetch"
            )
            for position, tag in enumerate(final):
                self.db.add(DocumentTag(document_id=document_id, tag=tag, position=position))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return final

    def set_category(self, document_id: UUID, category: str | None) -> None:
        doc = self.db.get(Document, document_id)
        if doc is None:
            return
        doc.category = category
        self.db.commit()

    def import_document(
        self,
        *,
        url: str | None,
        title: str,
        content: str,
        tags: Sequence[str] = (),
        source: str = "web",
    ) -> DocumentSnapshot | None:
        """
        Add a document to the vault.

        Returns None (and writes nothing) when a document with the same url or
        identical content already exists.
        """
        digest = content_hash(content) if content else None
        if url and self.db.query(Document.id).filter(Document.url == url).first():
            return None
        if digest and self.db.query(Document.id).filter(Document.content_hash == digest).first():
            return None

        doc = Document(
            source=source,
            url=url,
            title=title[:500] or (url or "Untitled"),
            content=content,
            content_hash=digest,
            imported_at=utcnow(),
        )
        try:
            self.db.add(doc)
            self.db.flush()
            for position, tag in enumerate(finalize_tags(tags)):
                self.db.add(DocumentTag(document_id=doc.id, tag=tag, position=position))
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent import of the same url/content
            self.db.rollback()
            logger.info("Document already imported", extra={"step": "import_document"})
            return None
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(doc)
        logger.info(
            "Document imported",
            extra={"document_id": str(doc.id), "step": "import_document"},
        )
        return _snapshot(doc)

