from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid

from ..core.db import Base, utcnow


class Document(Base):
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source = Column(String(32), nullable=False, default="upload")  # upload | web | note
    url = Column(Text, nullable=True, unique=True)
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False, default="")
    category = Column(String(64), nullable=True)
    content_hash = Column(String(64), nullable=True, unique=True)
    imported_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    tag_rows = relationship(
        "DocumentTag",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentTag.position",
        lazy="selectin",
    )

    @property
    def tags(self) -> list[str]:
        return [t.tag for t in self.tag_rows]


class DocumentTag(Base):
    __tablename__ = "document_tags"

    document_id = Column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    tag = Column(String(64), primary_key=True, index=True)
    position = Column(Integer, nullable=False, default=0)
