from sqlalchemy import Column, String, Text, JSON, DateTime, ForeignKey, CheckConstraint, Uuid
import uuid

from ..core.db import Base, utcnow

FLASHCARD_FORMATS = ("qa", "cloze")


class Flashcard(Base):
    __tablename__ = "flashcards"
    __table_args__ = (
        CheckConstraint("format IN ('qa', 'cloze')", name="ck_flashcards_format"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    concept_id = Column(
        Uuid, ForeignKey("concepts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    format = Column(String(8), nullable=False)
    front = Column(Text, nullable=False)
    back = Column(Text, nullable=False)
    citations = Column(JSON, nullable=True)
    status = Column(String(16), nullable=False, default="proposed")
    created_at = Column(DateTime, nullable=False, default=utcnow)
