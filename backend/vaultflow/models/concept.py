from sqlalchemy import Column, String, Text, JSON, DateTime, ForeignKey, CheckConstraint, Uuid
import uuid

from ..core.db import Base, utcnow

CONCEPT_TYPES = ("definition", "principle", "framework", "procedure", "fact")


class Concept(Base):
    __tablename__ = "concepts"
    __table_args__ = (
        CheckConstraint(
            "type IN ('definition', 'principle', 'framework', 'procedure', 'fact')",
            name="ck_concepts_type",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label = Column(String(100), nullable=False)
    type = Column(String(16), nullable=False)
    summary = Column(Text, nullable=False)
    evidence = Column(JSON, nullable=False, default=list)  # short quotes from the document
    created_at = Column(DateTime, nullable=False, default=utcnow)
