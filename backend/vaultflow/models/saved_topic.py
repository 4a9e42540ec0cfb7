from sqlalchemy import Column, Boolean, Float, Integer, String, Text, JSON, DateTime, Uuid
import uuid

from ..core.db import Base, utcnow


class SavedTopic(Base):
    """A standing research interest replayed by the topic report flow."""

    __tablename__ = "saved_topics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    goal = Column(Text, nullable=False)
    focus_tags = Column(JSON, nullable=False, default=list)

    # Per-topic defaults; a topic report request may override each of them
    max_docs_per_run = Column(Integer, nullable=False, default=5)
    min_quality_results = Column(Integer, nullable=False, default=3)
    min_relevance_score = Column(Float, nullable=False, default=0.8)
    max_iterations = Column(Integer, nullable=False, default=5)
    max_queries = Column(Integer, nullable=False, default=10)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
