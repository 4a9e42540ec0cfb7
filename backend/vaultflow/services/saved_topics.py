# backend/vaultflow/services/saved_topics.py
from __future__ import annotations

from typing import Sequence
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..models.saved_topic import SavedTopic
from ..schemas.topics import SavedTopicCreate

logger = logging.getLogger(__name__)


def create_saved_topic(db: Session, data: SavedTopicCreate) -> SavedTopic:
    topic = SavedTopic(**data.model_dump())
    try:
        db.add(topic)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(topic)
    logger.info("Saved topic created", extra={"topic_id": str(topic.id)})
    return topic


def list_saved_topics(db: Session, *, active_only: bool = False) -> list[SavedTopic]:
    q = db.query(SavedTopic)
    if active_only:
        q = q.filter(SavedTopic.is_active.is_(True))
    return q.order_by(SavedTopic.updated_at.desc(), SavedTopic.created_at.desc()).all()


def get_saved_topics_by_ids(db: Session, topic_ids: Sequence[UUID]) -> list[SavedTopic]:
    if not topic_ids:
        return []
    return (
        db.query(SavedTopic)
        .filter(SavedTopic.id.in_(list(topic_ids)))
        .order_by(SavedTopic.updated_at.desc(), SavedTopic.created_at.desc())
        .all()
    )


def select_topics(
    db: Session,
    topic_ids: Sequence[UUID] | None = None,
    *,
    include_inactive: bool = False,
) -> list[SavedTopic]:
    """Explicit ids win over "all topics"; inactive topics only on request."""
    if topic_ids:
        selected = get_saved_topics_by_ids(db, topic_ids)
        return selected if include_inactive else [t for t in selected if t.is_active]
    return list_saved_topics(db, active_only=not include_inactive)
