# backend/vaultflow/services/artifacts.py
"""
Artifact lifecycle: proposed -> approved | rejected, approved -> superseded.

At most one artifact per (agent, kind, day) may be approved at any time.
approve_artifact demotes the previous holder and promotes the target in one
transaction, serialized per key (advisory lock on PostgreSQL, row locks
elsewhere); a partial unique index on the table backs the rule at the
storage level.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable
from uuid import UUID
import logging

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from ..core.db import utcnow
from ..models.artifact import Artifact, ArtifactStatus
from ..schemas.artifacts import ArtifactCounts, ArtifactInput

logger = logging.getLogger(__name__)


def today_key(now: datetime | None = None) -> str:
    return (now or utcnow()).strftime("%Y-%m-%d")


def lock_artifact_key(db: Session, agent: str, kind: str, day: str) -> None:
    """
    Serialize writers of one (agent, kind, day) key for the rest of the
    current transaction.
    """
    if db.get_bind().dialect.name == "postgresql":
        db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"artifact:{agent}:{kind}:{day}"},
        )
        return

    # Other dialects: lock the currently approved rows for the key (a no-op on SQLite,
    # which serializes writers at the database level anyway).
    (
        db.query(Artifact.id)
        .filter(
            Artifact.agent == agent,
            Artifact.kind == kind,
            Artifact.day == day,
            Artifact.status == ArtifactStatus.APPROVED.value,
        )
        .order_by(Artifact.id)
        .with_for_update()
        .all()
    )


def demote_approved(
    db: Session, agent: str, kind: str, day: str, now: datetime, exclude_id: UUID | None = None
) -> int:
    q = db.query(Artifact).filter(
        Artifact.agent == agent,
        Artifact.kind == kind,
        Artifact.day == day,
        Artifact.status == ArtifactStatus.APPROVED.value,
    )
    if exclude_id is not None:
        q = q.filter(Artifact.id != exclude_id)
    return q.update(
        {Artifact.status: ArtifactStatus.SUPERSEDED.value, Artifact.reviewed_at: now},
        synchronize_session=False,
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def add_artifact(db: Session, data: ArtifactInput) -> Artifact:
    """Stage a proposed artifact in the caller's transaction (flush, no commit)."""
    artifact = Artifact(
        run_id=data.run_id,
        agent=data.agent,
        kind=data.kind,
        day=data.day,
        title=data.title,
        content=data.content,
        source_refs=data.source_refs,
        status=ArtifactStatus.PROPOSED.value,
        created_at=utcnow(),
    )
    db.add(artifact)
    db.flush()
    return artifact


def insert_artifact(db: Session, data: ArtifactInput) -> UUID:
    try:
        artifact = add_artifact(db, data)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return artifact.id


def approve_artifact(db: Session, artifact_id: UUID) -> bool:
    """
    Approve a proposed artifact, superseding whatever was approved for its key.

    Returns False without changing anything if the artifact does not exist or
    is not currently proposed.
    """
    target = db.get(Artifact, artifact_id)
    if target is None or target.status != ArtifactStatus.PROPOSED.value:
        db.rollback()
        return False

    agent, kind, day = target.agent, target.kind, target.day
    try:
        lock_artifact_key(db, agent, kind, day)

        # Re-read under the lock; a concurrent caller may have moved it
        target = (
            db.query(Artifact)
            .filter(Artifact.id == artifact_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if target is None or target.status != ArtifactStatus.PROPOSED.value:
            db.rollback()
            return False

        now = utcnow()
        superseded = demote_approved(db, agent, kind, day, now, exclude_id=artifact_id)
        db.flush()

        target.status = ArtifactStatus.APPROVED.value
        target.reviewed_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Artifact approved (%d superseded)",
        superseded,
        extra={"artifact_id": str(artifact_id), "step": "approve_artifact"},
    )
    return True


def reject_artifact(db: Session, artifact_id: UUID) -> bool:
    rows = (
        db.query(Artifact)
        .filter(Artifact.id == artifact_id, Artifact.status == ArtifactStatus.PROPOSED.value)
        .update(
            {Artifact.status: ArtifactStatus.REJECTED.value, Artifact.reviewed_at: utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    if rows:
        logger.info(
            "Artifact rejected",
            extra={"artifact_id": str(artifact_id), "step": "reject_artifact"},
        )
    return rows == 1


def mark_read(db: Session, artifact_id: UUID) -> bool:
    rows = (
        db.query(Artifact)
        .filter(Artifact.id == artifact_id, Artifact.read_at.is_(None))
        .update({Artifact.read_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return rows == 1


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_artifact(db: Session, artifact_id: UUID) -> Artifact | None:
    return db.get(Artifact, artifact_id)


def list_by_day(
    db: Session,
    day: str,
    status: ArtifactStatus | str | None = None,
    *,
    kinds: Iterable[str] | None = None,
) -> list[Artifact]:
    q = db.query(Artifact).filter(Artifact.day == day)
    if status is not None:
        q = q.filter(Artifact.status == ArtifactStatus(status).value)
    if kinds:
        q = q.filter(Artifact.kind.in_(list(kinds)))
    return q.order_by(Artifact.created_at.desc(), Artifact.id).all()


def list_inbox(db: Session, day: str | None = None) -> list[Artifact]:
    return list_by_day(db, day or today_key(), ArtifactStatus.PROPOSED)


def list_active(db: Session, day: str | None = None) -> list[Artifact]:
    return list_by_day(db, day or today_key(), ArtifactStatus.APPROVED)


def list_by_agent_kind(
    db: Session,
    agent: str,
    kind: str,
    *,
    day: str | None = None,
    status: ArtifactStatus | str | None = None,
    limit: int | None = None,
) -> list[Artifact]:
    q = db.query(Artifact).filter(Artifact.agent == agent, Artifact.kind == kind)
    if day is not None:
        q = q.filter(Artifact.day == day)
    if status is not None:
        q = q.filter(Artifact.status == ArtifactStatus(status).value)
    q = q.order_by(Artifact.day.desc(), Artifact.created_at.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def count_by_status(db: Session, day: str) -> ArtifactCounts:
    rows = (
        db.query(Artifact.status, func.count(Artifact.id))
        .filter(Artifact.day == day)
        .group_by(Artifact.status)
        .all()
    )
    return ArtifactCounts(**{status: count for status, count in rows})
