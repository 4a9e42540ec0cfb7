# backend/vaultflow/services/reports.py
"""
Research reports are artifacts (agent "research", kind "research-report")
that skip the review inbox: a new report is inserted directly as approved
and supersedes the previously approved report for the same day, all in one
transaction.
"""
from __future__ import annotations

from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..core.db import utcnow
from ..models.artifact import Artifact, ArtifactStatus
from ..schemas.artifacts import ReportContent
from .artifacts import demote_approved, lock_artifact_key, today_key

logger = logging.getLogger(__name__)

REPORT_AGENT = "research"
REPORT_KIND = "research-report"


def insert_report(
    db: Session,
    content: ReportContent,
    *,
    run_id: UUID | None = None,
    day: str | None = None,
    source_refs: dict | None = None,
) -> UUID:
    day = day or today_key()
    try:
        lock_artifact_key(db, REPORT_AGENT, REPORT_KIND, day)
        now = utcnow()
        superseded = demote_approved(db, REPORT_AGENT, REPORT_KIND, day, now)
        db.flush()

        report = Artifact(
            run_id=run_id,
            agent=REPORT_AGENT,
            kind=REPORT_KIND,
            day=day,
            title=content.title,
            content=content.model_dump(),
            source_refs=source_refs,
            status=ArtifactStatus.APPROVED.value,
            created_at=now,
            reviewed_at=now,
        )
        db.add(report)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Research report stored (%d superseded)",
        superseded,
        extra={"artifact_id": str(report.id), "run_id": str(run_id) if run_id else None},
    )
    return report.id


def list_reports(db: Session, *, limit: int = 30) -> list[Artifact]:
    """Currently approved reports, newest day first."""
    return (
        db.query(Artifact)
        .filter(
            Artifact.agent == REPORT_AGENT,
            Artifact.kind == REPORT_KIND,
            Artifact.status == ArtifactStatus.APPROVED.value,
        )
        .order_by(Artifact.day.desc(), Artifact.created_at.desc())
        .limit(limit)
        .all()
    )


def get_report(db: Session, report_id: UUID) -> Artifact | None:
    return (
        db.query(Artifact)
        .filter(
            Artifact.id == report_id,
            Artifact.agent == REPORT_AGENT,
            Artifact.kind == REPORT_KIND,
        )
        .first()
    )


def mark_report_read(db: Session, report_id: UUID) -> bool:
    rows = (
        db.query(Artifact)
        .filter(
            Artifact.id == report_id,
            Artifact.agent == REPORT_AGENT,
            Artifact.kind == REPORT_KIND,
            Artifact.read_at.is_(None),
        )
        .update({Artifact.read_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return rows == 1
