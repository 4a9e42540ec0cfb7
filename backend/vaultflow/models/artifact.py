"""
Artifact model: a reviewable, versioned unit of pipeline output.

Lifecycle:
1. proposed   - created by a pipeline, awaiting review
2. approved   - accepted; at most one per (agent, kind, day)
3. rejected   - terminal
4. superseded - was approved, demoted when another artifact for the same key was approved
"""
from sqlalchemy import Column, String, Text, JSON, DateTime, Index, CheckConstraint, Uuid, text
import uuid
import enum

from ..core.db import Base, utcnow


class ArtifactStatus(str, enum.Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


class Artifact(Base):
    __tablename__ = "artifacts"
    __table_args__ = (
        Index("ix_artifacts_agent_kind_day_status", "agent", "kind", "day", "status"),
        Index("ix_artifacts_day_status", "day", "status"),
        # Storage-level backstop for the one-approved-per-key rule
        Index(
            "uq_artifacts_approved_key",
            "agent",
            "kind",
            "day",
            unique=True,
            postgresql_where=text("status = 'approved'"),
            sqlite_where=text("status = 'approved'"),
        ),
        CheckConstraint(
            "status IN ('proposed', 'approved', 'rejected', 'superseded')",
            name="ck_artifacts_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Weak reference: artifacts may outlive (or predate) a tracked run
    run_id = Column(Uuid, nullable=True, index=True)

    agent = Column(String(64), nullable=False)
    kind = Column(String(64), nullable=False)
    day = Column(String(10), nullable=False)  # YYYY-MM-DD

    title = Column(Text, nullable=False)
    content = Column(JSON, nullable=False, default=dict)
    source_refs = Column(JSON, nullable=True)

    status = Column(String(16), nullable=False, default=ArtifactStatus.PROPOSED.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    reviewed_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
