from sqlalchemy import Column, String, JSON, DateTime, CheckConstraint, Uuid
import uuid
import enum

from ..core.db import Base, utcnow


class RunStatus(str, enum.Enum):
    RUNNING = "running"
    OK = "ok"
    ERROR = "error"
    PARTIAL = "partial"


TERMINAL_RUN_STATUSES = (RunStatus.OK, RunStatus.ERROR, RunStatus.PARTIAL)


class RunKind(str, enum.Enum):
    DISTILL = "distill"
    CURATE = "curate"
    WEB_SCOUT = "web-scout"
    RESEARCH = "research"
    TOPIC_REPORT = "topic-report"


class Run(Base):
    __tablename__ = "runs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'ok', 'error', 'partial')", name="ck_runs_status"
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    kind = Column(String(32), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=RunStatus.RUNNING.value)
    started_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    ended_at = Column(DateTime, nullable=True)  # null iff status == running
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
