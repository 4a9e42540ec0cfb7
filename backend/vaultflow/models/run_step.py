from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey, Index, CheckConstraint, Uuid
import enum

from ..core.db import Base, utcnow


class StepStatus(str, enum.Enum):
    RUNNING = "running"
    OK = "ok"
    ERROR = "error"
    SKIPPED = "skipped"


class RunStep(Base):
    """
    One append-only event inside a run. Rows are never updated or deleted
    directly; they go away only with their parent run (cascade).
    """

    __tablename__ = "run_steps"
    __table_args__ = (
        Index("ix_run_steps_run_id_started_at", "run_id", "started_at"),
        CheckConstraint(
            "status IN ('running', 'ok', 'error', 'skipped')", name="ck_run_steps_status"
        ),
    )

    # Autoincrement id doubles as the insertion-order tiebreaker
    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Uuid, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)

    step_type = Column(String(16), nullable=True)  # agent | tool | llm | flow
    step_name = Column(String(255), nullable=False)
    tool_name = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    ended_at = Column(DateTime, nullable=True)

    input = Column(JSON, nullable=True)
    output = Column(JSON, nullable=True)
    error = Column(JSON, nullable=True)

    token_estimate = Column(Integer, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
