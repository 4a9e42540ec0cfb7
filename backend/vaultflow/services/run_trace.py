# backend/vaultflow/services/run_trace.py
"""
Run/step trace store: the append-only record of what each pipeline run did.

A run is created as "running" and transitions exactly once to a terminal
status. Steps are inserted, never updated; they are read back ordered by
started_at with the insertion id as tiebreaker.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..core.db import utcnow
from ..models.run import Run, RunStatus, TERMINAL_RUN_STATUSES
from ..models.run_step import RunStep
from ..schemas.trace import RunOut, RunStepOut, RunTrace, StepRecord
from .errors import RunNotFound
from .sanitize import sanitize

logger = logging.getLogger(__name__)


def create_run(db: Session, kind: str, metadata: dict[str, Any] | None = None) -> UUID:
    run = Run(
        kind=getattr(kind, "value", kind),
        status=RunStatus.RUNNING.value,
        started_at=utcnow(),
        meta=sanitize(metadata or {}) or {},
    )
    db.add(run)
    db.commit()
    logger.info("Run created", extra={"run_id": str(run.id), "flow": run.kind, "step": "create_run"})
    return run.id


def append_step(db: Session, run_id: UUID, step: StepRecord | dict[str, Any]) -> int:
    """
    Insert one step row for an existing run.

    Payload fields (input/output/error) are sanitized first. The parent run
    is not modified.

    Raises:
        RunNotFound: no run with this id exists.
    """
    if not isinstance(step, StepRecord):
        step = StepRecord.model_validate(step)

    if db.get(Run, run_id) is None:
        raise RunNotFound(run_id)

    row = RunStep(
        run_id=run_id,
        step_type=step.step_type,
        step_name=step.step_name,
        tool_name=step.tool_name,
        status=step.status,
        started_at=step.started_at or utcnow(),
        ended_at=step.ended_at,
        input=sanitize(step.input),
        output=sanitize(step.output),
        error=sanitize(step.error),
        token_estimate=step.token_estimate,
        retry_count=step.retry_count,
    )
    db.add(row)
    db.commit()
    return row.id


def finish_run(db: Session, run_id: UUID, status: RunStatus | str) -> bool:
    """
    Move a running run to a terminal status and stamp ended_at.

    Returns False (and changes nothing) when the run has already finished.

    Raises:
        RunNotFound: no run with this id exists.
        ValueError: status is not terminal.
    """
    status = RunStatus(status)
    if status not in TERMINAL_RUN_STATUSES:
        raise ValueError(f"finish_run requires a terminal status, got {status.value!r}")

    run = db.query(Run).filter(Run.id == run_id).with_for_update().first()
    if run is None:
        db.rollback()
        raise RunNotFound(run_id)

    if run.status != RunStatus.RUNNING.value:
        db.rollback()
        logger.warning(
            "Run already finished; ignoring second transition",
            extra={"run_id": str(run_id), "step": "finish_run"},
        )
        return False

    run.status = status.value
    run.ended_at = utcnow()
    db.commit()
    logger.info(
        "Run finished with status %s",
        status.value,
        extra={"run_id": str(run_id), "flow": run.kind, "step": "finish_run"},
    )
    return True


def get_run_trace(db: Session, run_id: UUID) -> RunTrace | None:
    run = db.get(Run, run_id)
    if run is None:
        return None

    steps = (
        db.query(RunStep)
        .filter(RunStep.run_id == run_id)
        .order_by(RunStep.started_at.asc(), RunStep.id.asc())
        .all()
    )
    return RunTrace(
        run=RunOut.model_validate(run),
        steps=[RunStepOut.model_validate(s) for s in steps],
    )


def list_runs(db: Session, *, kind: str | None = None, limit: int = 50) -> list[RunOut]:
    q = db.query(Run)
    if kind:
        q = q.filter(Run.kind == kind)
    rows = q.order_by(Run.started_at.desc()).limit(max(1, min(limit, 200))).all()
    return [RunOut.model_validate(r) for r in rows]


def sweep_stale_runs(db: Session, older_than_minutes: int) -> int:
    """
    Finish runs that have been "running" for too long as "error".

    Background runs whose worker died never reach finish_run; this keeps
    the running-iff-no-ended_at rule true for pollers.
    """
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    stale_ids = [
        r.id
        for r in db.query(Run.id)
        .filter(Run.status == RunStatus.RUNNING.value, Run.started_at < cutoff)
        .all()
    ]
    db.rollback()

    swept = 0
    for run_id in stale_ids:
        if finish_run(db, run_id, RunStatus.ERROR):
            swept += 1

    if swept:
        logger.info("Swept %d stale runs", swept, extra={"step": "sweep_stale_runs"})
    return swept
