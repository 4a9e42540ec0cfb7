from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..schemas.artifacts import DAY_PATTERN, ArtifactCounts, ArtifactOut, ArtifactStatusLiteral
from ..services.artifacts import (
    approve_artifact,
    count_by_status,
    get_artifact,
    list_active,
    list_by_agent_kind,
    list_by_day,
    list_inbox,
    mark_read,
    reject_artifact,
    today_key,
)
from .routes_runs import verify_api_key

router = APIRouter(tags=["artifacts"])


@router.get("/artifacts/inbox", response_model=list[ArtifactOut])
def inbox(
    day: str | None = Query(default=None, pattern=DAY_PATTERN),
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return list_inbox(db, day)


@router.get("/artifacts/active", response_model=list[ArtifactOut])
def active(
    day: str | None = Query(default=None, pattern=DAY_PATTERN),
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return list_active(db, day)


@router.get("/artifacts/counts", response_model=ArtifactCounts)
def counts(
    day: str | None = Query(default=None, pattern=DAY_PATTERN),
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return count_by_status(db, day or today_key())


@router.get("/artifacts", response_model=list[ArtifactOut])
def list_artifacts(
    agent: str | None = None,
    kind: str | None = None,
    day: str | None = Query(default=None, pattern=DAY_PATTERN),
    status: ArtifactStatusLiteral | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    """
    With agent and kind: history for that producer, optionally narrowed by
    day/status. Otherwise: everything for one day (default today).
    """
    safe_limit = max(1, min(limit, 500))
    if agent and kind:
        return list_by_agent_kind(db, agent, kind, day=day, status=status, limit=safe_limit)
    return list_by_day(db, day or today_key(), status)[:safe_limit]


@router.post("/artifacts/{artifact_id}/approve", response_model=ArtifactOut)
def approve(
    artifact_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if get_artifact(db, artifact_id) is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    if not approve_artifact(db, artifact_id):
        raise HTTPException(status_code=409, detail="Artifact is not awaiting review")
    return get_artifact(db, artifact_id)


@router.post("/artifacts/{artifact_id}/reject", response_model=ArtifactOut)
def reject(
    artifact_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if get_artifact(db, artifact_id) is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    if not reject_artifact(db, artifact_id):
        raise HTTPException(status_code=409, detail="Artifact is not awaiting review")
    return get_artifact(db, artifact_id)


@router.post("/artifacts/{artifact_id}/read")
def read(
    artifact_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if get_artifact(db, artifact_id) is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    if not mark_read(db, artifact_id):
        raise HTTPException(status_code=409, detail="Artifact already read")
    return {"ok": True}
