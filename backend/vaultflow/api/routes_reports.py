from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..schemas.artifacts import ArtifactOut
from ..services.reports import get_report, list_reports, mark_report_read
from .routes_runs import verify_api_key

router = APIRouter(tags=["reports"])


@router.get("/reports", response_model=list[ArtifactOut])
def reports(
    limit: int = 30,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return list_reports(db, limit=max(1, min(limit, 100)))


@router.get("/reports/{report_id}", response_model=ArtifactOut)
def report(
    report_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    found = get_report(db, report_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return found


@router.post("/reports/{report_id}/read")
def read_report(
    report_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if not mark_report_read(db, report_id):
        raise HTTPException(status_code=404, detail="Report not found or already read")
    return {"ok": True}
