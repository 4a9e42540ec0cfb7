from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..schemas.topics import SavedTopicCreate, SavedTopicOut
from ..services.saved_topics import create_saved_topic, list_saved_topics
from .routes_runs import verify_api_key

router = APIRouter(tags=["topics"])


@router.get("/topics", response_model=list[SavedTopicOut])
def topics(
    active_only: bool = False,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return list_saved_topics(db, active_only=active_only)


@router.post("/topics", response_model=SavedTopicOut, status_code=201)
def create_topic(
    payload: SavedTopicCreate,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return create_saved_topic(db, payload)
