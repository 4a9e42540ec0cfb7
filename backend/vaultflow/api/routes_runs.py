from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import SessionLocal, get_db
from ..schemas.flows import (
    CurateRequest,
    CurateResult,
    DistillCurateRequest,
    DistillCurateResult,
    DistillRequest,
    DistillResult,
    ResearchRequest,
    ResearchResult,
    TopicReportRequest,
    TopicReportResult,
)
from ..schemas.trace import RunOut, RunTrace
from ..services.connectors import get_search_connector
from ..services.errors import DocumentNotFound, LLMError, SearchError, VaultflowError
from ..services.flows import (
    run_curate_flow,
    run_distill_curate_flow,
    run_distill_flow,
    run_research_flow,
    run_topic_report_flow,
)
from ..services.llm import OpenAIStructuredLLM
from ..services.run_trace import get_run_trace, list_runs

router = APIRouter(tags=["runs"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


# Collaborator providers; tests override these through app.dependency_overrides

def get_llm():
    return OpenAIStructuredLLM()


def get_search():
    return get_search_connector()


def get_session_factory():
    return SessionLocal


def flow_http_error(e: VaultflowError) -> HTTPException:
    if isinstance(e, DocumentNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (LLMError, SearchError)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=409, detail=str(e))


@router.post("/runs/distill", response_model=DistillResult)
def distill(
    payload: DistillRequest,
    llm=Depends(get_llm),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_api_key),
):
    try:
        return run_distill_flow(payload, llm=llm, session_factory=session_factory)
    except VaultflowError as e:
        raise flow_http_error(e) from e


@router.post("/runs/curate", response_model=CurateResult)
def curate(
    payload: CurateRequest,
    llm=Depends(get_llm),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_api_key),
):
    try:
        return run_curate_flow(payload, llm=llm, session_factory=session_factory)
    except VaultflowError as e:
        raise flow_http_error(e) from e


@router.post("/runs/research", response_model=ResearchResult)
def research(
    payload: ResearchRequest | None = None,
    llm=Depends(get_llm),
    search=Depends(get_search),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_api_key),
):
    try:
        return run_research_flow(payload, llm=llm, search=search, session_factory=session_factory)
    except VaultflowError as e:
        raise flow_http_error(e) from e


@router.post("/runs/distill-curate", response_model=DistillCurateResult)
def distill_curate(
    payload: DistillCurateRequest,
    llm=Depends(get_llm),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_api_key),
):
    try:
        return run_distill_curate_flow(payload, llm=llm, session_factory=session_factory)
    except VaultflowError as e:
        raise flow_http_error(e) from e


@router.post("/runs/topic-report", response_model=TopicReportResult)
def topic_report(
    payload: TopicReportRequest | None = None,
    llm=Depends(get_llm),
    search=Depends(get_search),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_api_key),
):
    try:
        return run_topic_report_flow(payload, llm=llm, search=search, session_factory=session_factory)
    except VaultflowError as e:
        raise flow_http_error(e) from e


@router.get("/runs", response_model=list[RunOut])
def get_runs(
    kind: str | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return list_runs(db, kind=kind, limit=limit)


@router.get("/runs/{run_id}", response_model=RunTrace)
def get_run(
    run_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    trace = get_run_trace(db, run_id)
    if trace is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return trace
