from fastapi import APIRouter, Depends

from ..schemas.flows import RunStarted, WebScoutRequest, WebScoutResult
from ..services.errors import VaultflowError
from ..services.flows import run_web_scout_flow, start_web_scout_flow
from .routes_runs import flow_http_error, get_llm, get_search, get_session_factory, verify_api_key

router = APIRouter(tags=["web-scout"])


@router.post("/web-scout", response_model=WebScoutResult)
def web_scout(
    payload: WebScoutRequest,
    llm=Depends(get_llm),
    search=Depends(get_search),
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_api_key),
):
    """Run the scout inline and return its proposals."""
    try:
        return run_web_scout_flow(payload, llm=llm, search=search, session_factory=session_factory)
    except VaultflowError as e:
        raise flow_http_error(e) from e


@router.post("/web-scout/start", response_model=RunStarted, status_code=202)
def start_web_scout(
    payload: WebScoutRequest,
    session_factory=Depends(get_session_factory),
    _: None = Depends(verify_api_key),
):
    """Queue the scout on a worker; poll GET /runs/{run_id} for progress."""
    return start_web_scout_flow(payload, session_factory=session_factory)
