from fastapi import APIRouter, Depends
import structlog

from denasetu.api.deps import get_store, get_session_context, http_error
from denasetu.core.exceptions import DenaSetuError
from denasetu.schemas.session import OpenSessionRequest, SessionContext
from denasetu.services.session import SessionManager, get_session_manager
from denasetu.store.data_store import DataStore

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = structlog.get_logger(__name__)


@router.post("", response_model=SessionContext, status_code=201)
async def open_session(
    request: OpenSessionRequest,
    store: DataStore = Depends(get_store),
    manager: SessionManager = Depends(get_session_manager),
):
    """Initialise the session context after login; returns the token to send as X-Session-Token"""
    try:
        return manager.open_session(store, request.user_id, request.role)
    except DenaSetuError as e:
        raise http_error(e)


@router.get("/me", response_model=SessionContext)
async def current_session(session: SessionContext = Depends(get_session_context)):
    return session


@router.delete("", status_code=204)
async def close_session(
    session: SessionContext = Depends(get_session_context),
    manager: SessionManager = Depends(get_session_manager),
):
    try:
        manager.close_session(session.token)
    except DenaSetuError as e:
        raise http_error(e)
