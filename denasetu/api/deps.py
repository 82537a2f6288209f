"""
Shared FastAPI dependencies
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from denasetu.core.exceptions import DenaSetuError
from denasetu.database.database import get_db, SessionLocal
from denasetu.schemas.session import SessionContext, Role
from denasetu.services.session import SessionManager, get_session_manager
from denasetu.store.changes import ChangeBus, get_change_bus
from denasetu.store.data_store import DataStore


def get_store(db: Session = Depends(get_db), bus: ChangeBus = Depends(get_change_bus)) -> DataStore:
    """Dependency to get a data store bound to the request's database session"""
    return DataStore(db, bus)


def get_session_factory():
    """Session factory for long-lived consumers such as the live feed"""
    return SessionLocal


def http_error(error: DenaSetuError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


def get_optional_session(
    x_session_token: Optional[str] = Header(None),
    manager: SessionManager = Depends(get_session_manager),
) -> Optional[SessionContext]:
    """Session context if a token was sent; a bad token is still an error"""
    if not x_session_token:
        return None
    try:
        return manager.resolve(x_session_token)
    except DenaSetuError as e:
        raise http_error(e)


def get_session_context(
    session: Optional[SessionContext] = Depends(get_optional_session),
) -> SessionContext:
    """Session context for identity-scoped endpoints"""
    if session is None:
        raise HTTPException(status_code=401, detail="Missing session token")
    return session


def require_owner(session: SessionContext, role: Role, user_id: str):
    """The caller must be ``user_id`` acting as ``role``"""
    if not session.is_role(role) or session.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not allowed to view another account's data")
