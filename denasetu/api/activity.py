from fastapi import APIRouter, Depends, Query
from typing import List
import structlog

from denasetu.api.deps import get_store, get_session_context, http_error
from denasetu.core.exceptions import DenaSetuError
from denasetu.schemas.activity import (
    LocationSample,
    LocationResponse,
    LocationTrackResponse,
    NotificationResponse,
)
from denasetu.schemas.session import SessionContext
from denasetu.services.location import LocationService
from denasetu.services.notification import NotificationService
from denasetu.store.data_store import DataStore

router = APIRouter(prefix="/api", tags=["activity"])
logger = structlog.get_logger(__name__)


@router.post("/locations", response_model=LocationResponse, status_code=201)
async def record_location(
    sample: LocationSample,
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    """Volunteer device position for an assignment"""
    try:
        return LocationService.record_location(store, session, sample)
    except DenaSetuError as e:
        raise http_error(e)


@router.get("/assignments/{assignment_id}/locations", response_model=LocationTrackResponse)
async def track_assignment(
    assignment_id: str,
    limit: int = Query(100, ge=1, le=1000),
    store: DataStore = Depends(get_store),
):
    try:
        return LocationService.track(store, assignment_id, limit=limit)
    except DenaSetuError as e:
        raise http_error(e)


@router.get("/notifications", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    try:
        return NotificationService.list_for_user(store, session.user_id, unread_only=unread_only)
    except DenaSetuError as e:
        raise http_error(e)


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    try:
        return NotificationService.mark_read(store, session, notification_id)
    except DenaSetuError as e:
        raise http_error(e)
