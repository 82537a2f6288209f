from fastapi import APIRouter, Body, Depends, Query
from typing import List, Optional
import structlog

from denasetu.api.deps import get_store, get_session_context, http_error, require_owner
from denasetu.core.exceptions import DenaSetuError
from denasetu.models import DonationStatus
from denasetu.schemas.donation import (
    CreateDonationRequest,
    DonationResponse,
    DonationListResponse,
    DonationEventResponse,
    StatusChangeRequest,
)
from denasetu.schemas.session import SessionContext, Role
from denasetu.services.donation import DonationService
from denasetu.store.data_store import DataStore

router = APIRouter(prefix="/api", tags=["donations"])
logger = structlog.get_logger(__name__)


@router.post("/donations", response_model=DonationResponse, status_code=201)
async def create_donation(
    donation_data: CreateDonationRequest,
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    """Donor offers items or money to an NGO; starts as Pending"""
    try:
        return DonationService.create_donation(store, session, donation_data)
    except DenaSetuError as e:
        raise http_error(e)


@router.get("/donations/{donation_id}", response_model=DonationResponse)
async def get_donation(donation_id: str, store: DataStore = Depends(get_store)):
    try:
        return DonationService.get_donation(store, donation_id)
    except DenaSetuError as e:
        raise http_error(e)


@router.get("/donations/{donation_id}/events", response_model=List[DonationEventResponse])
async def get_donation_timeline(donation_id: str, store: DataStore = Depends(get_store)):
    """Status timeline, oldest first"""
    try:
        return DonationService.get_timeline(store, donation_id)
    except DenaSetuError as e:
        raise http_error(e)


async def _change_status(store, session, donation_id, target, request):
    expected_version = request.expected_version if request else None
    try:
        return DonationService.transition(store, session, donation_id, target, expected_version)
    except DenaSetuError as e:
        raise http_error(e)


@router.post("/donations/{donation_id}/accept", response_model=DonationResponse)
async def accept_donation(
    donation_id: str,
    request: Optional[StatusChangeRequest] = Body(None),
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    return await _change_status(store, session, donation_id, DonationStatus.ACCEPTED, request)


@router.post("/donations/{donation_id}/reject", response_model=DonationResponse)
async def reject_donation(
    donation_id: str,
    request: Optional[StatusChangeRequest] = Body(None),
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    return await _change_status(store, session, donation_id, DonationStatus.CANCELLED, request)


@router.post("/donations/{donation_id}/complete", response_model=DonationResponse)
async def complete_donation(
    donation_id: str,
    request: Optional[StatusChangeRequest] = Body(None),
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    return await _change_status(store, session, donation_id, DonationStatus.COMPLETED, request)


@router.get("/ngos/{ngo_id}/donations/pending", response_model=DonationListResponse)
async def list_pending_donations(
    ngo_id: str,
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    """Donations waiting for the NGO's decision, newest first"""
    require_owner(session, Role.NGO, ngo_id)
    try:
        donations = DonationService.list_pending(store, ngo_id)
    except DenaSetuError as e:
        raise http_error(e)
    return DonationListResponse(donations=donations, total=len(donations))


@router.get("/ngos/{ngo_id}/donations", response_model=DonationListResponse)
async def list_ngo_donations(
    ngo_id: str,
    status: Optional[DonationStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    require_owner(session, Role.NGO, ngo_id)
    try:
        donations = DonationService.list_for_ngo(store, ngo_id, status, skip=skip, limit=limit)
    except DenaSetuError as e:
        raise http_error(e)
    return DonationListResponse(donations=donations, total=len(donations))


@router.get("/donors/{donor_id}/donations", response_model=DonationListResponse)
async def list_donor_donations(
    donor_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    require_owner(session, Role.DONOR, donor_id)
    try:
        donations = DonationService.list_for_donor(store, donor_id, skip=skip, limit=limit)
    except DenaSetuError as e:
        raise http_error(e)
    return DonationListResponse(donations=donations, total=len(donations))
