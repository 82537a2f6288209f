import asyncio

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
import structlog

from denasetu.api.deps import get_store, get_session_context, get_session_factory, http_error, require_owner
from denasetu.core.exceptions import DenaSetuError
from denasetu.realtime.feed import CampaignDonationFeed
from denasetu.schemas.campaign import (
    CreateCampaignRequest,
    CampaignResponse,
    CampaignListResponse,
    CampaignDonationListResponse,
    MoneyReceivedResponse,
)
from denasetu.schemas.session import SessionContext, Role
from denasetu.services.campaign import CampaignService
from denasetu.store.changes import ChangeBus, get_change_bus
from denasetu.store.data_store import DataStore

router = APIRouter(prefix="/api", tags=["campaigns"])
logger = structlog.get_logger(__name__)

# Close code sent when the campaign does not exist
WS_CLOSE_NOT_FOUND = 4404


@router.post("/campaigns", response_model=CampaignResponse, status_code=201)
async def create_campaign(
    campaign_data: CreateCampaignRequest,
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    try:
        return CampaignService.create_campaign(store, session, campaign_data)
    except DenaSetuError as e:
        raise http_error(e)


@router.get("/campaigns", response_model=CampaignListResponse)
async def list_active_campaigns(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    store: DataStore = Depends(get_store),
):
    """Active campaigns, newest first"""
    try:
        campaigns = CampaignService.list_active(store, skip=skip, limit=limit)
    except DenaSetuError as e:
        raise http_error(e)
    return CampaignListResponse(campaigns=campaigns, total=len(campaigns))


@router.get("/campaigns/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(campaign_id: str, store: DataStore = Depends(get_store)):
    try:
        return CampaignService.get_campaign(store, campaign_id)
    except DenaSetuError as e:
        raise http_error(e)


@router.post("/campaigns/{campaign_id}/close", response_model=CampaignResponse)
async def close_campaign(
    campaign_id: str,
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    try:
        return CampaignService.close_campaign(store, session, campaign_id)
    except DenaSetuError as e:
        raise http_error(e)


@router.get("/campaigns/{campaign_id}/donations", response_model=CampaignDonationListResponse)
async def list_campaign_donations(campaign_id: str, store: DataStore = Depends(get_store)):
    """Current donor list; also the manual refresh for the live view"""
    try:
        CampaignService.get_campaign(store, campaign_id)
        donations = CampaignService.list_campaign_donations(store, campaign_id)
    except DenaSetuError as e:
        raise http_error(e)
    return CampaignDonationListResponse(campaign_id=campaign_id, donations=donations, total=len(donations))


@router.get("/ngos/{ngo_id}/campaigns", response_model=CampaignListResponse)
async def list_ngo_campaigns(ngo_id: str, store: DataStore = Depends(get_store)):
    try:
        campaigns = CampaignService.list_for_ngo(store, ngo_id)
    except DenaSetuError as e:
        raise http_error(e)
    return CampaignListResponse(campaigns=campaigns, total=len(campaigns))


@router.get("/ngos/{ngo_id}/money-received", response_model=MoneyReceivedResponse)
async def money_received(
    ngo_id: str,
    store: DataStore = Depends(get_store),
    session: SessionContext = Depends(get_session_context),
):
    require_owner(session, Role.NGO, ngo_id)
    try:
        return CampaignService.money_received(store, ngo_id)
    except DenaSetuError as e:
        raise http_error(e)


@router.websocket("/campaigns/{campaign_id}/donations/live")
async def campaign_donations_live(
    websocket: WebSocket,
    campaign_id: str,
    store: DataStore = Depends(get_store),
    bus: ChangeBus = Depends(get_change_bus),
    session_factory=Depends(get_session_factory),
):
    """
    Live donor list for a campaign.

    Sends a snapshot on connect and after every change. Sending the text
    ``refresh`` forces a re-query.
    """
    if store.get("ngo_campaigns", campaign_id) is None:
        await websocket.close(code=WS_CLOSE_NOT_FOUND)
        return
    # The feed opens its own sessions; release this one for the life of the socket
    store.db.close()

    await websocket.accept()

    async def push(snapshot):
        await websocket.send_json(jsonable_encoder(
            CampaignDonationListResponse(campaign_id=campaign_id, donations=snapshot, total=len(snapshot))
        ))

    feed = CampaignDonationFeed(campaign_id, push, session_factory=session_factory, bus=bus)
    task = asyncio.create_task(feed.run())
    logger.info("Live feed connected", campaign_id=campaign_id)

    try:
        while True:
            message = await websocket.receive_text()
            if message.strip().lower() == "refresh":
                await feed.refresh()
    except WebSocketDisconnect:
        logger.info("Live feed disconnected", campaign_id=campaign_id)
    finally:
        feed.stop()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # The socket is already gone; a feed that died first is only logged
            logger.warning("Live feed ended with error", campaign_id=campaign_id, error=str(e))
