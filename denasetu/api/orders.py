from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from denasetu.api.deps import get_store, get_optional_session
from denasetu.core.exceptions import DenaSetuError
from denasetu.schemas.order import CreateOrderRequest
from denasetu.schemas.session import SessionContext
from denasetu.services.order import OrderService
from denasetu.services.payment_gateway import RazorpayClient, get_payment_gateway
from denasetu.store.data_store import DataStore

router = APIRouter(prefix="/api", tags=["orders"])
logger = structlog.get_logger(__name__)


@router.post("/create-order")
async def create_order(
    order_data: CreateOrderRequest,
    idempotency_key: Optional[str] = Header(None),
    store: DataStore = Depends(get_store),
    gateway: RazorpayClient = Depends(get_payment_gateway),
    session: Optional[SessionContext] = Depends(get_optional_session),
):
    """
    Create a payable gateway order for a checkout attempt.

    Send the same ``Idempotency-Key`` header when retrying a checkout to get
    the original order back instead of a second one.
    """
    try:
        return await OrderService.create_order(
            store,
            gateway,
            order_data,
            session=session,
            idempotency_key=idempotency_key,
        )
    except DenaSetuError as e:
        if e.status_code >= 500:
            logger.error("Order creation failed", error=e.message, campaign_id=order_data.campaign_id)
            return JSONResponse(status_code=500, content={"error": e.message})
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.api_route("/create-order", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def create_order_method_not_allowed():
    return JSONResponse(
        status_code=405,
        content={"error": "Method not allowed"},
        headers={"Allow": "POST"},
    )
