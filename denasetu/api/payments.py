from fastapi import APIRouter, Depends, Header, HTTPException, Request
from typing import Optional
import structlog

from denasetu.api.deps import get_store, http_error
from denasetu.core.exceptions import DenaSetuError
from denasetu.schemas.order import PaymentConfirmation, ConfirmedPaymentResponse
from denasetu.services.order import OrderService
from denasetu.services.payment_gateway import RazorpayClient, get_payment_gateway
from denasetu.store.data_store import DataStore

router = APIRouter(prefix="/api/payments", tags=["payments"])
logger = structlog.get_logger(__name__)


@router.post("/confirm", response_model=ConfirmedPaymentResponse, status_code=201)
async def confirm_payment(
    confirmation: PaymentConfirmation,
    store: DataStore = Depends(get_store),
    gateway: RazorpayClient = Depends(get_payment_gateway),
):
    """Record a payment reported by the checkout widget after verifying its signature"""
    try:
        return OrderService.confirm_payment(
            store,
            gateway,
            confirmation.razorpay_order_id,
            confirmation.razorpay_payment_id,
            confirmation.razorpay_signature,
        )
    except DenaSetuError as e:
        raise http_error(e)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    store: DataStore = Depends(get_store),
    gateway: RazorpayClient = Depends(get_payment_gateway),
):
    """Gateway-pushed payment events"""
    body = await request.body()
    if not x_razorpay_signature:
        raise HTTPException(status_code=400, detail="Missing webhook signature")
    try:
        return OrderService.handle_webhook(store, gateway, body, x_razorpay_signature)
    except DenaSetuError as e:
        raise http_error(e)
