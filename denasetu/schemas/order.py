from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from decimal import Decimal
from datetime import datetime


class CreateOrderRequest(BaseModel):
    """Checkout request: amount in major currency units"""
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount in rupees")
    campaign_id: Optional[str] = Field(None, min_length=1, description="Campaign being donated to")
    ngo_id: Optional[str] = Field(None, min_length=1, description="NGO receiving a direct donation")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "amount": 500,
                "campaign_id": "c1"
            }
        }
    )


class PaymentConfirmation(BaseModel):
    """Fields returned by the checkout widget after a successful payment"""
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class ConfirmedPaymentResponse(BaseModel):
    """Record written for a confirmed payment"""
    relation: str
    record_id: str
    order_id: str
    payment_id: str
    amount: Decimal
    campaign_id: Optional[str] = None
    ngo_id: Optional[str] = None
    donor_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "relation": "campaign_donations",
                "record_id": "7c1d0f0e-5a43-4a77-9b43-4c5f6f0f8a21",
                "order_id": "order_9A33XWu170gUtm",
                "payment_id": "pay_29QQoUBi66xm2f",
                "amount": "500.00",
                "campaign_id": "c1",
                "donor_id": "d-42",
                "created_at": "2025-11-21T14:30:00Z"
            }
        }
    )
