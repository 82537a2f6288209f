from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

from denasetu.models.donation import DonationStatus, MONEY_CATEGORY


class CreateDonationRequest(BaseModel):
    """Donor pledge of items or money to an NGO"""
    ngo_id: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=80, description="e.g. Food, Clothes, Books, Money")
    description: Optional[str] = Field(None, max_length=2000)
    quantity: Optional[int] = Field(None, gt=0)
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    image_url: Optional[str] = None
    campaign_id: Optional[str] = None

    @field_validator("category")
    @classmethod
    def normalise_category(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("category must not be blank")
        if value.lower() == MONEY_CATEGORY.lower():
            return MONEY_CATEGORY
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ngo_id": "n-7",
                "category": "Clothes",
                "description": "Two bags of winter clothes",
                "quantity": 2
            }
        }
    )


class StatusChangeRequest(BaseModel):
    """Optional compare-and-set guard for a status change"""
    expected_version: Optional[int] = Field(None, ge=1)


class DonorSummary(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DonationResponse(BaseModel):
    id: str
    donor_id: str
    ngo_id: str
    campaign_id: Optional[str] = None
    category: str
    description: Optional[str] = None
    quantity: Optional[int] = None
    amount: Optional[Decimal] = None
    image_url: Optional[str] = None
    status: DonationStatus
    version: int
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    donor: Optional[DonorSummary] = None

    model_config = ConfigDict(from_attributes=True)


class DonationListResponse(BaseModel):
    donations: List[DonationResponse]
    total: int


class DonationEventResponse(BaseModel):
    id: str
    donation_id: str
    event: str
    note: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
