from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

from denasetu.schemas.donation import DonorSummary


class CreateCampaignRequest(BaseModel):
    """Request schema for creating a campaign"""
    title: str = Field(..., min_length=1, max_length=255, description="Campaign title is required")
    description: Optional[str] = Field(None, description="Campaign description")
    goal_amount: Decimal = Field(..., gt=0, decimal_places=2, description="Fundraising goal in rupees")
    image_url: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Winter blankets drive",
                "description": "Blankets for 500 families",
                "goal_amount": 250000
            }
        }
    )


class CampaignResponse(BaseModel):
    """Response schema for campaign data"""
    id: str
    ngo_id: str
    title: str
    description: Optional[str] = None
    goal_amount: Decimal
    raised_amount: Decimal
    status: str
    image_url: Optional[str] = None
    ngo_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CampaignListResponse(BaseModel):
    campaigns: List[CampaignResponse]
    total: int


class CampaignDonationResponse(BaseModel):
    """One confirmed campaign payment with donor display fields"""
    id: str
    campaign_id: str
    donor_id: Optional[str] = None
    amount: Decimal
    payment_id: str
    order_id: str
    status: str
    created_at: datetime
    donor: Optional[DonorSummary] = None

    model_config = ConfigDict(from_attributes=True)


class CampaignDonationListResponse(BaseModel):
    campaign_id: str
    donations: List[CampaignDonationResponse]
    total: int


class MoneyReceivedEntry(BaseModel):
    source: str
    record_id: str
    campaign_id: Optional[str] = None
    donor_id: Optional[str] = None
    amount: Decimal
    payment_id: Optional[str] = None
    created_at: datetime


class MoneyReceivedResponse(BaseModel):
    ngo_id: str
    entries: List[MoneyReceivedEntry]
    total_amount: Decimal
