from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


class LocationSample(BaseModel):
    """Device position sample"""
    assignment_id: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0, description="Radius in metres")


class LocationResponse(BaseModel):
    id: str
    assignment_id: str
    volunteer_id: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LocationTrackResponse(BaseModel):
    assignment_id: str
    latest: Optional[LocationResponse] = None
    samples: List[LocationResponse]


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
