from pydantic import BaseModel, Field
from typing import Any, Dict
from datetime import datetime
from enum import Enum


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """Row-change notification emitted by the data store after commit"""
    relation: str
    event_type: ChangeType
    row_id: str
    record: Dict[str, Any] = Field(default_factory=dict)
    origin: str
    occurred_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "relation": "campaign_donations",
                "event_type": "INSERT",
                "row_id": "7c1d0f0e-5a43-4a77-9b43-4c5f6f0f8a21",
                "record": {
                    "campaign_id": "c1",
                    "amount": "500.00",
                    "payment_id": "pay_29QQoUBi66xm2f",
                    "order_id": "order_9A33XWu170gUtm"
                },
                "origin": "denasetu-1",
                "occurred_at": "2025-11-21T14:30:00Z"
            }
        }
