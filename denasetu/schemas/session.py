from pydantic import BaseModel, Field
from typing import Any, Dict
from enum import Enum


class Role(str, Enum):
    DONOR = "donor"
    NGO = "ngo"
    VOLUNTEER = "volunteer"


class OpenSessionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: Role


class SessionContext(BaseModel):
    """Signed-in identity passed explicitly to identity-scoped operations"""
    token: str
    user_id: str
    role: Role
    profile: Dict[str, Any] = Field(default_factory=dict)

    def is_role(self, role: Role) -> bool:
        return self.role == role
