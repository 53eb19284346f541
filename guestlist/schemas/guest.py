"""
Guest-related Pydantic schemas
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from guestlist.schemas.organization import HEX_COLOR_PATTERN

class GuestCreate(BaseModel):
    """Schema for creating a guest"""
    name: str = Field(min_length=1)
    categories: Optional[List[str]] = Field(default=None, min_length=1)
    age_group: Optional[str] = None
    food_preference: Optional[str] = None
    food_preferences: Optional[List[str]] = None
    confirmation_stage: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None
    family_color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    # 1-based position to insert at; later guests shift down
    target_position: Optional[int] = Field(default=None, ge=1)

class GuestUpdate(BaseModel):
    """Schema for updating a guest; only fields that are sent are applied"""
    name: Optional[str] = Field(default=None, min_length=1)
    categories: Optional[List[str]] = Field(default=None, min_length=1)
    age_group: Optional[str] = None
    food_preference: Optional[str] = None
    food_preferences: Optional[List[str]] = None
    confirmation_stage: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None
    family_color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)

class GuestResponse(BaseModel):
    """Guest response schema"""
    id: str
    organization_id: str
    name: str
    categories: List[str]
    age_group: Optional[str] = None
    food_preference: Optional[str] = None
    food_preferences: List[str] = []
    confirmation_stage: str
    custom_fields: Dict[str, Any] = {}
    family_color: Optional[str] = None
    display_order: int
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class ReorderRequest(BaseModel):
    """Full new order of the organization's guests"""
    guestIds: List[str]

class MoveRequest(BaseModel):
    """Move a guest to a 1-based position"""
    position: int = Field(ge=1)

class SwapRequest(BaseModel):
    guest1Id: str
    guest2Id: str

class GuestStatistics(BaseModel):
    total: int
    confirmed: int
    invited: int
    declined: int
    byCategory: Dict[str, int]
    byConfirmationStage: Dict[str, int]
