"""
Import/export Pydantic schemas
"""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field

EXPORT_VERSION = "1.0.0"

class ExportOrganization(BaseModel):
    name: str = Field(min_length=1)
    event_type: str
    configuration: Dict[str, Any]
    created_at: Optional[str] = None

class ExportGuest(BaseModel):
    name: str = Field(min_length=1)
    categories: List[str] = []
    age_group: Optional[str] = None
    food_preference: Optional[str] = None
    food_preferences: List[str] = []
    confirmation_stage: str = "invited"
    custom_fields: Dict[str, Any] = {}
    family_color: Optional[str] = None
    display_order: Optional[int] = None

class ExportMember(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    role: Literal["admin", "member"]
    joined_at: Optional[str] = None

class ExportData(BaseModel):
    """Portable snapshot of one organization"""
    version: str = EXPORT_VERSION
    exported_at: str
    organization: ExportOrganization
    guests: List[ExportGuest]
    members: List[ExportMember] = []
    invite_code: Optional[str] = None

class ImportRequest(BaseModel):
    data: ExportData

class ImportSummary(BaseModel):
    organization_updated: bool
    guests_imported: int
    members_info: int
    invite_code_updated: bool
