"""
Organization and event configuration schemas
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

HEX_COLOR_PATTERN = r"^#[0-9a-fA-F]{6}$"

class CategoryConfig(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    initial: str = Field(min_length=1, max_length=2)
    color: str = Field(pattern=HEX_COLOR_PATTERN)

class CategoriesOptions(BaseModel):
    allowMultiple: bool = False

class AgeGroupConfig(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    minAge: Optional[int] = None

class FoodPreferenceConfig(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)

class ConfirmationStageConfig(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    order: int
    color: Optional[str] = None

class CustomFieldOption(BaseModel):
    id: str
    label: str
    value: str

class CustomFieldConfig(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    type: Literal["single-select", "multi-select", "text", "number"]
    options: Optional[List[CustomFieldOption]] = None
    required: bool = False
    order: Optional[int] = None
    displayOrder: Optional[int] = None
    placeholder: Optional[str] = None
    cardType: Optional[str] = None

class AgeGroupsConfig(BaseModel):
    enabled: bool
    groups: List[AgeGroupConfig] = []

class FoodPreferencesConfig(BaseModel):
    enabled: bool
    allowMultiple: Optional[bool] = None
    options: List[FoodPreferenceConfig] = []

class ConfirmationStagesConfig(BaseModel):
    enabled: bool
    stages: List[ConfirmationStageConfig] = []

class EventConfiguration(BaseModel):
    """Per-organization guest list configuration"""
    categories: List[CategoryConfig] = Field(min_length=1)
    categoriesConfig: Optional[CategoriesOptions] = None
    ageGroups: AgeGroupsConfig
    foodPreferences: FoodPreferencesConfig
    confirmationStages: ConfirmationStagesConfig
    customFields: List[CustomFieldConfig] = []

    @model_validator(mode="after")
    def check_enabled_features(self) -> "EventConfiguration":
        if self.ageGroups.enabled and not self.ageGroups.groups:
            raise ValueError("Age groups are enabled but no groups are defined")
        if self.foodPreferences.enabled and not self.foodPreferences.options:
            raise ValueError("Food preferences are enabled but no options are defined")
        if self.confirmationStages.enabled and not self.confirmationStages.stages:
            raise ValueError("Confirmation stages are enabled but no stages are defined")
        for field in self.customFields:
            if field.type in ("single-select", "multi-select") and not field.options:
                raise ValueError(f"Custom field '{field.id}' needs at least one option")
        return self

class OrganizationCreate(BaseModel):
    """Schema for creating an organization"""
    name: str = Field(min_length=1)
    event_type: str = "wedding"
    custom_config: Optional[Dict[str, Any]] = None

class OrganizationUpdate(BaseModel):
    """Schema for renaming/retyping an organization"""
    name: Optional[str] = Field(default=None, min_length=1)
    event_type: Optional[str] = None

class ConfigUpdate(BaseModel):
    """Schema for replacing an organization's configuration"""
    event_type: Optional[str] = None
    configuration: Optional[EventConfiguration] = None

class JoinRequest(BaseModel):
    invite_code: str = Field(min_length=1)

class OrganizationResponse(BaseModel):
    """Organization as seen by one of its members"""
    id: str
    name: str
    invite_code: str
    admin_id: str
    event_type: str
    configuration: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    role: Optional[Literal["admin", "member"]] = None

    model_config = ConfigDict(from_attributes=True)

class OrganizationPreview(BaseModel):
    """Public view of an organization reached through an invite link"""
    id: str
    name: str
    event_type: str

    model_config = ConfigDict(from_attributes=True)

class MemberResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str
    joined_at: datetime
